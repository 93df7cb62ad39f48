"""
Page Translator

Detects text regions in page images, transcribes them, and replaces them
with translated text, either through an editable interchange file or fully
automatically.
"""

__version__ = "1.0.0"

from .detector import Detector
from .extractor import RegionExtractor
from .interchange import InterchangeStore
from .cleaner import Cleaner
from .compositor import Compositor
from .translator import Translator
from .scheduler import BatchScheduler
from .pipeline import PageTranslationPipeline

__all__ = [
    "Detector",
    "RegionExtractor",
    "InterchangeStore",
    "Cleaner",
    "Compositor",
    "Translator",
    "BatchScheduler",
    "PageTranslationPipeline",
]
