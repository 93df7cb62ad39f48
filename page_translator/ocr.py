"""
OCR Module

Transcribes region crops with Tesseract. Engine sessions are not assumed to
be thread-safe, so every worker borrows its own from an OcrSessionPool.
"""

import logging
import queue
import threading
import unicodedata
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

import cv2
import numpy as np
import pytesseract
from PIL import Image

from .errors import OcrError
from .models import TextRegion

logger = logging.getLogger(__name__)


def normalize_text(text: Optional[str]) -> str:
    """Trim, collapse internal whitespace, and NFC-normalize engine output."""
    if not text:
        return ""
    text = unicodedata.normalize("NFC", text)
    return " ".join(text.split())


class OCRBackend(ABC):
    """Abstract base class for OCR engine sessions."""

    @abstractmethod
    def recognize(self, image: np.ndarray) -> str:
        """
        Transcribe one cropped region.

        Args:
            image: Crop as numpy array (BGR format)

        Returns:
            Raw engine text (may be empty)
        """
        pass

    def close(self) -> None:
        """Release engine resources."""


class TesseractBackend(OCRBackend):
    """Tesseract session driven through pytesseract."""

    def __init__(
        self,
        lang: str = "jpn_vert",
        tessdata_dir: Optional[str] = None,
        psm: Optional[int] = 5,
        oem: Optional[int] = None,
    ):
        """
        Initialize a Tesseract session.

        Args:
            lang: Tesseract language code(s), '+'-joined
            tessdata_dir: Directory holding the traineddata files
            psm: Page segmentation mode (5 = single vertical block)
            oem: OCR engine mode
        """
        self.lang = lang
        self.tessdata_dir = tessdata_dir

        options = []
        if psm is not None:
            options.append(f"--psm {psm}")
        if oem is not None:
            options.append(f"--oem {oem}")
        if tessdata_dir:
            options.append(f'--tessdata-dir "{tessdata_dir}"')
        self.config = " ".join(options)

        self._check_languages()
        logger.info(f"Tesseract session initialized (lang={lang}, tessdata={tessdata_dir})")

    def _check_languages(self) -> None:
        data_config = f'--tessdata-dir "{self.tessdata_dir}"' if self.tessdata_dir else ""
        try:
            available = set(pytesseract.get_languages(config=data_config))
        except pytesseract.TesseractNotFoundError as e:
            raise OcrError(f"Tesseract is not installed or not on PATH: {e}") from e
        except (pytesseract.TesseractError, OSError) as e:
            raise OcrError(f"Failed to initialize Tesseract: {e}") from e

        missing = [code for code in self.lang.split("+") if code not in available]
        if missing:
            where = self.tessdata_dir or "the default tessdata directory"
            raise OcrError(
                f"Tesseract language data {', '.join(missing)} not found in {where}"
            )

    def recognize(self, image: np.ndarray) -> str:
        if image.size == 0:
            return ""
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        try:
            return pytesseract.image_to_string(
                Image.fromarray(image), lang=self.lang, config=self.config
            )
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            raise OcrError(f"Tesseract transcription failed: {e}") from e


class OcrSessionPool:
    """
    Pool of exclusively owned OCR sessions.

    A session is created lazily the first time no idle one is available,
    so at most one session exists per concurrently running worker.
    """

    def __init__(self, factory: Callable[[], OCRBackend]):
        self._factory = factory
        self._idle: "queue.LifoQueue[OCRBackend]" = queue.LifoQueue()
        self._sessions: List[OCRBackend] = []
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._sessions)

    @contextmanager
    def session(self) -> Iterator[OCRBackend]:
        """Borrow a session for the duration of one page."""
        try:
            backend = self._idle.get_nowait()
        except queue.Empty:
            backend = self._factory()
            with self._lock:
                self._sessions.append(backend)
        try:
            yield backend
        finally:
            self._idle.put(backend)

    def close(self) -> None:
        with self._lock:
            sessions, self._sessions = self._sessions, []
        self._idle = queue.LifoQueue()
        for backend in sessions:
            backend.close()


def transcribe_regions(
    backend: OCRBackend,
    regions: List[TextRegion],
    crops: List[np.ndarray],
) -> List[TextRegion]:
    """Fill source_text for every region from its crop."""
    for region, crop in zip(regions, crops):
        region.source_text = normalize_text(backend.recognize(crop))
        logger.debug(f"Region {region.id}: '{region.source_text[:30]}'")

    found = sum(1 for region in regions if region.source_text)
    logger.info(f"OCR produced text for {found}/{len(regions)} regions")
    return regions


def make_tesseract_factory(
    lang: str,
    tessdata_dir: Optional[str],
    psm: Optional[int] = 5,
    oem: Optional[int] = None,
    tesseract_cmd: Optional[str] = None,
) -> Callable[[], OCRBackend]:
    """Session factory with settings resolved once at pipeline construction."""
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def factory() -> OCRBackend:
        return TesseractBackend(lang=lang, tessdata_dir=tessdata_dir, psm=psm, oem=oem)

    return factory
