"""
Page Translation Pipeline

This module orchestrates the per-page pipeline for every run mode and hands
the page set to the batch scheduler.
"""

import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .cleaner import Cleaner
from .compositor import Compositor
from .config import (
    PipelinePlan, RunOptions, Stage, build_plan, load_config, merge_config, output_stem,
    resolve_tessdata_dir,
)
from .detector import Detector, create_detector
from .errors import ConfigError
from .extractor import RegionExtractor
from .image_io import load_image, save_image
from .interchange import InterchangeStore
from .models import PageRecord, PageResult
from .ocr import OCRBackend, OcrSessionPool, make_tesseract_factory, transcribe_regions
from .scheduler import BatchReport, BatchScheduler
from .translator import Translator

logger = logging.getLogger(__name__)


class PageTranslationPipeline:
    """
    Main orchestrator for the page translation pipeline.

    The stage plan chosen at construction decides which components run:
    1. Detection and region extraction (every mode)
    2. OCR and interchange write (extract, translate)
    3. Interchange read and verification (replace)
    4. Translation (translate)
    5. Cleaning and compositing (replace, translate, or the clean flag)
    """

    def __init__(
        self,
        options: RunOptions,
        config: Dict[str, Any] = None,
        detector: Optional[Detector] = None,
        ocr_factory: Optional[Callable[[], OCRBackend]] = None,
        translator: Optional[Translator] = None,
        serve: bool = False,
    ):
        """
        Initialize the pipeline.

        Args:
            options: Run options (validated here, before any page runs)
            config: Configuration dictionary (loaded from options.config_path if None)
            detector: Pre-built detector (loaded from options.model if None)
            ocr_factory: OCR session factory (Tesseract if None)
            translator: Pre-built translator (built from config if None)
            serve: Build for in-memory requests only (no input pages, no output directory)

        Raises:
            ConfigError: for invalid option combinations or an unusable output directory
        """
        options.validate(require_model=detector is None, require_inputs=not serve)
        self.options = options

        base = load_config(options.config_path) if config is None else load_config(None, config)
        self.config = merge_config(base, options.config_overrides())

        render_config = self.config.get("rendering", {})
        self.plan: PipelinePlan = build_plan(
            options.mode,
            clean=options.clean,
            inpaint_background=render_config.get("inpaint_background", True),
        )
        self.output_dir = self.config.get("general", {}).get("output_dir", "./output")

        # Resolved once; every OCR session gets it passed explicitly
        self.tessdata_dir = resolve_tessdata_dir(options.data)

        self._init_components(detector, ocr_factory, translator)
        if not serve:
            self._prepare_output_dir()

        logger.info(
            f"PageTranslationPipeline initialized (mode={self.plan.mode.value}, "
            f"stages={sorted(s.value for s in self.plan.stages)})"
        )

    def _init_components(
        self,
        detector: Optional[Detector],
        ocr_factory: Optional[Callable[[], OCRBackend]],
        translator: Optional[Translator],
    ) -> None:
        """Initialize the components the plan needs."""
        detection_config = self.config.get("detection", {})
        extraction_config = self.config.get("extraction", {})
        ocr_config = self.config.get("ocr", {})
        trans_config = self.config.get("translation", {})
        clean_config = self.config.get("cleaning", {})
        render_config = self.config.get("rendering", {})

        self.detector = detector or create_detector(self.options.model, detection_config)
        self.extractor = RegionExtractor(padding=int(extraction_config.get("padding", 10)))
        self.store = InterchangeStore()

        self.ocr_pool: Optional[OcrSessionPool] = None
        if self.plan.has(Stage.OCR):
            factory = ocr_factory or make_tesseract_factory(
                lang=ocr_config.get("lang", "jpn_vert"),
                tessdata_dir=self.tessdata_dir,
                psm=ocr_config.get("psm", 5),
                oem=ocr_config.get("oem"),
                tesseract_cmd=ocr_config.get("tesseract_cmd"),
            )
            self.ocr_pool = OcrSessionPool(factory)

        self.translator: Optional[Translator] = None
        if self.plan.has(Stage.TRANSLATE):
            self.translator = translator or Translator(
                service=trans_config.get("service", "sugoi"),
                source_language=trans_config.get("source_language", "ja"),
                target_language=trans_config.get("target_language", "en"),
                url=trans_config.get("url", "http://localhost:14366"),
                api_key=trans_config.get("api_key"),
                timeout=float(trans_config.get("timeout", 60.0)),
                batch_size=int(trans_config.get("batch_size", 50)),
            )

        self.cleaner: Optional[Cleaner] = None
        if self.plan.has(Stage.CLEAN):
            try:
                self.cleaner = Cleaner(
                    method=clean_config.get("method", "telea"),
                    radius=int(clean_config.get("radius", 3)),
                    ring=int(clean_config.get("ring", 3)),
                )
            except ValueError as e:
                raise ConfigError(str(e)) from e

        self.compositor: Optional[Compositor] = None
        if self.plan.has(Stage.COMPOSITE):
            try:
                self.compositor = Compositor(
                    font_path=render_config.get("font_path"),
                    min_font_size=int(render_config.get("min_font_size", 8)),
                    max_font_size=int(render_config.get("max_font_size", 48)),
                    font_color=tuple(render_config.get("font_color", [0, 0, 0])),
                    line_spacing=float(render_config.get("line_spacing", 1.15)),
                    margin=int(render_config.get("margin", 2)),
                )
            except ValueError as e:
                raise ConfigError(str(e)) from e

    def _prepare_output_dir(self) -> None:
        try:
            os.makedirs(self.output_dir, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Cannot create output directory '{self.output_dir}': {e}") from e

    def _output_path(self, image_path: str, suffix: str, ext: str) -> str:
        return os.path.join(self.output_dir, f"{output_stem(image_path)}{suffix}{ext}")

    def _text_path(self, image_path: str) -> str:
        """Interchange document for a page in replace mode."""
        text = self.options.text
        if os.path.isdir(text):
            return os.path.join(text, f"{output_stem(image_path)}.json")
        return text

    def detect_page(self, image_path: str, image: np.ndarray, padding: Optional[int] = None):
        """Detect and extract the regions of one page, optionally with its own padding."""
        height, width = image.shape[:2]
        extractor = self.extractor if padding is None else RegionExtractor(padding=padding)
        detections = self.detector.detect(image)
        regions, crops = extractor.extract(image, detections)
        return PageRecord(source_path=image_path, width=width, height=height, regions=regions), crops

    def transcribe(self, record: PageRecord, crops) -> PageRecord:
        """OCR every region with a session borrowed for this page."""
        with self.ocr_pool.session() as ocr:
            transcribe_regions(ocr, record.regions, crops)
        return record

    def apply_document(self, document: PageRecord, detected: PageRecord) -> PageRecord:
        """
        Verify an edited document against a fresh detection and adopt it.

        Raises:
            SchemaMismatchError: if the document does not describe this page
        """
        self.store.verify(document, detected)
        for region in document.regions:
            region.raw_box = region.raw_box.clamp(detected.width, detected.height)
            region.padded_box = region.padded_box.clamp(detected.width, detected.height)
        document.source_path = detected.source_path
        return document

    def clean(self, image: np.ndarray, record: PageRecord) -> np.ndarray:
        return self.cleaner.clean(image, record.regions)

    def render(self, background: np.ndarray, record: PageRecord) -> Tuple[np.ndarray, List[str]]:
        """Composite translations onto a background, returning overflow messages."""
        rendered, overflows = self.compositor.composite(background, record.regions)
        return rendered, [str(w) for w in overflows]

    def process_page(self, image_path: str) -> PageResult:
        """
        Run the planned stages on one page.

        Args:
            image_path: Path to the page image

        Returns:
            PageResult listing the files written
        """
        start_time = time.time()
        plan = self.plan
        result = PageResult(source_path=image_path)

        logger.info(f"Processing page: {image_path}")
        image = load_image(image_path)

        record, crops = self.detect_page(image_path, image)

        if plan.has(Stage.OCR):
            self.transcribe(record, crops)

        if plan.has(Stage.READ_TEXT):
            record = self.apply_document(self.store.read(self._text_path(image_path)), record)

        if plan.has(Stage.TRANSLATE):
            self.translator.translate_regions(record.regions)

        if plan.has(Stage.WRITE_TEXT):
            result.outputs.append(
                self.store.write(record, self._output_path(image_path, "", ".json"))
            )

        background = image
        if plan.has(Stage.CLEAN):
            cleaned = self.clean(image, record)
            if plan.has(Stage.SAVE_CLEAN):
                result.outputs.append(
                    save_image(cleaned, self._output_path(image_path, "_clean", ".png"))
                )
            if plan.composites_on_clean:
                background = cleaned

        if plan.has(Stage.COMPOSITE):
            rendered, warnings = self.render(background, record)
            result.warnings.extend(warnings)
            result.outputs.append(
                save_image(rendered, self._output_path(image_path, "_translated", ".png"))
            )

        result.region_count = len(record.regions)
        logger.info(f"Page complete in {time.time() - start_time:.2f}s: {image_path}")
        return result

    def run(self) -> BatchReport:
        """Process every input page and return the batch report."""
        batch_config = self.config.get("batch", {})
        scheduler = BatchScheduler(
            workers=batch_config.get("workers"),
            single=self.options.single,
            show_progress=batch_config.get("show_progress", True),
        )
        try:
            report = scheduler.run(self.options.inputs, self.process_page)
        finally:
            self.close()

        for line in report.summary_lines():
            if report.failed:
                logger.error(line)
            else:
                logger.info(line)
        return report

    def close(self) -> None:
        """Tear down OCR sessions and network clients."""
        if self.ocr_pool is not None:
            self.ocr_pool.close()
        if self.translator is not None:
            self.translator.close()


def create_pipeline(options: RunOptions, **components) -> PageTranslationPipeline:
    """
    Factory function to create a pipeline from run options.

    Args:
        options: Run options
        **components: Optional pre-built detector, ocr_factory or translator

    Returns:
        Configured PageTranslationPipeline instance
    """
    return PageTranslationPipeline(options, **components)
