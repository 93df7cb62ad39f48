"""
Error Taxonomy

Every failure the pipeline can surface maps to one of these classes.
ConfigError aborts a run before any page is scheduled; the others are
fatal for a single page only and are recorded by the batch scheduler.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigError(PipelineError):
    """Invalid mode or flag combination, detected before any page runs."""


class IoError(PipelineError):
    """Missing or unreadable input, or an output that cannot be written."""


class ModelError(PipelineError):
    """Detector handle invalid or network output has an unexpected shape."""


class OcrError(PipelineError):
    """OCR engine could not be initialized or failed to transcribe."""


class SchemaMismatchError(PipelineError):
    """Interchange document does not match the page it is applied to."""


class TranslationError(PipelineError):
    """Translation service failed or returned an unusable reply."""


class LayoutOverflow(UserWarning):
    """Translated text did not fit its region and was clipped."""

    def __init__(self, region_id: int, font_size: int, lines_dropped: int = 0):
        self.region_id = region_id
        self.font_size = font_size
        self.lines_dropped = lines_dropped
        super().__init__(
            f"Region {region_id}: text does not fit at minimum font size "
            f"{font_size}, {lines_dropped} line(s) clipped"
        )
