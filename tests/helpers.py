"""
Shared fakes for the test suite.

The detection network, OCR engine and translation service are external, so
tests drive the pipeline with small stand-ins that behave deterministically.
"""

from typing import List, Sequence

import numpy as np

from page_translator.ocr import OCRBackend
from page_translator.translator import TranslationBackend

PAGE_SIZE = 640


def make_page(width: int = PAGE_SIZE, height: int = PAGE_SIZE, value: int = 255) -> np.ndarray:
    """Blank BGR page."""
    return np.full((height, width, 3), value, dtype=np.uint8)


def draw_text_blocks(page: np.ndarray, boxes: Sequence[Sequence[int]]) -> np.ndarray:
    """Paint a dark block inside each (x, y, w, h) box to stand in for glyphs."""
    for x, y, w, h in boxes:
        page[y + 4:y + h - 4, x + 4:x + w - 4] = 20
    return page


def detection_row(x, y, w, h, objectness=0.9, score=0.9) -> List[float]:
    """One YOLO output row for a box given by its top-left corner."""
    return [x + w / 2.0, y + h / 2.0, float(w), float(h), objectness, score]


class FakeNet:
    """Stand-in for cv2.dnn.Net returning a fixed output tensor."""

    def __init__(self, rows: Sequence[Sequence[float]], num_classes: int = 1):
        width = 5 + num_classes
        output = np.zeros((1, max(1, len(rows)), width), dtype=np.float32)
        for i, row in enumerate(rows):
            output[0, i, :len(row)] = row
        self.output = output
        self.input_shapes = []

    def setInput(self, blob):
        self.input_shapes.append(blob.shape)

    def getUnconnectedOutLayersNames(self):
        return ["output0"]

    def forward(self, names=None):
        return (self.output.copy(),)


class FakeOcr(OCRBackend):
    """Reports the mean intensity of each crop, so text is crop-dependent."""

    instances = 0

    def __init__(self):
        FakeOcr.instances += 1
        self.calls = 0
        self.closed = False

    def recognize(self, image: np.ndarray) -> str:
        self.calls += 1
        return f"  text   block {int(image.mean())} \n"

    def close(self) -> None:
        self.closed = True


class UpperBackend(TranslationBackend):
    """Translation stand-in that upper-cases its input."""

    def __init__(self):
        self.batches: List[List[str]] = []
        self.closed = False

    def translate_batch(self, texts, source_lang, target_lang):
        self.batches.append(list(texts))
        return [text.upper() for text in texts]

    def close(self) -> None:
        self.closed = True
