"""
Text Region Detection Module

Runs the external detection network (a YOLOv5-style ONNX model loaded with
OpenCV's dnn module) on a page image and turns its raw output tensor into
filtered, non-max-suppressed detections.
"""

import logging
import threading
from typing import Any, List, Optional, Tuple

import cv2
import numpy as np

from .errors import ModelError
from .models import BoundingBox, Detection

logger = logging.getLogger(__name__)

# cx, cy, w, h, objectness, then one score per class
_BOX_COLUMNS = 5


class Detector:
    """
    Adapter around the detection network.

    This class handles:
    - Letterboxing the page and building the network input blob
    - Running inference on the (opaque) model handle
    - Decoding the raw tensor into page-space detections
    - Confidence filtering and non-max suppression
    """

    def __init__(
        self,
        model: Any,
        input_size: int = 640,
        confidence_threshold: float = 0.4,
        score_threshold: float = 0.25,
        iou_threshold: float = 0.45,
    ):
        """
        Initialize the detector.

        Args:
            model: Network handle exposing setInput/forward (e.g. cv2.dnn.Net)
            input_size: Square input resolution the network expects
            confidence_threshold: Minimum objectness for a detection
            score_threshold: Minimum best-class score for a detection
            iou_threshold: Overlap at or above which NMS drops a detection
        """
        if model is None or not all(
            callable(getattr(model, name, None)) for name in ("setInput", "forward")
        ):
            raise ModelError("Invalid detection model handle")

        self.model = model
        self.input_size = input_size
        self.confidence_threshold = confidence_threshold
        self.score_threshold = score_threshold
        self.iou_threshold = iou_threshold

        # cv2.dnn.Net keeps its input as state, so inference is serialised
        self._lock = threading.Lock()

        logger.info(
            f"Detector initialized (confidence={confidence_threshold}, "
            f"score={score_threshold}, iou={iou_threshold})"
        )

    @classmethod
    def from_onnx(cls, model_path: str, **kwargs) -> "Detector":
        """Load an ONNX detection network from disk."""
        try:
            net = cv2.dnn.readNetFromONNX(model_path)
        except cv2.error as e:
            raise ModelError(f"Failed to load detection model '{model_path}': {e}") from e
        if net.empty():
            raise ModelError(f"Detection model '{model_path}' is empty")
        logger.info(f"Loaded detection model: {model_path}")
        return cls(net, **kwargs)

    def detect(self, image: np.ndarray) -> List[Detection]:
        """
        Detect text regions in a page.

        Args:
            image: Page as numpy array (BGR format)

        Returns:
            Detections sorted by confidence, highest first
        """
        height, width = image.shape[:2]
        square, scale = self._letterbox(image)
        blob = cv2.dnn.blobFromImage(
            square,
            scalefactor=1.0 / 255.0,
            size=(self.input_size, self.input_size),
            swapRB=True,
            crop=False,
        )

        output = self._forward(blob)
        candidates = self.decode(output, scale, page_size=(width, height))
        detections = self.non_max_suppression(candidates, self.iou_threshold)

        logger.info(
            f"Detector kept {len(detections)} of {len(candidates)} candidate regions"
        )
        return detections

    def _letterbox(self, image: np.ndarray) -> Tuple[np.ndarray, float]:
        """Pad the page bottom/right with black to a square."""
        height, width = image.shape[:2]
        side = max(height, width)
        if height == width:
            square = image
        else:
            square = np.zeros((side, side, 3), dtype=image.dtype)
            square[:height, :width] = image
        return square, side / float(self.input_size)

    def _forward(self, blob: np.ndarray) -> np.ndarray:
        try:
            with self._lock:
                self.model.setInput(blob)
                if hasattr(self.model, "getUnconnectedOutLayersNames"):
                    outputs = self.model.forward(self.model.getUnconnectedOutLayersNames())
                else:
                    outputs = self.model.forward()
        except cv2.error as e:
            raise ModelError(f"Detection inference failed: {e}") from e

        if isinstance(outputs, (list, tuple)):
            if not outputs:
                raise ModelError("Detection network produced no outputs")
            outputs = outputs[0]
        return np.asarray(outputs)

    def decode(
        self,
        output: np.ndarray,
        scale: float = 1.0,
        page_size: Optional[Tuple[int, int]] = None,
    ) -> List[Detection]:
        """
        Decode the raw network tensor into filtered page-space detections.

        Args:
            output: Raw output of shape (1, N, 5 + C) or (N, 5 + C)
            scale: Ratio between the letterboxed page and the network input
            page_size: (width, height) of the page; boxes are clipped to it
                and dropped if nothing is left

        Returns:
            Detections passing the confidence and score thresholds, in
            network output order
        """
        rows = np.asarray(output, dtype=np.float32)
        if rows.ndim == 3 and rows.shape[0] == 1:
            rows = rows[0]
        if rows.ndim != 2 or rows.shape[1] < _BOX_COLUMNS + 1:
            raise ModelError(f"Unexpected detection output shape: {np.shape(output)}")

        objectness = rows[:, 4]
        class_scores = rows[:, _BOX_COLUMNS:]
        class_ids = np.argmax(class_scores, axis=1)
        best_scores = class_scores[np.arange(len(rows)), class_ids]

        keep = (
            (objectness >= self.confidence_threshold)
            & (best_scores > self.score_threshold)
            & (rows[:, 2] > 0)
            & (rows[:, 3] > 0)
        )

        detections = []
        for index in np.flatnonzero(keep):
            cx, cy, w, h = (float(v) for v in rows[index, :4])
            box = BoundingBox(
                x=int((cx - 0.5 * w) * scale),
                y=int((cy - 0.5 * h) * scale),
                width=int(w * scale),
                height=int(h * scale),
            )
            if page_size is not None:
                box = box.clamp(*page_size)
            if box.is_empty:
                continue
            detections.append(Detection(
                box=box,
                confidence=float(min(1.0, max(0.0, objectness[index]))),
                class_id=int(class_ids[index]),
            ))
        return detections

    @staticmethod
    def non_max_suppression(
        detections: List[Detection],
        iou_threshold: float,
    ) -> List[Detection]:
        """
        Greedy non-max suppression.

        Detections are visited by confidence (ties keep the earlier one) and
        kept only if they overlap every already-kept detection by less than
        `iou_threshold`.
        """
        ordered = sorted(detections, key=lambda d: -d.confidence)

        kept: List[Detection] = []
        for candidate in ordered:
            if all(candidate.box.iou(other.box) < iou_threshold for other in kept):
                kept.append(candidate)
        return kept


def create_detector(model_path: Optional[str], config: dict, model: Any = None) -> Detector:
    """Build a detector from the 'detection' config section."""
    kwargs = {
        "input_size": config.get("input_size", 640),
        "confidence_threshold": config.get("confidence_threshold", 0.4),
        "score_threshold": config.get("score_threshold", 0.25),
        "iou_threshold": config.get("iou_threshold", 0.45),
    }
    if model is not None:
        return Detector(model, **kwargs)
    if not model_path:
        raise ModelError("No detection model supplied")
    return Detector.from_onnx(model_path, **kwargs)
