"""
Region Extraction Module

Turns detections into padded, page-clamped text regions and their crops.
"""

import logging
from typing import List, Tuple

import numpy as np

from .models import Detection, TextRegion

logger = logging.getLogger(__name__)


class RegionExtractor:
    """Builds TextRegion entries and pixel crops from detections."""

    def __init__(self, padding: int = 10):
        if padding < 0:
            raise ValueError(f"Padding must be non-negative, got {padding}")
        self.padding = padding

    def extract(
        self,
        image: np.ndarray,
        detections: List[Detection],
    ) -> Tuple[List[TextRegion], List[np.ndarray]]:
        """
        Extract regions from a page.

        Ids follow confidence order and stay dense: a detection that clamps
        to nothing is dropped without using up an id.

        Args:
            image: Page as numpy array (BGR format)
            detections: Post-NMS detections

        Returns:
            (regions, crops) where crops[i] is a copy of regions[i].padded_box
        """
        height, width = image.shape[:2]
        ordered = sorted(detections, key=lambda d: -d.confidence)

        regions: List[TextRegion] = []
        crops: List[np.ndarray] = []
        for detection in ordered:
            raw_box = detection.box.clamp(width, height)
            if raw_box.is_empty:
                logger.debug(f"Dropping detection outside the page: {detection.box}")
                continue

            padded_box = raw_box.inflate(self.padding).clamp(width, height)
            region = TextRegion(id=len(regions), raw_box=raw_box, padded_box=padded_box)
            regions.append(region)
            crops.append(self.crop(image, region))

        logger.info(f"Extracted {len(regions)} text regions (padding={self.padding})")
        return regions, crops

    @staticmethod
    def crop(image: np.ndarray, region: TextRegion) -> np.ndarray:
        box = region.padded_box
        return image[box.y:box.y2, box.x:box.x2].copy()
