"""
Text Removal Module

Masks every text region and reconstructs the masked pixels from their
surroundings, producing a clean background page.
"""

import logging
from typing import List, Tuple

import cv2
import numpy as np
from scipy import ndimage

from .models import TextRegion

logger = logging.getLogger(__name__)


class Cleaner:
    """
    Removes visible text from page regions.

    Supported methods:
    - 'telea': OpenCV fast-marching inpainting
    - 'ns': OpenCV Navier-Stokes inpainting
    - 'fill': median colour of a ring just outside each region
    - 'nearest': copy of the nearest unmasked pixel
    """

    METHODS = ("telea", "ns", "fill", "nearest")

    def __init__(self, method: str = "telea", radius: int = 3, ring: int = 3):
        """
        Initialize the cleaner.

        Args:
            method: Fill method, one of METHODS
            radius: Neighbourhood radius for the inpainting methods
            ring: Width of the exterior ring sampled by 'fill'
        """
        method = method.lower()
        if method not in self.METHODS:
            raise ValueError(f"Unknown cleaning method: {method}")
        self.method = method
        self.radius = radius
        self.ring = ring

    def build_mask(self, image_shape: Tuple[int, ...], regions: List[TextRegion]) -> np.ndarray:
        """
        Create a binary mask of text regions.

        Returns:
            Mask with 255 inside every padded box, 0 elsewhere
        """
        mask = np.zeros(image_shape[:2], dtype=np.uint8)
        for region in regions:
            box = region.padded_box
            mask[box.y:box.y2, box.x:box.x2] = 255
        return mask

    def clean(self, image: np.ndarray, regions: List[TextRegion]) -> np.ndarray:
        """
        Remove text from every region.

        Pixels outside the mask are returned unchanged.

        Args:
            image: Page as numpy array (BGR format)
            regions: Regions to clean

        Returns:
            Cleaned copy of the page
        """
        mask = self.build_mask(image.shape, regions)
        result = image.copy()
        if not mask.any():
            return result

        if self.method == "telea":
            filled = cv2.inpaint(image, mask, self.radius, cv2.INPAINT_TELEA)
        elif self.method == "ns":
            filled = cv2.inpaint(image, mask, self.radius, cv2.INPAINT_NS)
        elif self.method == "fill":
            filled = self._fill(image, mask, regions)
        else:
            filled = self._nearest(image, mask)

        inside = mask > 0
        result[inside] = filled[inside]

        logger.info(f"Cleaned {len(regions)} text regions using '{self.method}'")
        return result

    def _fill(self, image: np.ndarray, mask: np.ndarray, regions: List[TextRegion]) -> np.ndarray:
        filled = image.copy()
        height, width = image.shape[:2]
        for region in regions:
            box = region.padded_box
            outer = box.inflate(self.ring).clamp(width, height)
            window = image[outer.y:outer.y2, outer.x:outer.x2]
            exterior = window[mask[outer.y:outer.y2, outer.x:outer.x2] == 0]

            if exterior.size == 0:
                color = np.full(image.shape[2:] or (1,), 255, dtype=image.dtype)
            else:
                color = np.median(exterior.reshape(len(exterior), -1), axis=0).astype(image.dtype)
            filled[box.y:box.y2, box.x:box.x2] = color.reshape(image.shape[2:])
        return filled

    @staticmethod
    def _nearest(image: np.ndarray, mask: np.ndarray) -> np.ndarray:
        if mask.all():
            return np.full_like(image, 255)
        _, (rows, cols) = ndimage.distance_transform_edt(mask > 0, return_indices=True)
        return image[rows, cols]
