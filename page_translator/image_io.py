"""
Image Loading and Saving

Page images are held as BGR numpy arrays, the layout OpenCV reads and writes.
"""

import logging
import os
from typing import List

import cv2
import numpy as np

from .errors import IoError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")


def is_supported_image(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS


def list_images(directory: str) -> List[str]:
    """Return supported images in a directory, sorted by name."""
    return sorted(
        os.path.join(directory, name)
        for name in os.listdir(directory)
        if is_supported_image(name) and os.path.isfile(os.path.join(directory, name))
    )


def decode_image(data: bytes, name: str = "<upload>") -> np.ndarray:
    """
    Decode encoded image bytes.

    Args:
        data: PNG/JPEG/WebP file contents
        name: Label used in error messages

    Returns:
        Image as numpy array (BGR format)
    """
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if image is None:
        raise IoError(f"Failed to decode image: {name}")
    return image


def encode_image(image: np.ndarray, ext: str = ".png", quality: int = 95) -> bytes:
    """Encode an image into file bytes for the given extension."""
    ext = ext.lower() or ".png"
    if ext in (".jpg", ".jpeg"):
        params = [cv2.IMWRITE_JPEG_QUALITY, quality]
    elif ext == ".png":
        params = [cv2.IMWRITE_PNG_COMPRESSION, 9]
    else:
        params = []

    ok, encoded = cv2.imencode(ext, image, params)
    if not ok:
        raise IoError(f"Failed to encode image as {ext}")
    return encoded.tobytes()


def load_image(image_path: str) -> np.ndarray:
    """
    Load an image from file.

    Args:
        image_path: Path to the image file

    Returns:
        Image as numpy array (BGR format)
    """
    if not os.path.isfile(image_path):
        raise IoError(f"Image not found: {image_path}")

    # imread does not handle non-ASCII paths on every platform
    try:
        data = np.fromfile(image_path, dtype=np.uint8)
    except OSError as e:
        raise IoError(f"Failed to read image: {image_path}: {e}") from e

    image = decode_image(data, image_path)

    logger.debug(f"Loaded image: {image_path} (shape: {image.shape})")
    return image


def _ensure_writable(file_path: str) -> None:
    """
    Ensure a file path is writable.

    An existing file we may not write to is removed first so a new one can
    be created in its place.
    """
    if os.path.exists(file_path) and not os.access(file_path, os.W_OK):
        try:
            os.remove(file_path)
            logger.info(f"Removed non-writable file: {file_path}")
        except OSError as e:
            raise IoError(f"Cannot write to '{file_path}': {e}") from e


def save_image(image: np.ndarray, output_path: str, quality: int = 95) -> str:
    """
    Save an image to file.

    Args:
        image: Image as numpy array (BGR format)
        output_path: Path to save the image
        quality: JPEG quality (for JPEG format)

    Returns:
        Path to saved image
    """
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    _ensure_writable(output_path)

    encoded = encode_image(image, os.path.splitext(output_path)[1], quality)
    try:
        with open(output_path, "wb") as f:
            f.write(encoded)
    except OSError as e:
        raise IoError(f"Failed to write image: {output_path}: {e}") from e

    logger.info(f"Saved image: {output_path}")
    return output_path
