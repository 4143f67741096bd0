"""Grayscale conversion and adaptive thresholding for page cleanup.

Used by :meth:`ImagePreprocessor.enhance` to raise text contrast on
unevenly lit scans before they are handed to the detector.
"""

import cv2
import numpy as np

from invoice_ocr.utils.logger import get_logger

logger = get_logger(__name__)


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert an RGB or RGBA image to grayscale; grayscale passes through."""
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    return image


def binarize_adaptive(
    image: np.ndarray, block_size: int = 15, c: int = 5
) -> np.ndarray:
    """Binarize an image against the mean of each pixel's neighborhood.

    Args:
        image: Input image (RGB or grayscale).
        block_size: Odd size of the neighborhood window.
        c: Constant subtracted from the local mean.

    Returns:
        Binary image with pixel values 0 or 255.
    """
    gray = to_gray(image)
    result = cv2.adaptiveThreshold(
        gray,
        255,
        cv2.ADAPTIVE_THRESH_MEAN_C,
        cv2.THRESH_BINARY,
        block_size,
        c,
    )
    logger.debug("Applied adaptive binarization (block=%d, c=%d)", block_size, c)
    return result
