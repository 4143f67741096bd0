"""Image-to-tensor conversion for the OCR models.

Resizes, pads and normalizes pixel grids into NCHW float tensors for the
detection, recognition and orientation models, crops text regions, and
keeps the scale factors needed to map network coordinates back onto the
source image.
"""

import math

import cv2
import numpy as np

from invoice_ocr.utils.exceptions import InvalidImageError, PreprocessingError
from invoice_ocr.utils.logger import get_logger

from .binarize import binarize_adaptive

logger = get_logger(__name__)

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)
SYMMETRIC_MEAN = (0.5, 0.5, 0.5)
SYMMETRIC_STD = (0.5, 0.5, 0.5)

DETECTION_STRIDE = 32
CLASSIFIER_SIZE = (192, 48)


def to_rgb(image: np.ndarray) -> np.ndarray:
    """Validate an image and return it as a 3-channel uint8 RGB array.

    Raises:
        InvalidImageError: If the array is not a non-empty grayscale,
            RGB or RGBA image.
    """
    if not isinstance(image, np.ndarray):
        raise InvalidImageError(f"expected numpy array, got {type(image).__name__}")
    if image.ndim not in (2, 3) or 0 in image.shape:
        raise InvalidImageError(f"unsupported image shape: {image.shape}")

    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2:
        return np.stack([image] * 3, axis=-1)
    channels = image.shape[2]
    if channels == 1:
        return np.repeat(image, 3, axis=2)
    if channels == 3:
        return image
    if channels == 4:
        return np.ascontiguousarray(image[:, :, :3])
    raise InvalidImageError(f"unsupported channel count: {channels}")


def resize(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resize to an exact size, wrapping OpenCV failures."""
    try:
        return cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)
    except cv2.error as exc:
        raise PreprocessingError(f"resize to {width}x{height} failed: {exc}") from exc


def rotate_180(image: np.ndarray) -> np.ndarray:
    """Rotate an image by 180 degrees."""
    try:
        return cv2.rotate(image, cv2.ROTATE_180)
    except cv2.error as exc:
        raise PreprocessingError(f"rotation failed: {exc}") from exc


def normalize_chw(
    image: np.ndarray,
    mean: tuple[float, float, float],
    std: tuple[float, float, float],
) -> np.ndarray:
    """Convert HWC uint8 RGB to CHW float32 via ``(pixel/255 - mean) / std``."""
    scaled = image.astype(np.float32) / 255.0
    normalized = (scaled - np.asarray(mean, dtype=np.float32)) / np.asarray(
        std, dtype=np.float32
    )
    return normalized.transpose(2, 0, 1)


class ImagePreprocessor:
    """Prepares images for the detection, classification and recognition models.

    Args:
        det_target_size: Longest side allowed for the detection input.
            Larger images are downscaled; smaller ones keep their size.
        rec_target_height: Fixed input height of the recognition model.
        rec_target_width: Maximum (and padded) input width of the
            recognition model.
    """

    def __init__(
        self,
        det_target_size: int = 960,
        rec_target_height: int = 48,
        rec_target_width: int = 320,
    ) -> None:
        self.det_target_size = det_target_size
        self.rec_target_height = rec_target_height
        self.rec_target_width = rec_target_width

    def preprocess_for_detection(
        self, image: np.ndarray
    ) -> tuple[np.ndarray, float, float, tuple[int, int]]:
        """Build the detection tensor.

        The image is downscaled so its longer side fits ``det_target_size``,
        then zero-padded (in normalized space) up to multiples of 32.

        Args:
            image: Input image.

        Returns:
            Tuple of (tensor ``[1, 3, H, W]``, scale_x, scale_y,
            original (width, height)).
        """
        rgb = to_rgb(image)
        orig_h, orig_w = rgb.shape[:2]
        logger.debug("Original image size: %dx%d", orig_w, orig_h)

        new_w, new_h = self.calculate_resize_dimensions(
            orig_w, orig_h, self.det_target_size
        )
        resized = rgb if (new_w, new_h) == (orig_w, orig_h) else resize(rgb, new_w, new_h)

        pad_w = math.ceil(new_w / DETECTION_STRIDE) * DETECTION_STRIDE
        pad_h = math.ceil(new_h / DETECTION_STRIDE) * DETECTION_STRIDE

        tensor = np.zeros((1, 3, pad_h, pad_w), dtype=np.float32)
        tensor[0, :, :new_h, :new_w] = normalize_chw(resized, IMAGENET_MEAN, IMAGENET_STD)

        scale_x = new_w / orig_w
        scale_y = new_h / orig_h
        return tensor, scale_x, scale_y, (orig_w, orig_h)

    def preprocess_for_recognition(self, image: np.ndarray) -> np.ndarray:
        """Build the recognition tensor ``[1, 3, rec_height, rec_width]``.

        The crop is resized to the target height with its width scaled
        proportionally (capped at the maximum), normalized to [-1, 1], and
        right-padded with zeros.
        """
        rgb = to_rgb(image)
        height, width = rgb.shape[:2]

        target_w = int(self.rec_target_height * width / height)
        target_w = max(1, min(target_w, self.rec_target_width))
        resized = resize(rgb, target_w, self.rec_target_height)

        tensor = np.zeros(
            (1, 3, self.rec_target_height, self.rec_target_width), dtype=np.float32
        )
        tensor[0, :, :, :target_w] = normalize_chw(resized, SYMMETRIC_MEAN, SYMMETRIC_STD)
        return tensor

    def preprocess_for_classification(self, image: np.ndarray) -> np.ndarray:
        """Build the orientation tensor: a fixed 192x48 resize in [-1, 1]."""
        width, height = CLASSIFIER_SIZE
        resized = resize(to_rgb(image), width, height)
        return normalize_chw(resized, SYMMETRIC_MEAN, SYMMETRIC_STD)[np.newaxis]

    def crop_text_region(
        self, image: np.ndarray, bbox: tuple[float, ...]
    ) -> np.ndarray:
        """Crop the axis-aligned rectangle spanning a quadrilateral.

        The rectangle is clamped into the image; the crop is always at
        least 1x1 pixel, even for degenerate or out-of-bounds quads.

        Args:
            image: Source image.
            bbox: Quadrilateral as 8 floats (x1, y1, ..., x4, y4).

        Returns:
            The cropped image region (a copy).
        """
        if len(bbox) != 8:
            raise PreprocessingError(f"expected 8 bbox coordinates, got {len(bbox)}")
        if not isinstance(image, np.ndarray) or image.ndim < 2 or 0 in image.shape[:2]:
            raise InvalidImageError("cannot crop from an empty image")

        img_h, img_w = image.shape[:2]
        xs = bbox[0::2]
        ys = bbox[1::2]

        min_x = min(max(int(min(xs)), 0), img_w - 1)
        min_y = min(max(int(min(ys)), 0), img_h - 1)
        max_x = int(min(max(xs), img_w))
        max_y = int(min(max(ys), img_h))

        width = min(max(max_x - min_x, 1), img_w - min_x)
        height = min(max(max_y - min_y, 1), img_h - min_y)

        return image[min_y : min_y + height, min_x : min_x + width].copy()

    def enhance(self, image: np.ndarray) -> np.ndarray:
        """Return a contrast-enhanced grayscale version of a page image."""
        return binarize_adaptive(to_rgb(image), block_size=15, c=5)

    @staticmethod
    def calculate_resize_dimensions(
        width: int, height: int, target_size: int
    ) -> tuple[int, int]:
        """Downscale (never upscale) so the longer side fits ``target_size``."""
        max_dim = max(width, height)
        if max_dim <= target_size:
            return width, height

        scale = target_size / max_dim
        return max(int(width * scale), 1), max(int(height * scale), 1)
