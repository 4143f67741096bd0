"""Orientation classification (0 or 180 degrees) for cropped text regions."""

import numpy as np

from invoice_ocr.inference.backend import InferenceBackend, first_input_name
from invoice_ocr.inference.tensor import Tensor
from invoice_ocr.preprocessing.image_preprocessor import ImagePreprocessor, rotate_180
from invoice_ocr.utils.exceptions import InferenceError, RecognitionError
from invoice_ocr.utils.logger import get_logger

logger = get_logger(__name__)


class AngleClassifier:
    """Decides whether a text crop is upside down.

    Args:
        backend: Loaded orientation model producing ``[1, 2]``
            probabilities for (0 degrees, 180 degrees).
        threshold: Confidence a 180 degree call must exceed before the
            crop is actually rotated.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        threshold: float = 0.9,
        preprocessor: ImagePreprocessor | None = None,
    ) -> None:
        self.backend = backend
        self.threshold = threshold
        self.preprocessor = preprocessor or ImagePreprocessor()

    def classify(self, image: np.ndarray) -> tuple[int, float]:
        """Classify the orientation of a text region.

        Returns:
            Tuple of (angle, confidence) where angle is 0 or 180.

        Raises:
            RecognitionError: If inference fails or the output does not
                hold two float scores.
        """
        tensor = self.preprocessor.preprocess_for_classification(image)

        try:
            outputs = self.backend.run(
                [(first_input_name(self.backend), Tensor.float32(tensor))]
            )
        except InferenceError as exc:
            raise RecognitionError(str(exc)) from exc

        if not outputs:
            raise RecognitionError("No output from classifier")
        probs = outputs[0][1].as_float()
        if probs is None:
            raise RecognitionError(f"Unexpected output type: {outputs[0][1].dtype}")

        probs = probs.reshape(-1)
        if probs.size < 2:
            raise RecognitionError(f"Invalid classifier output shape: {outputs[0][1].shape}")

        if probs[0] > probs[1]:
            angle, confidence = 0, float(probs[0])
        else:
            angle, confidence = 180, float(probs[1])

        logger.debug("Classified angle: %d (confidence: %.3f)", angle, confidence)
        return angle, confidence

    def classify_batch(self, images: list[np.ndarray]) -> list[tuple[int, float]]:
        return [self.classify(image) for image in images]

    def should_rotate(self, angle: int, confidence: float) -> bool:
        """A 180 degree call only counts when it is confident enough."""
        return angle == 180 and confidence > self.threshold

    def needs_rotation(self, image: np.ndarray) -> bool:
        return self.should_rotate(*self.classify(image))

    def auto_rotate(self, image: np.ndarray) -> np.ndarray:
        """Return the image rotated by 180 degrees if it is confidently upside down."""
        if self.needs_rotation(image):
            return rotate_180(image)
        return image
