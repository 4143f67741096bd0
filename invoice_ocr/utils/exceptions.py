"""Exception hierarchy for the OCR core.

Exception Hierarchy:
    OCRError (base)
    ├── ModelLoadError
    ├── InferenceError
    ├── DetectionError
    │   └── MissingDetectorError
    ├── RecognitionError
    ├── PreprocessingError
    └── InvalidImageError
"""


class OCRError(Exception):
    """Base exception for all OCR pipeline errors."""


class ModelLoadError(OCRError):
    """Raised when a model or dictionary file cannot be loaded."""


class InferenceError(OCRError):
    """Raised by inference backends when a model fails to execute.

    Components catch this and re-raise it as a :class:`DetectionError` or
    :class:`RecognitionError` carrying the backend's message.
    """


class DetectionError(OCRError):
    """Raised when text, layout, or table detection fails."""


class MissingDetectorError(DetectionError):
    """Raised when an engine is asked to process an image without a detector."""


class RecognitionError(OCRError):
    """Raised when orientation classification or text recognition fails."""


class PreprocessingError(OCRError):
    """Raised when an image transform (resize, rotate, crop) fails."""


class InvalidImageError(OCRError):
    """Raised when an input image has unsupported dimensions or channels."""
