"""Text recognition with greedy CTC decoding.

The recognition model emits logits of shape ``[1, T, C]``: one row of
class scores per timestep, with class 0 reserved for the CTC blank.
"""

from pathlib import Path

import numpy as np

from invoice_ocr.inference.backend import InferenceBackend, first_input_name
from invoice_ocr.inference.tensor import Tensor
from invoice_ocr.preprocessing.image_preprocessor import ImagePreprocessor
from invoice_ocr.utils.exceptions import InferenceError, ModelLoadError, RecognitionError
from invoice_ocr.utils.logger import get_logger

from .models import RecognitionResult

logger = get_logger(__name__)

BLANK = " "

POLISH_CHARS = "ĄąĆćĘęŁłŃńÓóŚśŹźŻż"
PUNCTUATION = ".,;:!?-_/\\()[]{}<>@#$%^&*+=|~`'\" "
CURRENCY_AND_SPECIAL = "€£¥§©®°²³½¼¾"


def ctc_greedy_decode(
    logits: np.ndarray, dictionary: list[str]
) -> tuple[str, list[float]]:
    """Greedy CTC decode of a ``[T, C]`` logit matrix.

    At each step the argmax class is taken with confidence
    ``1 / sum(exp(logit_c - max))``. A character is emitted when the class
    is not blank and differs from the previous step's raw class, so a
    blank between two identical classes lets both through.

    Args:
        logits: Per-timestep class scores.
        dictionary: Characters indexed by class; index 0 is the blank.

    Returns:
        Tuple of (decoded text, per-character confidences).
    """
    best = logits.argmax(axis=1)
    max_vals = logits.max(axis=1, keepdims=True)
    confidences = 1.0 / np.exp(logits - max_vals).sum(axis=1)

    chars: list[str] = []
    scores: list[float] = []
    prev_idx = 0
    for idx, conf in zip(best.tolist(), confidences.tolist()):
        if idx != 0 and idx != prev_idx and idx < len(dictionary):
            chars.append(dictionary[idx])
            scores.append(conf)
        prev_idx = idx

    return "".join(chars), scores


class TextRecognizer:
    """Recognizes the text in a cropped region.

    Args:
        backend: Loaded recognition model.
        dictionary: Characters indexed by model class; index 0 is the
            CTC blank. Defaults to :meth:`default_latin_dictionary`.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        dictionary: list[str] | None = None,
        preprocessor: ImagePreprocessor | None = None,
    ) -> None:
        self.backend = backend
        self.dictionary = dictionary or self.default_latin_dictionary()
        self.preprocessor = preprocessor or ImagePreprocessor()

    @staticmethod
    def load_dictionary(path: Path) -> list[str]:
        """Load a one-character-per-line dictionary file.

        A blank placeholder is prepended so that file line ``i`` maps to
        model class ``i + 1``. Empty lines are skipped.

        Raises:
            ModelLoadError: If the file cannot be read.
        """
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ModelLoadError(f"Failed to load dictionary: {exc}") from exc

        chars = [BLANK]
        chars.extend(line[0] for line in content.splitlines() if line)
        logger.debug("Loaded dictionary with %d characters", len(chars))
        return chars

    @staticmethod
    def default_latin_dictionary() -> list[str]:
        """Built-in dictionary: ASCII letters and digits, Polish diacritics,
        punctuation, and currency glyphs."""
        chars = [BLANK]
        chars.extend("0123456789")
        chars.extend("ABCDEFGHIJKLMNOPQRSTUVWXYZ")
        chars.extend("abcdefghijklmnopqrstuvwxyz")
        chars.extend(POLISH_CHARS)
        chars.extend(PUNCTUATION)
        chars.extend(CURRENCY_AND_SPECIAL)
        return chars

    def recognize(self, image: np.ndarray) -> RecognitionResult:
        """Recognize the text in a cropped image.

        Raises:
            PreprocessingError: If the crop cannot be converted to a tensor.
            RecognitionError: If inference fails or returns unexpected logits.
        """
        tensor = self.preprocessor.preprocess_for_recognition(image)

        try:
            outputs = self.backend.run(
                [(first_input_name(self.backend), Tensor.float32(tensor))]
            )
        except InferenceError as exc:
            raise RecognitionError(str(exc)) from exc

        if not outputs:
            raise RecognitionError("No output from model")
        logits = outputs[0][1].as_float()
        if logits is None:
            raise RecognitionError(f"Unexpected output type: {outputs[0][1].dtype}")

        return self.decode(logits)

    def decode(self, output: np.ndarray) -> RecognitionResult:
        """Decode ``[1, T, C]`` logits into text and confidences."""
        if output.ndim != 3:
            raise RecognitionError(f"Invalid output shape: {output.shape}")

        text, char_scores = ctc_greedy_decode(output[0], self.dictionary)
        confidence = sum(char_scores) / len(char_scores) if char_scores else 0.0

        logger.debug("Recognized: '%s' (confidence: %.3f)", text, confidence)
        return RecognitionResult(text=text, confidence=confidence, char_scores=char_scores)

    def recognize_batch(self, images: list[np.ndarray]) -> list[RecognitionResult]:
        return [self.recognize(image) for image in images]
