"""Tests for CTC decoding, dictionaries and text recognition."""

from pathlib import Path

import numpy as np
import pytest
from helpers import FakeBackend, float_output, one_hot_logits

from invoice_ocr.inference.tensor import Tensor
from invoice_ocr.ocr.recognizer import TextRecognizer, ctc_greedy_decode
from invoice_ocr.utils.exceptions import InferenceError, ModelLoadError, RecognitionError

DICTIONARY = [" ", "a", "b", "c", "d", "e"]


def _recognizer(logits: np.ndarray | None = None) -> TextRecognizer:
    outputs = float_output(logits) if logits is not None else []
    return TextRecognizer(FakeBackend(outputs), dictionary=DICTIONARY)


class TestCtcDecode:
    """Tests for greedy CTC decoding."""

    def test_blank_separates_repeats(self) -> None:
        result = _recognizer().decode(one_hot_logits([5, 5, 0, 5], 6))
        assert result.text == "ee"
        assert len(result.char_scores) == 2

    def test_consecutive_repeats_merged(self) -> None:
        result = _recognizer().decode(one_hot_logits([5, 5, 5], 6))
        assert result.text == "e"

    def test_mixed_sequence(self) -> None:
        result = _recognizer().decode(one_hot_logits([0, 1, 1, 2, 0, 3, 3, 0], 6))
        assert result.text == "abc"

    def test_all_blank_gives_zero_confidence(self) -> None:
        result = _recognizer().decode(one_hot_logits([0, 0, 0], 6))
        assert result.text == ""
        assert result.confidence == 0.0
        assert result.char_scores == []

    def test_confidence_from_max_logit(self) -> None:
        result = _recognizer().decode(one_hot_logits([1], 6, high=10.0))
        expected = 1.0 / (1.0 + 5 * np.exp(-10.0))
        assert result.confidence == pytest.approx(expected, rel=1e-5)

    def test_confidence_is_mean_of_chars(self) -> None:
        logits = one_hot_logits([1, 2], 6)
        logits[0, 1, 2] = 2.0
        text, scores = ctc_greedy_decode(logits[0], DICTIONARY)
        result = _recognizer().decode(logits)

        assert text == "ab"
        assert scores[1] == pytest.approx(1.0 / (1.0 + 5 * np.exp(-2.0)), rel=1e-5)
        assert result.confidence == pytest.approx(sum(scores) / 2)

    def test_index_beyond_dictionary_skipped(self) -> None:
        result = _recognizer().decode(one_hot_logits([1, 7, 2], 8))
        assert result.text == "ab"

    def test_wrong_rank_rejected(self) -> None:
        with pytest.raises(RecognitionError):
            _recognizer().decode(np.zeros((4, 6), dtype=np.float32))


class TestDictionary:
    """Tests for dictionary loading."""

    def test_load_dictionary(self, tmp_path: Path) -> None:
        path = tmp_path / "dict.txt"
        path.write_text("a\n\nb\nźdźbło\n", encoding="utf-8")
        assert TextRecognizer.load_dictionary(path) == [" ", "a", "b", "ź"]

    def test_missing_dictionary(self, tmp_path: Path) -> None:
        with pytest.raises(ModelLoadError):
            TextRecognizer.load_dictionary(tmp_path / "missing.txt")

    def test_default_dictionary(self) -> None:
        chars = TextRecognizer.default_latin_dictionary()
        assert chars[0] == " "
        assert chars[1:11] == list("0123456789")
        for ch in ("A", "z", "Ł", "ż", "€", "%", "/"):
            assert ch in chars

    def test_default_used_when_none_given(self) -> None:
        recognizer = TextRecognizer(FakeBackend([]))
        assert recognizer.dictionary == TextRecognizer.default_latin_dictionary()


class TestTextRecognizer:
    """Tests for TextRecognizer.recognize with a scripted backend."""

    def test_recognize(self) -> None:
        recognizer = _recognizer(one_hot_logits([0, 3, 0, 1, 2], 6))
        crop = np.full((20, 60, 3), 255, dtype=np.uint8)

        result = recognizer.recognize(crop)

        assert result.text == "cab"
        (name, tensor), = recognizer.backend.calls[0]
        assert name == "x"
        assert tensor.shape == (1, 3, 48, 320)

    def test_inference_failure_wrapped(self) -> None:
        backend = FakeBackend([], error=InferenceError("session died"))
        with pytest.raises(RecognitionError, match="session died"):
            TextRecognizer(backend).recognize(np.zeros((10, 10, 3), dtype=np.uint8))

    def test_integer_logits_rejected(self) -> None:
        output = [("out", Tensor.from_array(np.zeros((1, 3, 6), dtype=np.int32)))]
        with pytest.raises(RecognitionError):
            TextRecognizer(FakeBackend(output)).recognize(np.zeros((10, 10), dtype=np.uint8))

    def test_recognize_batch(self) -> None:
        recognizer = _recognizer(one_hot_logits([4], 6))
        crops = [np.zeros((10, 30, 3), dtype=np.uint8)] * 3
        assert [r.text for r in recognizer.recognize_batch(crops)] == ["d", "d", "d"]
