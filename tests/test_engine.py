"""Tests for OCR engine orchestration with scripted model backends."""

import numpy as np
import pytest
from helpers import FakeBackend, float_output, one_hot_logits, rectangle_prob_map

from invoice_ocr.inference.tensor import Tensor
from invoice_ocr.ocr.classifier import AngleClassifier
from invoice_ocr.ocr.detector import TextDetector
from invoice_ocr.ocr.engine import OcrEngine, fill_cell_contents
from invoice_ocr.ocr.layout import LayoutDetector
from invoice_ocr.ocr.models import TextBox
from invoice_ocr.ocr.recognizer import TextRecognizer
from invoice_ocr.ocr.table import (
    TableCell,
    TableClassifier,
    TableRecognizer,
    TableStructure,
    TableType,
)
from invoice_ocr.utils.config import OCRConfig
from invoice_ocr.utils.exceptions import InferenceError, MissingDetectorError, RecognitionError

DICTIONARY = [" ", "a", "b", "c", "d", "e"]


def _two_box_map() -> np.ndarray:
    """Right-hand box found first in row-major order, left box slightly lower."""
    prob = np.zeros((1, 1, 50, 100), dtype=np.float32)
    prob[0, 0, 10:20, 60:90] = 0.9
    prob[0, 0, 12:22, 10:40] = 0.9
    return prob


def _detector(prob_map: np.ndarray | None = None) -> TextDetector:
    prob_map = rectangle_prob_map() if prob_map is None else prob_map
    return TextDetector(FakeBackend(float_output(prob_map)), unclip_ratio=1.0)


def _recognizer(*texts: list[int]) -> TextRecognizer:
    outputs = [float_output(one_hot_logits(t, len(DICTIONARY))) for t in texts]
    return TextRecognizer(FakeBackend(outputs), dictionary=DICTIONARY)


def _classifier(probs: list[float]) -> AngleClassifier:
    return AngleClassifier(FakeBackend(float_output(np.array([probs]))))


def _layout_backend() -> FakeBackend:
    # one table covering the whole 100x50 page in 800x608 network space
    rows = np.array([[3, 0.95, 0, 0, 800, 608], [0, 0.9, 0, 0, 400, 200]])
    return FakeBackend(float_output(rows), input_names=["image", "scale_factor"])


def _table_backend() -> FakeBackend:
    tokens = ("structure_probs", Tensor.from_array(np.array([[5, 3, 4, 3, 4, 6, 2]])))
    # left and right halves of the letterboxed 100x50 page
    boxes = np.array([[[0, 122, 244, 366], [244, 122, 488, 366]]])
    return FakeBackend([tokens, ("loc_preds", Tensor.float32(boxes))])


class TestProcess:
    """Tests for OcrEngine.process."""

    def test_full_pipeline(self, page_image: np.ndarray) -> None:
        engine = (
            OcrEngine.builder()
            .with_detector(_detector())
            .with_classifier(_classifier([0.99, 0.01]))
            .with_recognizer(_recognizer([0, 1, 2, 0]))
            .build()
        )

        result = engine.process(page_image)

        assert len(result.boxes) == 1
        box = result.boxes[0]
        assert box.text == "ab"
        assert box.angle == 0
        assert box.detection_score == pytest.approx(0.9)
        assert box.recognition_score > 0.9
        assert result.text == "ab"
        assert result.image_size == (100, 50)
        assert result.layout is None

    def test_recognition_disabled_yields_empty_text(self, page_image: np.ndarray) -> None:
        recognizer = _recognizer([1, 2])
        engine = OcrEngine(
            detector=_detector(_two_box_map()),
            recognizer=recognizer,
            config=OCRConfig(enable_recognition=False),
        )

        result = engine.process(page_image)

        assert len(result.boxes) == 2
        assert all(b.text == "" for b in result.boxes)
        assert all(b.detection_score == pytest.approx(0.9) for b in result.boxes)
        assert recognizer.backend.calls == []

    def test_missing_detector_is_fatal(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(recognizer=_recognizer([1]))
        with pytest.raises(MissingDetectorError):
            engine.process(page_image)

    def test_detection_disabled_uses_whole_image(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(
            recognizer=_recognizer([3]),
            config=OCRConfig(enable_detection=False),
        )
        result = engine.process(page_image)

        assert len(result.boxes) == 1
        assert result.boxes[0].bbox == (0.0, 0.0, 100.0, 0.0, 100.0, 50.0, 0.0, 50.0)
        assert result.text == "c"

    def test_no_regions_gives_empty_result(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(detector=_detector(np.zeros((1, 1, 50, 100), dtype=np.float32)))
        result = engine.process(page_image)
        assert result.boxes == []
        assert result.text == ""

    def test_reading_order(self, page_image: np.ndarray) -> None:
        # detection order is right box then left box
        engine = OcrEngine(
            detector=_detector(_two_box_map()),
            recognizer=_recognizer([2], [1]),
        )

        result = engine.process(page_image)

        assert [b.text for b in result.boxes] == ["a", "b"]
        assert result.text == "a\nb"

    def test_confident_upside_down_region_rotated(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(
            detector=_detector(),
            classifier=_classifier([0.01, 0.99]),
            recognizer=_recognizer([1]),
        )
        assert engine.process(page_image).boxes[0].angle == 180

    def test_unconfident_upside_down_region_not_rotated(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(
            detector=_detector(),
            classifier=_classifier([0.4, 0.6]),
            recognizer=_recognizer([1]),
        )
        assert engine.process(page_image).boxes[0].angle == 0

    def test_classification_disabled(self, page_image: np.ndarray) -> None:
        classifier = _classifier([0.01, 0.99])
        engine = OcrEngine(
            detector=_detector(),
            classifier=classifier,
            config=OCRConfig(enable_classification=False),
        )
        assert engine.process(page_image).boxes[0].angle == 0
        assert classifier.backend.calls == []

    def test_recognition_threshold_filters(self, page_image: np.ndarray) -> None:
        logits = one_hot_logits([1], len(DICTIONARY), high=1.0)
        recognizer = TextRecognizer(FakeBackend(float_output(logits)), dictionary=DICTIONARY)
        engine = OcrEngine(
            detector=_detector(),
            recognizer=recognizer,
            config=OCRConfig(recognition_threshold=0.9),
        )
        assert engine.process(page_image).boxes == []

    def test_region_failure_propagates(self, page_image: np.ndarray) -> None:
        recognizer = TextRecognizer(FakeBackend([], error=InferenceError("boom")))
        engine = OcrEngine(detector=_detector(), recognizer=recognizer)
        with pytest.raises(RecognitionError):
            engine.process(page_image)

    def test_boxes_within_image(self, page_image: np.ndarray) -> None:
        detector = TextDetector(
            FakeBackend(float_output(rectangle_prob_map(rect=(0, 0, 100, 12)))),
            unclip_ratio=3.0,
        )
        result = OcrEngine(detector=detector).process(page_image)
        for box in result.boxes:
            assert all(0.0 <= x <= 100.0 for x in box.bbox[0::2])
            assert all(0.0 <= y <= 50.0 for y in box.bbox[1::2])


class TestLayoutAndTables:
    """Tests for the optional layout and table passes."""

    def test_layout_attached(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(
            detector=_detector(),
            recognizer=_recognizer([1]),
            layout_detector=LayoutDetector(_layout_backend()),
        )

        result = engine.process(page_image)

        assert result.layout is not None
        assert len(result.layout.tables) == 1
        assert result.layout.tables[0].bbox == pytest.approx((0.0, 0.0, 100.0, 50.0))
        assert result.layout.tables[0].region_type == "table"
        assert len(result.layout.text_regions) == 1
        assert result.layout.table_structures == []

    def test_layout_failure_degrades(self, page_image: np.ndarray) -> None:
        layout = LayoutDetector(FakeBackend([], error=InferenceError("layout down")))
        engine = OcrEngine(
            detector=_detector(), recognizer=_recognizer([1]), layout_detector=layout
        )

        result = engine.process(page_image)

        assert result.layout is None
        assert result.text == "a"

    def test_table_cells_filled_from_ocr(self, page_image: np.ndarray) -> None:
        engine = (
            OcrEngine.builder()
            .with_detector(_detector())
            .with_recognizer(_recognizer([1, 0, 2]))
            .with_layout_detector(LayoutDetector(_layout_backend()))
            .with_table_recognizer(TableRecognizer(_table_backend()))
            .with_table_classifier(TableClassifier(FakeBackend(float_output(np.array([[3.0, 0.0]])))))
            .build()
        )

        result = engine.process(page_image)

        (table,) = result.layout.table_structures
        assert (table.num_rows, table.num_cols) == (1, 2)
        assert table.table_type is TableType.WIRED
        assert table.confidence == pytest.approx(0.95)
        assert table.cells[0].bbox == pytest.approx((0.0, 0.0, 50.0, 50.0))
        assert table.cells[0].content == "ab"
        assert table.cells[1].content == ""

    def test_tables_disabled(self, page_image: np.ndarray) -> None:
        table_backend = _table_backend()
        engine = OcrEngine(
            detector=_detector(),
            layout_detector=LayoutDetector(_layout_backend()),
            table_recognizer=TableRecognizer(table_backend),
            config=OCRConfig(enable_tables=False),
        )
        result = engine.process(page_image)
        assert result.layout.table_structures == []
        assert table_backend.calls == []

    def test_table_failure_skipped(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(
            detector=_detector(),
            layout_detector=LayoutDetector(_layout_backend()),
            table_recognizer=TableRecognizer(FakeBackend([], error=InferenceError("x"))),
        )
        result = engine.process(page_image)
        assert result.layout is not None
        assert len(result.layout.tables) == 1
        assert result.layout.table_structures == []

    def test_detect_layout(self, page_image: np.ndarray) -> None:
        without = OcrEngine(detector=_detector())
        with_layout = OcrEngine(
            detector=_detector(), layout_detector=LayoutDetector(_layout_backend())
        )
        assert without.detect_layout(page_image) is None
        assert not without.has_layout_detection()
        assert with_layout.has_layout_detection()
        assert len(with_layout.detect_layout(page_image).tables()) == 1


class TestHelpers:
    """Tests for batch and convenience entry points."""

    def test_process_batch(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(detector=_detector(), recognizer=_recognizer([4]))
        results = engine.process_batch([page_image, page_image])
        assert [r.text for r in results] == ["d", "d"]

    def test_extract_text(self, page_image: np.ndarray) -> None:
        engine = OcrEngine(detector=_detector(), recognizer=_recognizer([5]))
        assert engine.extract_text(page_image) == "e"

    def test_fill_cell_contents(self) -> None:
        table = TableStructure(
            num_rows=1,
            num_cols=1,
            cells=[TableCell(row=0, col=0, bbox=(0.0, 0.0, 50.0, 50.0))],
        )
        boxes = [
            TextBox((0, 0, 20, 0, 20, 10, 0, 10), "Qty", 0.9, 0.9),
            TextBox((0, 20, 20, 20, 20, 30, 0, 30), "2", 0.9, 0.9),
            TextBox((60, 0, 80, 0, 80, 10, 60, 10), "far", 0.9, 0.9),
        ]
        fill_cell_contents(table, boxes)
        assert table.cells[0].content == "Qty\n2"
