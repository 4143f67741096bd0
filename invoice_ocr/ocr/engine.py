"""OCR engine orchestrating detection, orientation, recognition and layout.

Per image: detect text regions, classify and recognize each region in
turn, optionally run layout and table analysis on the whole page, then
sort boxes into reading order.
"""

import time

import numpy as np

from invoice_ocr.preprocessing.image_preprocessor import (
    ImagePreprocessor,
    rotate_180,
    to_rgb,
)
from invoice_ocr.utils.config import OCRConfig
from invoice_ocr.utils.exceptions import MissingDetectorError, OCRError
from invoice_ocr.utils.logger import get_logger

from .classifier import AngleClassifier
from .detector import TextDetector
from .layout import LayoutDetector, LayoutRegion, LayoutResult
from .models import DetectionResult, LayoutInfo, OcrResult, RegionBox, TextBox
from .recognizer import TextRecognizer
from .table import TableClassifier, TableRecognizer, TableStructure

logger = get_logger(__name__)


def _region_box(region: LayoutRegion) -> RegionBox:
    return RegionBox(
        region_type=region.region_type.value,
        bbox=region.bbox,
        confidence=region.confidence,
    )


def fill_cell_contents(table: TableStructure, boxes: list[TextBox]) -> None:
    """Set each cell's content to the text of the boxes centered inside it.

    Boxes are expected in reading order; their text is joined with
    newlines in that order.
    """
    for cell in table.cells:
        cell.content = "\n".join(
            b.text for b in boxes if b.text and b.contains_center_in(cell.bbox)
        )


class OcrEngine:
    """Runs the OCR pipeline over single images.

    Every stage except detection is optional. Components are normally
    assembled with :meth:`builder` or :func:`create_engine_from_dir`.

    Args:
        detector: Text detector; required while detection is enabled.
        classifier: Orientation classifier.
        recognizer: Text recognizer.
        layout_detector: Page layout detector.
        table_recognizer: Table structure recognizer, used on layout tables.
        table_classifier: Wired/lineless table classifier.
        config: Stage switches and thresholds.
    """

    def __init__(
        self,
        detector: TextDetector | None = None,
        classifier: AngleClassifier | None = None,
        recognizer: TextRecognizer | None = None,
        layout_detector: LayoutDetector | None = None,
        table_recognizer: TableRecognizer | None = None,
        table_classifier: TableClassifier | None = None,
        config: OCRConfig | None = None,
    ) -> None:
        self.detector = detector
        self.classifier = classifier
        self.recognizer = recognizer
        self.layout_detector = layout_detector
        self.table_recognizer = table_recognizer
        self.table_classifier = table_classifier
        self.config = config or OCRConfig()
        self.preprocessor = ImagePreprocessor(
            det_target_size=self.config.detection_target_size
        )

    @staticmethod
    def builder() -> "OcrEngineBuilder":
        return OcrEngineBuilder()

    def process(self, image: np.ndarray) -> OcrResult:
        """Run OCR on a single image.

        Args:
            image: Page image (grayscale, RGB or RGBA).

        Returns:
            Boxes and text in reading order, with layout info when a layout
            detector is configured and succeeds.

        Raises:
            MissingDetectorError: If detection is enabled but no detector
                is configured.
            OCRError: If detection, or classification or recognition of
                any region, fails.
        """
        start = time.perf_counter()
        rgb = to_rgb(image)
        height, width = rgb.shape[:2]
        logger.info("Processing image: %dx%d", width, height)

        detection = self._detect(rgb)
        if not detection.boxes:
            logger.debug("No text regions detected")
        else:
            logger.debug("Detected %d text regions", len(detection.boxes))

        boxes = []
        for bbox, det_score in zip(detection.boxes, detection.scores):
            text_box = self._process_region(rgb, bbox, det_score)
            if text_box is not None:
                boxes.append(text_box)

        result = OcrResult(
            boxes=boxes, text="", processing_time_ms=0, image_size=(width, height)
        )
        result.sort_by_reading_order()

        if self.layout_detector is not None:
            result.layout = self._analyze_layout(rgb, result.boxes)

        result.processing_time_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "OCR complete: %d text boxes in %dms",
            len(result.boxes),
            result.processing_time_ms,
        )
        return result

    def _detect(self, image: np.ndarray) -> DetectionResult:
        height, width = image.shape[:2]
        if not self.config.enable_detection:
            w, h = float(width), float(height)
            whole = (0.0, 0.0, w, 0.0, w, h, 0.0, h)
            return DetectionResult(boxes=[whole], scores=[1.0], image_size=(width, height))
        if self.detector is None:
            raise MissingDetectorError("No detector configured")
        return self.detector.detect(image)

    def _process_region(
        self, image: np.ndarray, bbox: tuple[float, ...], det_score: float
    ) -> TextBox | None:
        crop = self.preprocessor.crop_text_region(image, bbox)

        angle = 0
        if self.classifier is not None and self.config.enable_classification:
            predicted, confidence = self.classifier.classify(crop)
            if self.classifier.should_rotate(predicted, confidence):
                crop = rotate_180(crop)
                angle = 180

        text = ""
        rec_score = 0.0
        if self.recognizer is not None and self.config.enable_recognition:
            recognition = self.recognizer.recognize(crop)
            if recognition.confidence < self.config.recognition_threshold:
                return None
            text, rec_score = recognition.text, recognition.confidence

        return TextBox(
            bbox=bbox,
            text=text,
            detection_score=det_score,
            recognition_score=rec_score,
            angle=angle,
        )

    def _analyze_layout(
        self, image: np.ndarray, boxes: list[TextBox]
    ) -> LayoutInfo | None:
        try:
            layout = self.layout_detector.detect(image)
        except OCRError as exc:
            logger.warning("Layout detection failed: %s", exc)
            return None

        info = LayoutInfo(
            tables=[_region_box(r) for r in layout.tables()],
            text_regions=[_region_box(r) for r in layout.text_regions()],
            figures=[_region_box(r) for r in layout.figures()],
        )
        logger.debug(
            "Layout detected: %d tables, %d text regions, %d figures",
            len(info.tables),
            len(info.text_regions),
            len(info.figures),
        )

        if self.table_recognizer is not None and self.config.enable_tables:
            for region in layout.tables():
                table = self._recognize_table(image, region, boxes)
                if table is not None:
                    info.table_structures.append(table)
        return info

    def _recognize_table(
        self, image: np.ndarray, region: LayoutRegion, boxes: list[TextBox]
    ) -> TableStructure | None:
        height, width = image.shape[:2]
        x1, y1, x2, y2 = region.bbox
        crop = self.preprocessor.crop_text_region(image, (x1, y1, x2, y1, x2, y2, x1, y2))
        offset_x = min(max(int(x1), 0), width - 1)
        offset_y = min(max(int(y1), 0), height - 1)

        try:
            table_type = None
            if self.table_classifier is not None:
                table_type = self.table_classifier.classify(crop)
            table = self.table_recognizer.recognize(crop)
        except OCRError as exc:
            logger.warning("Table recognition failed for region %s: %s", region.bbox, exc)
            return None

        table.shift(offset_x, offset_y)
        table.confidence = region.confidence
        table.table_type = table_type
        fill_cell_contents(table, boxes)
        return table

    def process_batch(self, images: list[np.ndarray]) -> list[OcrResult]:
        """Process images one after another; the first failure propagates."""
        return [self.process(image) for image in images]

    def extract_text(self, image: np.ndarray) -> str:
        return self.process(image).text

    def detect_layout(self, image: np.ndarray) -> LayoutResult | None:
        """Run only the layout detector; None when none is configured."""
        if self.layout_detector is None:
            return None
        return self.layout_detector.detect(image)

    def has_layout_detection(self) -> bool:
        return self.layout_detector is not None


class OcrEngineBuilder:
    """Fluent assembly of an :class:`OcrEngine`."""

    def __init__(self) -> None:
        self._detector: TextDetector | None = None
        self._classifier: AngleClassifier | None = None
        self._recognizer: TextRecognizer | None = None
        self._layout_detector: LayoutDetector | None = None
        self._table_recognizer: TableRecognizer | None = None
        self._table_classifier: TableClassifier | None = None
        self._config = OCRConfig()

    def with_detector(self, detector: TextDetector) -> "OcrEngineBuilder":
        self._detector = detector
        return self

    def with_classifier(self, classifier: AngleClassifier) -> "OcrEngineBuilder":
        self._classifier = classifier
        return self

    def with_recognizer(self, recognizer: TextRecognizer) -> "OcrEngineBuilder":
        self._recognizer = recognizer
        return self

    def with_layout_detector(self, layout_detector: LayoutDetector) -> "OcrEngineBuilder":
        self._layout_detector = layout_detector
        return self

    def with_table_recognizer(self, table_recognizer: TableRecognizer) -> "OcrEngineBuilder":
        self._table_recognizer = table_recognizer
        return self

    def with_table_classifier(self, table_classifier: TableClassifier) -> "OcrEngineBuilder":
        self._table_classifier = table_classifier
        return self

    def with_config(self, config: OCRConfig) -> "OcrEngineBuilder":
        self._config = config
        return self

    def build(self) -> OcrEngine:
        return OcrEngine(
            detector=self._detector,
            classifier=self._classifier,
            recognizer=self._recognizer,
            layout_detector=self._layout_detector,
            table_recognizer=self._table_recognizer,
            table_classifier=self._table_classifier,
            config=self._config,
        )
