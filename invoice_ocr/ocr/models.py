"""Result types produced by the OCR pipeline.

All results are created fresh for each call. The only in-place change is
:meth:`OcrResult.sort_by_reading_order`, which reorders boxes and rebuilds
``text`` so the two never disagree.
"""

import math
from dataclasses import dataclass, field

from .table import TableStructure

Quad = tuple[float, float, float, float, float, float, float, float]
Rect = tuple[float, float, float, float]

READING_ORDER_BAND = 20.0


@dataclass
class DetectionResult:
    """Text regions found by the detector, before recognition."""

    boxes: list[Quad]
    scores: list[float]
    image_size: tuple[int, int]


@dataclass
class RecognitionResult:
    """Decoded text for a single cropped region."""

    text: str
    confidence: float
    char_scores: list[float] = field(default_factory=list)


@dataclass
class TextBox:
    """A detected and recognized text region.

    ``bbox`` holds four corners (x1, y1, x2, y2, x3, y3, x4, y4), clipped
    to the source image.
    """

    bbox: Quad
    text: str
    detection_score: float
    recognition_score: float
    angle: int = 0

    def center(self) -> tuple[float, float]:
        xs = self.bbox[0::2]
        ys = self.bbox[1::2]
        return sum(xs) / 4.0, sum(ys) / 4.0

    def width(self) -> float:
        """Length of the first edge (corner 1 to corner 2)."""
        return math.hypot(self.bbox[2] - self.bbox[0], self.bbox[3] - self.bbox[1])

    def height(self) -> float:
        """Length of the last edge (corner 1 to corner 4)."""
        return math.hypot(self.bbox[6] - self.bbox[0], self.bbox[7] - self.bbox[1])

    def rect(self) -> Rect:
        """Axis-aligned bounding rectangle (min_x, min_y, max_x, max_y)."""
        xs = self.bbox[0::2]
        ys = self.bbox[1::2]
        return min(xs), min(ys), max(xs), max(ys)

    def contains_center_in(self, bbox: Rect) -> bool:
        """True if this box's center lies inside an (x1, y1, x2, y2) rectangle."""
        cx, cy = self.center()
        return bbox[0] <= cx <= bbox[2] and bbox[1] <= cy <= bbox[3]

    def to_dict(self) -> dict[str, object]:
        return {
            "bbox": list(self.bbox),
            "text": self.text,
            "detection_score": self.detection_score,
            "recognition_score": self.recognition_score,
            "angle": self.angle,
        }


@dataclass
class RegionBox:
    """A layout region reported alongside OCR output."""

    region_type: str
    bbox: Rect
    confidence: float

    def to_dict(self) -> dict[str, object]:
        return {
            "region_type": self.region_type,
            "bbox": list(self.bbox),
            "confidence": self.confidence,
        }


@dataclass
class LayoutInfo:
    """Layout regions found on the page, plus any recognized tables."""

    tables: list[RegionBox] = field(default_factory=list)
    text_regions: list[RegionBox] = field(default_factory=list)
    figures: list[RegionBox] = field(default_factory=list)
    table_structures: list[TableStructure] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "tables": [r.to_dict() for r in self.tables],
            "text_regions": [r.to_dict() for r in self.text_regions],
            "figures": [r.to_dict() for r in self.figures],
            "table_structures": [t.to_dict() for t in self.table_structures],
        }


def reading_order_key(box: TextBox, band: float = READING_ORDER_BAND) -> tuple[int, float]:
    """Sort key: vertical band of the top edge, then leftmost x."""
    min_x, min_y, _, _ = box.rect()
    return int(min_y // band), min_x


@dataclass
class OcrResult:
    """OCR output for one image."""

    boxes: list[TextBox]
    text: str
    processing_time_ms: int
    image_size: tuple[int, int]
    layout: LayoutInfo | None = None

    @classmethod
    def empty(cls, width: int, height: int) -> "OcrResult":
        return cls(boxes=[], text="", processing_time_ms=0, image_size=(width, height))

    @property
    def confidence(self) -> float:
        """Mean recognition score over all boxes (0.0 when empty)."""
        if not self.boxes:
            return 0.0
        return sum(b.recognition_score for b in self.boxes) / len(self.boxes)

    def sort_by_reading_order(self) -> None:
        """Order boxes top-to-bottom in 20px bands, left-to-right within a band.

        Rebuilds ``text`` from the new order. Sorting is stable, so
        calling this twice leaves the result unchanged.
        """
        self.boxes.sort(key=reading_order_key)
        self.text = "\n".join(b.text for b in self.boxes)

    def boxes_in_region(self, bbox: Rect) -> list[TextBox]:
        """Boxes whose centers fall inside an (x1, y1, x2, y2) rectangle."""
        return [b for b in self.boxes if b.contains_center_in(bbox)]

    def text_in_region(self, bbox: Rect) -> str:
        return "\n".join(b.text for b in self.boxes_in_region(bbox))

    def to_dict(self) -> dict[str, object]:
        return {
            "text": self.text,
            "boxes": [b.to_dict() for b in self.boxes],
            "processing_time_ms": self.processing_time_ms,
            "image_size": list(self.image_size),
            "layout": self.layout.to_dict() if self.layout else None,
        }
