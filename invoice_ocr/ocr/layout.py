"""Document layout analysis.

Detects page regions (text, title, list, table, figure) with a
PP-PicoDet style model whose output rows are
``(class_id, score, x1, y1, x2, y2)``, then applies per-type non-maximum
suppression.
"""

from dataclasses import dataclass, field
from enum import StrEnum

import numpy as np

from invoice_ocr.inference.backend import InferenceBackend
from invoice_ocr.inference.tensor import Tensor
from invoice_ocr.preprocessing.image_preprocessor import (
    IMAGENET_MEAN,
    IMAGENET_STD,
    normalize_chw,
    resize,
    to_rgb,
)
from invoice_ocr.utils.exceptions import DetectionError, InferenceError
from invoice_ocr.utils.logger import get_logger

logger = get_logger(__name__)

LAYOUT_READING_BAND = 50.0
SCALE_FACTOR_INPUT = "scale_factor"


class LayoutType(StrEnum):
    """Region categories reported by the layout model."""

    TEXT = "text"
    TITLE = "title"
    LIST = "list"
    TABLE = "table"
    FIGURE = "figure"
    UNKNOWN = "unknown"

    @classmethod
    def from_publaynet_class(cls, class_id: int) -> "LayoutType":
        """Map a 5-class PubLayNet index."""
        mapping = {0: cls.TEXT, 1: cls.TITLE, 2: cls.LIST, 3: cls.TABLE, 4: cls.FIGURE}
        return mapping.get(class_id, cls.UNKNOWN)

    @classmethod
    def from_cdla_class(cls, class_id: int) -> "LayoutType":
        """Map a 9-class CDLA index.

        Captions, footers, references and equations fold into text;
        headers become titles.
        """
        mapping = {
            0: cls.TEXT,
            1: cls.FIGURE,
            2: cls.TEXT,
            3: cls.TABLE,
            4: cls.TEXT,
            5: cls.TITLE,
            6: cls.TEXT,
            7: cls.TEXT,
            8: cls.TEXT,
        }
        return mapping.get(class_id, cls.UNKNOWN)

    @property
    def is_table(self) -> bool:
        return self is LayoutType.TABLE

    @property
    def is_text(self) -> bool:
        return self in (LayoutType.TEXT, LayoutType.TITLE, LayoutType.LIST)


class LayoutModelType(StrEnum):
    """Class taxonomy of the loaded layout model."""

    PUBLAYNET = "publaynet"
    CDLA = "cdla"


@dataclass
class LayoutRegion:
    """A detected page region with an (x1, y1, x2, y2) box."""

    region_type: LayoutType
    bbox: tuple[float, float, float, float]
    confidence: float

    def width(self) -> float:
        return self.bbox[2] - self.bbox[0]

    def height(self) -> float:
        return self.bbox[3] - self.bbox[1]

    def area(self) -> float:
        return self.width() * self.height()

    def contains_point(self, x: float, y: float) -> bool:
        return self.bbox[0] <= x <= self.bbox[2] and self.bbox[1] <= y <= self.bbox[3]

    def overlaps(self, other: "LayoutRegion") -> bool:
        return (
            self.bbox[0] < other.bbox[2]
            and self.bbox[2] > other.bbox[0]
            and self.bbox[1] < other.bbox[3]
            and self.bbox[3] > other.bbox[1]
        )

    def iou(self, other: "LayoutRegion") -> float:
        """Intersection over union of the two boxes (0.0 when disjoint)."""
        x1 = max(self.bbox[0], other.bbox[0])
        y1 = max(self.bbox[1], other.bbox[1])
        x2 = min(self.bbox[2], other.bbox[2])
        y2 = min(self.bbox[3], other.bbox[3])
        if x2 < x1 or y2 < y1:
            return 0.0

        intersection = (x2 - x1) * (y2 - y1)
        union = self.area() + other.area() - intersection
        return intersection / union if union > 0 else 0.0


@dataclass
class LayoutResult:
    """All regions found on one page."""

    regions: list[LayoutRegion] = field(default_factory=list)
    image_size: tuple[int, int] = (0, 0)

    def tables(self) -> list[LayoutRegion]:
        return [r for r in self.regions if r.region_type.is_table]

    def text_regions(self) -> list[LayoutRegion]:
        """Text, title and list regions."""
        return [r for r in self.regions if r.region_type.is_text]

    def figures(self) -> list[LayoutRegion]:
        return [r for r in self.regions if r.region_type is LayoutType.FIGURE]

    def sorted_by_reading_order(self) -> list[LayoutRegion]:
        """Regions grouped into 50px vertical bands, left to right in each band."""
        return sorted(
            self.regions,
            key=lambda r: (int(r.bbox[1] // LAYOUT_READING_BAND), r.bbox[0]),
        )


def nms(regions: list[LayoutRegion], iou_threshold: float) -> list[LayoutRegion]:
    """Per-type non-maximum suppression.

    Candidates are visited by descending confidence; one is dropped when
    it overlaps an already kept region of the same type by more than
    ``iou_threshold``. Regions of different types never suppress each
    other.
    """
    ordered = sorted(regions, key=lambda r: r.confidence, reverse=True)
    kept: list[LayoutRegion] = []
    for candidate in ordered:
        if any(
            k.region_type == candidate.region_type and k.iou(candidate) > iou_threshold
            for k in kept
        ):
            continue
        kept.append(candidate)
    return kept


class LayoutDetector:
    """Detects layout regions on a full page.

    Args:
        backend: Loaded layout model.
        model_type: Class taxonomy used to interpret ``class_id``.
        input_size: Network input as (width, height).
        confidence_threshold: Minimum score for a detection to be kept.
        nms_threshold: IoU above which a same-type region is suppressed.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        model_type: LayoutModelType = LayoutModelType.PUBLAYNET,
        input_size: tuple[int, int] = (800, 608),
        confidence_threshold: float = 0.5,
        nms_threshold: float = 0.5,
    ) -> None:
        self.backend = backend
        self.model_type = LayoutModelType(model_type)
        self.input_size = input_size
        self.confidence_threshold = confidence_threshold
        self.nms_threshold = nms_threshold

    def preprocess(self, image: np.ndarray) -> tuple[np.ndarray, float, float]:
        """Resize to the fixed network input and apply ImageNet normalization.

        Returns:
            Tuple of (tensor ``[1, 3, H, W]``, scale_x, scale_y).
        """
        rgb = to_rgb(image)
        orig_h, orig_w = rgb.shape[:2]
        target_w, target_h = self.input_size

        resized = resize(rgb, target_w, target_h)
        tensor = normalize_chw(resized, IMAGENET_MEAN, IMAGENET_STD)[np.newaxis]
        return tensor, target_w / orig_w, target_h / orig_h

    def _build_inputs(
        self, tensor: np.ndarray, scale_x: float, scale_y: float
    ) -> list[tuple[str, Tensor]]:
        declared = self.backend.input_names()
        image_name = next(
            (name for name in declared if name != SCALE_FACTOR_INPUT), "image"
        )
        inputs = [(image_name, Tensor.float32(tensor))]
        if not declared or SCALE_FACTOR_INPUT in declared:
            scale_factor = np.array([[scale_y, scale_x]], dtype=np.float32)
            inputs.append((SCALE_FACTOR_INPUT, Tensor.float32(scale_factor)))
        return inputs

    def detect(self, image: np.ndarray) -> LayoutResult:
        """Detect layout regions in a page image.

        Raises:
            PreprocessingError: If the image cannot be resized.
            DetectionError: If inference fails or the output is malformed.
        """
        tensor, scale_x, scale_y = self.preprocess(image)
        orig_h, orig_w = image.shape[:2]
        logger.debug(
            "Layout detection input: %dx%d, scales: (%.3f, %.3f)",
            self.input_size[0],
            self.input_size[1],
            scale_x,
            scale_y,
        )

        try:
            outputs = self.backend.run(self._build_inputs(tensor, scale_x, scale_y))
        except InferenceError as exc:
            raise DetectionError(f"Layout inference failed: {exc}") from exc

        regions = self.post_process(outputs, scale_x, scale_y, (orig_w, orig_h))
        logger.debug("Detected %d layout regions", len(regions))
        return LayoutResult(regions=regions, image_size=(orig_w, orig_h))

    def _class_to_type(self, class_id: int) -> LayoutType:
        if self.model_type is LayoutModelType.CDLA:
            return LayoutType.from_cdla_class(class_id)
        return LayoutType.from_publaynet_class(class_id)

    def post_process(
        self,
        outputs: list[tuple[str, Tensor]],
        scale_x: float,
        scale_y: float,
        orig_size: tuple[int, int],
    ) -> list[LayoutRegion]:
        """Decode detection rows, filter by confidence and apply NMS."""
        if not outputs:
            raise DetectionError("No output tensor found")

        _, output = next(
            ((name, t) for name, t in outputs if "bbox" in name or "output" in name),
            outputs[0],
        )
        rows = output.as_float()
        if rows is None:
            raise DetectionError(f"Unexpected output tensor type: {output.dtype}")

        logger.debug("Layout output shape: %s", rows.shape)
        if rows.ndim == 3 and rows.shape[2] == 6:
            rows = rows[0]
        elif not (rows.ndim == 2 and rows.shape[1] == 6):
            raise DetectionError(f"Unexpected layout output shape: {rows.shape}")

        orig_w, orig_h = orig_size
        regions = []
        for class_id, score, x1, y1, x2, y2 in rows.tolist():
            if score < self.confidence_threshold:
                continue
            bbox = (
                min(max(x1 / scale_x, 0.0), float(orig_w)),
                min(max(y1 / scale_y, 0.0), float(orig_h)),
                min(max(x2 / scale_x, 0.0), float(orig_w)),
                min(max(y2 / scale_y, 0.0), float(orig_h)),
            )
            regions.append(
                LayoutRegion(
                    region_type=self._class_to_type(int(class_id)),
                    bbox=bbox,
                    confidence=float(score),
                )
            )

        return nms(regions, self.nms_threshold)
