"""Table structure recognition and table style classification.

The structure model (SLANet style) emits a sequence of HTML-like
structural tokens plus one bounding box per cell. Decoding walks the
token stream with a (row, col) cursor and builds a :class:`TableStructure`.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from html import escape

import numpy as np

from invoice_ocr.inference.backend import InferenceBackend, first_input_name
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

TABLE_CLASSIFIER_SIZE = (224, 224)


class TableType(StrEnum):
    """Visual style of a table."""

    WIRED = "wired"
    LINELESS = "lineless"
    UNKNOWN = "unknown"


@dataclass
class TableCell:
    """One cell of a recognized table.

    ``bbox`` is (x1, y1, x2, y2) in the coordinates of the image the table
    was recognized from. ``content`` is empty until OCR text is joined in.
    """

    row: int
    col: int
    row_span: int = 1
    col_span: int = 1
    bbox: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    content: str = ""
    confidence: float = 1.0

    def is_row_spanning(self) -> bool:
        return self.row_span > 1

    def is_col_spanning(self) -> bool:
        return self.col_span > 1

    def area(self) -> float:
        return (self.bbox[2] - self.bbox[0]) * (self.bbox[3] - self.bbox[1])

    def covers(self, row: int, col: int) -> bool:
        return (
            self.row <= row < self.row + self.row_span
            and self.col <= col < self.col + self.col_span
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "row": self.row,
            "col": self.col,
            "row_span": self.row_span,
            "col_span": self.col_span,
            "bbox": list(self.bbox),
            "content": self.content,
            "confidence": self.confidence,
        }


@dataclass
class TableStructure:
    """Rows, columns and cells of one table.

    Every cell satisfies ``row + row_span <= num_rows`` and
    ``col + col_span <= num_cols``.
    """

    num_rows: int
    num_cols: int
    cells: list[TableCell] = field(default_factory=list)
    bbox: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    confidence: float = 1.0
    table_type: TableType | None = None

    def row(self, row: int) -> list[TableCell]:
        return [c for c in self.cells if c.row == row]

    def column(self, col: int) -> list[TableCell]:
        return [c for c in self.cells if c.col == col]

    def cell_at(self, row: int, col: int) -> TableCell | None:
        """Return the cell covering (row, col), including spanned positions."""
        return next((c for c in self.cells if c.covers(row, col)), None)

    def header(self) -> list[TableCell]:
        return self.row(0)

    def data_rows(self) -> list[list[TableCell]]:
        return [self.row(r) for r in range(1, self.num_rows)]

    def as_grid(self) -> list[list[TableCell | None]]:
        """A ``num_rows x num_cols`` grid where every position covered by a
        cell, spans included, references that cell."""
        grid: list[list[TableCell | None]] = [
            [None] * self.num_cols for _ in range(self.num_rows)
        ]
        for cell in self.cells:
            for r in range(cell.row, min(cell.row + cell.row_span, self.num_rows)):
                for c in range(cell.col, min(cell.col + cell.col_span, self.num_cols)):
                    grid[r][c] = cell
        return grid

    def to_html(self) -> str:
        """Render as an HTML table; row 0 uses ``<th>``, later rows ``<td>``."""
        lines = ["<table>"]
        for row_idx in range(self.num_rows):
            lines.append("  <tr>")
            tag = "th" if row_idx == 0 else "td"
            col_idx = 0
            while col_idx < self.num_cols:
                cell = next(
                    (c for c in self.cells if c.row == row_idx and c.col == col_idx),
                    None,
                )
                if cell is None:
                    # covered by a spanning cell, or missing
                    col_idx += 1
                    continue

                attrs = ""
                if cell.row_span > 1:
                    attrs += f' rowspan="{cell.row_span}"'
                if cell.col_span > 1:
                    attrs += f' colspan="{cell.col_span}"'
                lines.append(f"    <{tag}{attrs}>{escape(cell.content)}</{tag}>")
                col_idx += cell.col_span
            lines.append("  </tr>")
        lines.append("</table>")
        return "\n".join(lines)

    @property
    def html(self) -> str:
        return self.to_html()

    def shift(self, dx: float, dy: float) -> None:
        """Translate the table and all cell boxes by (dx, dy)."""
        x1, y1, x2, y2 = self.bbox
        self.bbox = (x1 + dx, y1 + dy, x2 + dx, y2 + dy)
        for cell in self.cells:
            x1, y1, x2, y2 = cell.bbox
            cell.bbox = (x1 + dx, y1 + dy, x2 + dx, y2 + dy)

    def to_dict(self) -> dict[str, object]:
        return {
            "num_rows": self.num_rows,
            "num_cols": self.num_cols,
            "cells": [c.to_dict() for c in self.cells],
            "bbox": list(self.bbox),
            "confidence": self.confidence,
            "table_type": self.table_type.value if self.table_type else None,
            "html": self.to_html(),
        }


@dataclass(frozen=True)
class TableTokenVocab:
    """Token ids of the structure model.

    Colspan and rowspan markers occupy half-open ranges; a marker's span
    is ``token - range_start``, clamped to ``[1, max_span]``. These
    ranges depend on the exported model and can be overridden.
    """

    pad: int = 0
    sos: int = 1
    eos: int = 2
    td_open: int = 3
    td_close: int = 4
    tr_open: int = 5
    tr_close: int = 6
    colspan_range: tuple[int, int] = (7, 20)
    rowspan_range: tuple[int, int] = (20, 33)
    max_span: int = 10

    def _span(self, token: int, span_range: tuple[int, int]) -> int | None:
        start, stop = span_range
        if start <= token < stop:
            return min(max(token - start, 1), self.max_span)
        return None

    def colspan(self, token: int) -> int | None:
        return self._span(token, self.colspan_range)

    def rowspan(self, token: int) -> int | None:
        return self._span(token, self.rowspan_range)


def decode_structure_tokens(
    tokens: list[int],
    cell_boxes: list[tuple[float, float, float, float]],
    vocab: TableTokenVocab | None = None,
) -> tuple[list[TableCell], int, int]:
    """Walk a structural token stream and build table cells.

    Cells are placed like HTML table cells: each one takes the next column
    in its row not already covered by an earlier row or column span. A
    ``<tr>`` arriving while a row is still open starts a new row.

    Args:
        tokens: Token ids in model order.
        cell_boxes: Cell boxes consumed in order as cells close; cells
            beyond the end of this list get a zero box.
        vocab: Token table; defaults to :class:`TableTokenVocab`.

    Returns:
        Tuple of (cells, num_rows, num_cols). Both counts are at least 1.
    """
    vocab = vocab or TableTokenVocab()

    cells: list[TableCell] = []
    # positions already taken, including those covered by earlier spans
    occupied: set[tuple[int, int]] = set()
    row = 0
    col = 0
    in_cell = False
    row_span = 1
    col_span = 1

    for token in tokens:
        if token == vocab.eos:
            break
        if token == vocab.tr_open:
            # a row left open by a missing </tr> ends here
            if col > 0:
                row += 1
            col = 0
        elif token == vocab.tr_close:
            row += 1
            col = 0
        elif token == vocab.td_open:
            in_cell = True
            row_span = 1
            col_span = 1
        elif token == vocab.td_close:
            if not in_cell:
                continue
            while (row, col) in occupied:
                col += 1
            bbox = (0.0, 0.0, 0.0, 0.0)
            if len(cells) < len(cell_boxes):
                bbox = cell_boxes[len(cells)]
            cells.append(
                TableCell(row=row, col=col, row_span=row_span, col_span=col_span, bbox=bbox)
            )
            occupied.update(
                (r, c)
                for r in range(row, row + row_span)
                for c in range(col, col + col_span)
            )
            col += col_span
            in_cell = False
        elif (span := vocab.colspan(token)) is not None:
            col_span = span
        elif (span := vocab.rowspan(token)) is not None:
            row_span = span

    # a last row missing its </tr> still counts
    if col > 0:
        row += 1

    num_rows = max(row, 1)
    num_cols = max((c.col + c.col_span for c in cells), default=1)
    for cell in cells:
        cell.row_span = max(1, min(cell.row_span, num_rows - cell.row))
        cell.col_span = max(1, min(cell.col_span, num_cols - cell.col))

    return cells, num_rows, num_cols


def letterbox(
    image: np.ndarray, target_w: int, target_h: int
) -> tuple[np.ndarray, float, float, int, int]:
    """Aspect-preserving resize centered on a white canvas.

    Returns:
        Tuple of (canvas, scale_x, scale_y, pad_x, pad_y).
    """
    orig_h, orig_w = image.shape[:2]
    scale = min(target_w / orig_w, target_h / orig_h)
    new_w = max(round(orig_w * scale), 1)
    new_h = max(round(orig_h * scale), 1)

    resized = resize(image, new_w, new_h)
    pad_x = (target_w - new_w) // 2
    pad_y = (target_h - new_h) // 2

    canvas = np.full((target_h, target_w, 3), 255, dtype=np.uint8)
    canvas[pad_y : pad_y + new_h, pad_x : pad_x + new_w] = resized
    return canvas, new_w / orig_w, new_h / orig_h, pad_x, pad_y


class TableRecognizer:
    """Decodes the row/column/cell structure of a cropped table image.

    Args:
        backend: Loaded table structure model.
        input_size: Letterbox canvas as (width, height).
        max_length: Maximum number of structure tokens decoded.
        vocab: Structural token table.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        input_size: tuple[int, int] = (488, 488),
        max_length: int = 500,
        vocab: TableTokenVocab | None = None,
    ) -> None:
        self.backend = backend
        self.input_size = input_size
        self.max_length = max_length
        self.vocab = vocab or TableTokenVocab()

    def recognize(self, image: np.ndarray) -> TableStructure:
        """Recognize the structure of a table image.

        Raises:
            PreprocessingError: If the image cannot be resized.
            DetectionError: If inference fails or the outputs are malformed.
        """
        rgb = to_rgb(image)
        orig_h, orig_w = rgb.shape[:2]

        canvas, scale_x, scale_y, pad_x, pad_y = letterbox(rgb, *self.input_size)
        tensor = normalize_chw(canvas, IMAGENET_MEAN, IMAGENET_STD)[np.newaxis]
        logger.debug(
            "Table recognition input: %dx%d, scales: (%.3f, %.3f)",
            self.input_size[0],
            self.input_size[1],
            scale_x,
            scale_y,
        )

        try:
            outputs = self.backend.run(
                [(first_input_name(self.backend), Tensor.float32(tensor))]
            )
        except InferenceError as exc:
            raise DetectionError(f"Table recognition failed: {exc}") from exc

        structure = self.post_process(
            outputs, scale_x, scale_y, (pad_x, pad_y), (orig_w, orig_h)
        )
        logger.debug(
            "Recognized table: %dx%d with %d cells",
            structure.num_rows,
            structure.num_cols,
            len(structure.cells),
        )
        return structure

    def post_process(
        self,
        outputs: list[tuple[str, Tensor]],
        scale_x: float,
        scale_y: float,
        padding: tuple[int, int],
        orig_size: tuple[int, int],
    ) -> TableStructure:
        orig_w, orig_h = orig_size
        full_box = (0.0, 0.0, float(orig_w), float(orig_h))

        bbox_output = next(
            (t for name, t in outputs if "bbox" in name or "loc" in name), None
        )
        candidates = [(name, t) for name, t in outputs if t is not bbox_output]
        if not candidates:
            logger.debug("No structure output, treating table as a single cell")
            cell = TableCell(row=0, col=0, bbox=full_box)
            return TableStructure(num_rows=1, num_cols=1, cells=[cell], bbox=full_box)

        _, structure_output = next(
            ((name, t) for name, t in candidates if "structure" in name),
            candidates[0],
        )
        tokens = self._tokens(structure_output)
        boxes = self._cell_boxes(bbox_output, scale_x, scale_y, padding, orig_size)

        cells, num_rows, num_cols = decode_structure_tokens(tokens, boxes, self.vocab)
        return TableStructure(
            num_rows=num_rows, num_cols=num_cols, cells=cells, bbox=full_box
        )

    def _tokens(self, output: Tensor) -> list[int]:
        """Token ids from integer ids or per-step float logits."""
        ids = output.as_int()
        if ids is not None:
            return ids.reshape(-1)[: self.max_length].tolist()

        logits = output.as_float()
        if logits is None:
            raise DetectionError(f"Unexpected structure output type: {output.dtype}")
        if logits.ndim < 2:
            raise DetectionError(f"Invalid structure shape: {logits.shape}")

        steps = logits.reshape(-1, logits.shape[-1])
        return steps.argmax(axis=1)[: self.max_length].tolist()

    @staticmethod
    def _cell_boxes(
        output: Tensor | None,
        scale_x: float,
        scale_y: float,
        padding: tuple[int, int],
        orig_size: tuple[int, int],
    ) -> list[tuple[float, float, float, float]]:
        """Map per-cell boxes from the letterbox canvas back onto the table image."""
        if output is None:
            return []
        data = output.as_float()
        if data is None or data.ndim < 2 or data.shape[-1] not in (4, 8):
            logger.warning("Ignoring cell bbox output with shape %s", output.shape)
            return []

        pad_x, pad_y = padding
        orig_w, orig_h = orig_size
        boxes = []
        for row in data.reshape(-1, data.shape[-1]).tolist():
            xs = row[0::2]
            ys = row[1::2]
            x1 = (min(xs) - pad_x) / scale_x
            x2 = (max(xs) - pad_x) / scale_x
            y1 = (min(ys) - pad_y) / scale_y
            y2 = (max(ys) - pad_y) / scale_y
            boxes.append(
                (
                    min(max(x1, 0.0), float(orig_w)),
                    min(max(y1, 0.0), float(orig_h)),
                    min(max(x2, 0.0), float(orig_w)),
                    min(max(y2, 0.0), float(orig_h)),
                )
            )
        return boxes


class TableClassifier:
    """Classifies a table image as wired (ruled) or lineless."""

    def __init__(
        self,
        backend: InferenceBackend,
        input_size: tuple[int, int] = TABLE_CLASSIFIER_SIZE,
    ) -> None:
        self.backend = backend
        self.input_size = input_size

    def classify(self, image: np.ndarray) -> TableType:
        return self.classify_with_score(image)[0]

    def classify_with_score(self, image: np.ndarray) -> tuple[TableType, float]:
        """Classify the table style.

        Returns:
            Tuple of (table type, softmax probability of that type). Ties
            resolve to lineless.

        Raises:
            DetectionError: If inference fails or the output does not hold
                two float scores.
        """
        resized = resize(to_rgb(image), *self.input_size)
        tensor = normalize_chw(resized, IMAGENET_MEAN, IMAGENET_STD)[np.newaxis]

        try:
            outputs = self.backend.run(
                [(first_input_name(self.backend), Tensor.float32(tensor))]
            )
        except InferenceError as exc:
            raise DetectionError(f"Table classification failed: {exc}") from exc

        if not outputs:
            raise DetectionError("No output from table classifier")
        scores = outputs[0][1].as_float()
        if scores is None:
            raise DetectionError(f"Unexpected output type: {outputs[0][1].dtype}")
        scores = scores.reshape(-1)
        if scores.size < 2:
            raise DetectionError(f"Invalid table classifier output: {outputs[0][1].shape}")

        logits = scores[:2].astype(np.float64)
        exp = np.exp(logits - logits.max())
        wired_prob, lineless_prob = (exp / exp.sum()).tolist()

        if wired_prob > lineless_prob:
            return TableType.WIRED, wired_prob
        return TableType.LINELESS, lineless_prob
