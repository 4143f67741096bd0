"""Text detection from a DB-style probability map.

The model produces a per-pixel text probability map. Post-processing is
done here: binarize, extract 4-connected components with an explicit
stack, score each component by its mean probability, expand the box to
recover glyph extent, then map back to source-image coordinates.
"""

import numpy as np

from invoice_ocr.inference.backend import InferenceBackend, first_input_name
from invoice_ocr.inference.tensor import Tensor
from invoice_ocr.preprocessing.image_preprocessor import ImagePreprocessor
from invoice_ocr.utils.exceptions import DetectionError, InferenceError
from invoice_ocr.utils.logger import get_logger

from .models import DetectionResult, Quad

logger = get_logger(__name__)

MIN_COMPONENT_SIZE = 10


def find_components(
    binary: np.ndarray, min_size: int = MIN_COMPONENT_SIZE
) -> list[list[tuple[int, int]]]:
    """Find 4-connected components of a boolean mask.

    Components are returned in row-major order of their first pixel;
    components with fewer than ``min_size`` pixels are dropped.

    Args:
        binary: 2-D boolean mask.
        min_size: Noise floor in pixels.

    Returns:
        List of components, each a list of (x, y) pixel coordinates.
    """
    height, width = binary.shape
    mask = binary.tolist()
    visited = [[False] * width for _ in range(height)]
    components = []

    for start_y, start_x in np.argwhere(binary).tolist():
        if visited[start_y][start_x]:
            continue

        component = []
        stack = [(start_x, start_y)]
        while stack:
            x, y = stack.pop()
            if visited[y][x] or not mask[y][x]:
                continue
            visited[y][x] = True
            component.append((x, y))

            if x > 0:
                stack.append((x - 1, y))
            if x + 1 < width:
                stack.append((x + 1, y))
            if y > 0:
                stack.append((x, y - 1))
            if y + 1 < height:
                stack.append((x, y + 1))

        if len(component) >= min_size:
            components.append(component)

    return components


def component_box(
    component: list[tuple[int, int]], prob_map: np.ndarray
) -> tuple[tuple[float, float, float, float], float]:
    """Return a component's pixel-edge extent and mean probability.

    A component covering columns x0..x1 and rows y0..y1 has extent
    (x0, y0, x1 + 1, y1 + 1).
    """
    coords = np.asarray(component)
    xs = coords[:, 0]
    ys = coords[:, 1]
    score = float(prob_map[ys, xs].mean())
    extent = (
        float(xs.min()),
        float(ys.min()),
        float(xs.max() + 1),
        float(ys.max() + 1),
    )
    return extent, score


def unclip(
    extent: tuple[float, float, float, float], ratio: float
) -> tuple[float, float, float, float]:
    """Grow a box symmetrically by ``(ratio - 1) / 2`` of its size per side."""
    x1, y1, x2, y2 = extent
    expand_x = (x2 - x1) * (ratio - 1.0) / 2.0
    expand_y = (y2 - y1) * (ratio - 1.0) / 2.0
    return x1 - expand_x, y1 - expand_y, x2 + expand_x, y2 + expand_y


def clip_quad(quad: Quad, width: int, height: int) -> Quad:
    """Clamp every corner into [0, width] x [0, height]."""
    return tuple(
        min(max(v, 0.0), float(width if i % 2 == 0 else height))
        for i, v in enumerate(quad)
    )


class TextDetector:
    """Locates text regions as quadrilaterals.

    Args:
        backend: Loaded detection model.
        threshold: Probability above which a map pixel counts as text.
        box_threshold: Minimum mean probability for a component to be kept.
        unclip_ratio: Expansion factor applied to each component's box.
        preprocessor: Image preprocessor; a default one is created if omitted.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        threshold: float = 0.3,
        box_threshold: float = 0.6,
        unclip_ratio: float = 1.5,
        min_component_size: int = MIN_COMPONENT_SIZE,
        preprocessor: ImagePreprocessor | None = None,
    ) -> None:
        self.backend = backend
        self.threshold = threshold
        self.box_threshold = box_threshold
        self.unclip_ratio = unclip_ratio
        self.min_component_size = min_component_size
        self.preprocessor = preprocessor or ImagePreprocessor()

    def detect(self, image: np.ndarray) -> DetectionResult:
        """Detect text regions in an image.

        Raises:
            PreprocessingError: If the image cannot be converted to a tensor.
            DetectionError: If inference fails or returns an unexpected map.
        """
        tensor, scale_x, scale_y, orig_size = self.preprocessor.preprocess_for_detection(
            image
        )
        logger.debug(
            "Detection input shape: %s, scales: (%.3f, %.3f)",
            tensor.shape,
            scale_x,
            scale_y,
        )

        try:
            outputs = self.backend.run(
                [(first_input_name(self.backend), Tensor.float32(tensor))]
            )
        except InferenceError as exc:
            raise DetectionError(str(exc)) from exc

        if not outputs:
            raise DetectionError("No output from model")
        prob_map = outputs[0][1].as_float()
        if prob_map is None:
            raise DetectionError(f"Unexpected output type: {outputs[0][1].dtype}")

        boxes, scores = self.post_process(prob_map, scale_x, scale_y, orig_size)
        logger.debug("Detected %d text regions", len(boxes))
        return DetectionResult(boxes=boxes, scores=scores, image_size=orig_size)

    def post_process(
        self,
        output: np.ndarray,
        scale_x: float,
        scale_y: float,
        orig_size: tuple[int, int],
    ) -> tuple[list[Quad], list[float]]:
        """Turn a ``[1, 1, H, W]`` probability map into scored quads."""
        if output.ndim != 4:
            raise DetectionError(f"Invalid output shape: {output.shape}")

        prob_map = output[0, 0]
        binary = prob_map > self.threshold
        components = find_components(binary, self.min_component_size)

        boxes: list[Quad] = []
        scores: list[float] = []
        for component in components:
            extent, score = component_box(component, prob_map)
            if score < self.box_threshold:
                continue

            x1, y1, x2, y2 = unclip(extent, self.unclip_ratio)
            x1, x2 = x1 / scale_x, x2 / scale_x
            y1, y2 = y1 / scale_y, y2 / scale_y

            quad = (x1, y1, x2, y1, x2, y2, x1, y2)
            boxes.append(clip_quad(quad, *orig_size))
            scores.append(score)

        return boxes, scores

    def detect_batch(self, images: list[np.ndarray]) -> list[DetectionResult]:
        """Detect text in several images, one at a time."""
        return [self.detect(image) for image in images]
