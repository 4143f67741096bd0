"""Scripted inference backend and synthetic model outputs for tests."""

import numpy as np

from invoice_ocr.inference.backend import NamedTensors
from invoice_ocr.inference.tensor import Tensor


class FakeBackend:
    """Scripted stand-in for an inference backend.

    Returns the queued outputs in order (the last one repeats) and records
    every call's inputs.
    """

    def __init__(
        self,
        outputs: list[NamedTensors] | NamedTensors,
        input_names: list[str] | None = None,
        output_names: list[str] | None = None,
        error: Exception | None = None,
    ) -> None:
        if outputs and isinstance(outputs[0], tuple):
            outputs = [outputs]
        self._outputs = list(outputs)
        self._input_names = input_names if input_names is not None else ["x"]
        self._output_names = output_names or []
        self._error = error
        self.calls: list[NamedTensors] = []

    def run(self, inputs: NamedTensors) -> NamedTensors:
        self.calls.append(inputs)
        if self._error is not None:
            raise self._error
        index = min(len(self.calls) - 1, len(self._outputs) - 1)
        return self._outputs[index]

    def input_names(self) -> list[str]:
        return self._input_names

    def output_names(self) -> list[str]:
        return self._output_names


def float_output(array: np.ndarray, name: str = "output") -> NamedTensors:
    """Wrap an array as a single float32 named output."""
    return [(name, Tensor.float32(array))]


def one_hot_logits(indices: list[int], num_classes: int, high: float = 10.0) -> np.ndarray:
    """Build ``[1, T, C]`` logits whose argmax per step is ``indices``."""
    logits = np.zeros((1, len(indices), num_classes), dtype=np.float32)
    for t, idx in enumerate(indices):
        logits[0, t, idx] = high
    return logits


def rectangle_prob_map(
    width: int = 100,
    height: int = 50,
    rect: tuple[int, int, int, int] = (10, 10, 40, 20),
    value: float = 0.9,
) -> np.ndarray:
    """A ``[1, 1, H, W]`` probability map with one filled rectangle."""
    prob = np.zeros((1, 1, height, width), dtype=np.float32)
    x1, y1, x2, y2 = rect
    prob[0, 0, y1:y2, x1:x2] = value
    return prob
