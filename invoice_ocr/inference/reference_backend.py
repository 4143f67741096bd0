"""Portable backend built on the pure-Python ONNX reference interpreter.

Slower than ONNX Runtime but needs no native runtime library, which makes
it usable wherever only the ``onnx`` package can be installed.
"""

from pathlib import Path

import numpy as np
import onnx
from onnx.reference import ReferenceEvaluator

from invoice_ocr.utils.exceptions import InferenceError, ModelLoadError
from invoice_ocr.utils.logger import get_logger

from .backend import NamedTensors
from .tensor import Tensor

logger = get_logger(__name__)


class ReferenceBackend:
    """Executes an ONNX model with :class:`onnx.reference.ReferenceEvaluator`.

    Args:
        model: A loaded ONNX model proto.
    """

    def __init__(self, model: onnx.ModelProto) -> None:
        try:
            self._evaluator = ReferenceEvaluator(model)
        except Exception as exc:
            raise ModelLoadError(f"failed to prepare model: {exc}") from exc
        self._input_names = list(self._evaluator.input_names)
        self._output_names = list(self._evaluator.output_names)

    @classmethod
    def from_file(cls, path: Path) -> "ReferenceBackend":
        path = Path(path)
        logger.debug("Loading ONNX model with reference runtime from: %s", path)
        if not path.exists():
            raise ModelLoadError(f"model file not found: {path}")
        return cls.from_bytes(path.read_bytes())

    @classmethod
    def from_bytes(cls, data: bytes) -> "ReferenceBackend":
        try:
            model = onnx.load_from_string(data)
        except Exception as exc:
            raise ModelLoadError(f"failed to load model: {exc}") from exc
        return cls(model)

    def run(self, inputs: NamedTensors) -> NamedTensors:
        feed = {name: tensor.data for name, tensor in inputs}
        try:
            outputs = self._evaluator.run(None, feed)
        except Exception as exc:
            raise InferenceError(f"inference failed: {exc}") from exc

        return [
            (name, Tensor.from_array(np.asarray(value)))
            for name, value in zip(self._output_names, outputs)
        ]

    def input_names(self) -> list[str]:
        return list(self._input_names)

    def output_names(self) -> list[str]:
        return list(self._output_names)
