"""ONNX Runtime backend for native CPU inference."""

import threading
from pathlib import Path

import numpy as np
import onnxruntime as ort

from invoice_ocr.utils.exceptions import InferenceError, ModelLoadError
from invoice_ocr.utils.logger import get_logger

from .backend import NamedTensors
from .tensor import Tensor

logger = get_logger(__name__)


class OnnxRuntimeBackend:
    """Executes an ONNX model through an ``onnxruntime.InferenceSession``.

    Calls to :meth:`run` are serialized by a lock, so one backend can be
    shared between threads.

    Args:
        session: A ready inference session.
    """

    def __init__(self, session: ort.InferenceSession) -> None:
        self._session = session
        self._lock = threading.Lock()
        self._input_names = [i.name for i in session.get_inputs()]
        self._output_names = [o.name for o in session.get_outputs()]
        logger.debug("Model inputs: %s", self._input_names)
        logger.debug("Model outputs: %s", self._output_names)

    @staticmethod
    def _session_options(num_threads: int) -> ort.SessionOptions:
        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        options.intra_op_num_threads = num_threads
        return options

    @classmethod
    def from_file(cls, path: Path, num_threads: int = 4) -> "OnnxRuntimeBackend":
        """Load a model from a file path.

        Raises:
            ModelLoadError: If the file is missing or is not a valid model.
        """
        path = Path(path)
        logger.debug("Loading ONNX model from: %s", path)
        if not path.exists():
            raise ModelLoadError(f"model file not found: {path}")
        return cls.from_bytes(path.read_bytes(), num_threads=num_threads)

    @classmethod
    def from_bytes(cls, data: bytes, num_threads: int = 4) -> "OnnxRuntimeBackend":
        """Load a model from serialized bytes."""
        logger.debug("Loading ONNX model from %d bytes", len(data))
        try:
            session = ort.InferenceSession(
                data,
                sess_options=cls._session_options(num_threads),
                providers=["CPUExecutionProvider"],
            )
        except Exception as exc:
            raise ModelLoadError(f"failed to create session: {exc}") from exc
        return cls(session)

    def run(self, inputs: NamedTensors) -> NamedTensors:
        feed = {name: tensor.data for name, tensor in inputs}
        with self._lock:
            try:
                outputs = self._session.run(self._output_names, feed)
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
