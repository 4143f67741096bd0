"""Inference capability consumed by every model-backed OCR component.

Detection, classification, recognition, layout and table logic is written
only against :class:`InferenceBackend`, so a native runtime and a portable
interpreter can be swapped without touching that logic.
"""

from pathlib import Path
from typing import Protocol, runtime_checkable

from invoice_ocr.utils.exceptions import ModelLoadError

from .tensor import Tensor

NamedTensors = list[tuple[str, Tensor]]

BACKEND_KINDS = ("onnxruntime", "reference")


@runtime_checkable
class InferenceBackend(Protocol):
    """A loaded model: named tensor inputs in, named tensor outputs out."""

    def run(self, inputs: NamedTensors) -> NamedTensors:
        """Execute the model once, blocking until outputs are ready."""
        ...

    def input_names(self) -> list[str]:
        ...

    def output_names(self) -> list[str]:
        ...


def first_input_name(backend: InferenceBackend, default: str = "x") -> str:
    """Return the model's first declared input name, or ``default``."""
    names = backend.input_names()
    return names[0] if names else default


def load_backend(
    path: Path, kind: str = "onnxruntime", num_threads: int = 4
) -> InferenceBackend:
    """Load a model file with the requested runtime.

    Args:
        path: Path to an ONNX model file.
        kind: ``"onnxruntime"`` for the native runtime or ``"reference"``
            for the pure-Python ONNX interpreter.
        num_threads: Intra-op thread count (native runtime only).

    Returns:
        A backend satisfying :class:`InferenceBackend`.

    Raises:
        ModelLoadError: If the kind is unknown or the model fails to load.
    """
    if kind == "onnxruntime":
        from .onnxruntime_backend import OnnxRuntimeBackend

        return OnnxRuntimeBackend.from_file(path, num_threads=num_threads)
    if kind == "reference":
        from .reference_backend import ReferenceBackend

        return ReferenceBackend.from_file(path)
    raise ModelLoadError(
        f"unknown inference backend '{kind}', expected one of {BACKEND_KINDS}"
    )
