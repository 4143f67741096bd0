"""Tagged tensor values exchanged with inference backends.

Every tensor carries an explicit :class:`TensorType` tag so consumers
must accept or reject each numeric kind instead of relying on whatever
dtype a runtime happens to return.
"""

from dataclasses import dataclass
from enum import StrEnum

import numpy as np

from invoice_ocr.utils.exceptions import InferenceError


class TensorType(StrEnum):
    """Numeric kinds supported at the backend boundary."""

    FLOAT32 = "float32"
    FLOAT64 = "float64"
    INT32 = "int32"
    INT64 = "int64"
    UINT8 = "uint8"

    @property
    def is_float(self) -> bool:
        return self in (TensorType.FLOAT32, TensorType.FLOAT64)

    @property
    def is_int(self) -> bool:
        return self in (TensorType.INT32, TensorType.INT64)


_NUMPY_TYPES: dict[np.dtype, TensorType] = {
    np.dtype(np.float32): TensorType.FLOAT32,
    np.dtype(np.float64): TensorType.FLOAT64,
    np.dtype(np.int32): TensorType.INT32,
    np.dtype(np.int64): TensorType.INT64,
    np.dtype(np.uint8): TensorType.UINT8,
}


@dataclass(frozen=True)
class Tensor:
    """A numeric array tagged with its element type.

    The shape of ``data`` is exact; nothing in the pipeline reshapes a
    tensor implicitly.
    """

    dtype: TensorType
    data: np.ndarray

    def __post_init__(self) -> None:
        actual = _NUMPY_TYPES.get(self.data.dtype)
        if actual is not self.dtype:
            raise InferenceError(
                f"tensor tagged {self.dtype} holds {self.data.dtype} data"
            )

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Tensor":
        """Tag a numpy array, rejecting dtypes outside :class:`TensorType`.

        Raises:
            InferenceError: If the array dtype is not supported.
        """
        array = np.asarray(array)
        dtype = _NUMPY_TYPES.get(array.dtype)
        if dtype is None:
            raise InferenceError(f"unsupported tensor dtype: {array.dtype}")
        return cls(dtype=dtype, data=array)

    @classmethod
    def float32(cls, array: np.ndarray) -> "Tensor":
        """Build a float32 tensor, converting the input if needed."""
        return cls(TensorType.FLOAT32, np.ascontiguousarray(array, dtype=np.float32))

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.data.shape)

    def as_float(self) -> np.ndarray | None:
        """Return the data if this is a float32/float64 tensor, else None."""
        return self.data if self.dtype.is_float else None

    def as_int(self) -> np.ndarray | None:
        """Return the data if this is an int32/int64 tensor, else None."""
        return self.data if self.dtype.is_int else None
