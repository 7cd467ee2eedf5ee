"""
Descriptor value types.

`Vector` is the single typed representation of a face descriptor. It is
validated once when built (from a sequence or from stored bytes) and is
read-only afterwards, so downstream code never re-interprets raw buffers.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Union

import numpy as np

# Stored layout: little-endian float32, as written by the face-api.js clients
STORAGE_DTYPE = np.dtype("<f4")


class Vector:
    """Immutable one-dimensional float64 descriptor."""

    __slots__ = ("_values",)

    def __init__(self, values: Union["Vector", Iterable[float], np.ndarray]):
        if isinstance(values, Vector):
            arr = values._values
        else:
            try:
                arr = np.array(values, dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Descriptor values must be numeric: {type(e).__name__}") from None
            if arr.ndim != 1:
                raise ValueError(f"Descriptor must be one-dimensional, got {arr.ndim} dimensions")
            arr.flags.writeable = False
        self._values = arr

    @classmethod
    def from_bytes(cls, data: bytes, dimensionality: int = None) -> "Vector":
        """
        Decode a stored descriptor buffer.

        Args:
            data: Raw little-endian float32 bytes
            dimensionality: Expected number of components, if known

        Raises:
            ValueError: If the buffer length is not a whole number of floats
                or does not hold `dimensionality` components
        """
        if len(data) % STORAGE_DTYPE.itemsize:
            raise ValueError(f"Descriptor buffer of {len(data)} bytes is not float32-aligned")
        count = len(data) // STORAGE_DTYPE.itemsize
        if dimensionality is not None and count != dimensionality:
            raise ValueError(f"Descriptor buffer holds {count} values, expected {dimensionality}")
        return cls(np.frombuffer(data, dtype=STORAGE_DTYPE))

    def to_bytes(self) -> bytes:
        """Encode to the stored float32 layout."""
        return self._values.astype(STORAGE_DTYPE).tobytes()

    def quantized(self) -> "Vector":
        """Round components to the stored float32 precision."""
        with np.errstate(over="ignore"):
            return Vector(self._values.astype(STORAGE_DTYPE))

    @property
    def values(self) -> np.ndarray:
        """Read-only view of the components."""
        return self._values

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self._values)))

    def tolist(self):
        return self._values.tolist()

    def __len__(self) -> int:
        return int(self._values.shape[0])

    def __eq__(self, other):
        if not isinstance(other, Vector):
            return NotImplemented
        return bool(np.array_equal(self._values, other._values))

    __hash__ = None

    def __repr__(self) -> str:
        # Never render biometric values
        return f"Vector(dim={len(self)})"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FaceDescriptor:
    """An enrolled descriptor for one identity."""

    identity_id: str
    vector: Vector
    algorithm_version: str
    created_at: datetime = field(default_factory=utc_now)

    @property
    def dimensionality(self) -> int:
        return len(self.vector)
