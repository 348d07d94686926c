"""
Vector Codec

Fixed-width binary form of an embedding vector.

Layout: little-endian IEEE-754 float64 values, concatenated in vector
order. No header and no length prefix; the length is byte count / 8 and
is constant within one store. Both backends persist exactly these bytes,
so a blob written by one is readable by the other.
"""

from collections.abc import Sequence

import numpy as np

from kbstore.core.exceptions import CorruptRecordError, DimensionMismatchError

VECTOR_DTYPE = np.dtype("<f8")
BYTES_PER_VALUE = VECTOR_DTYPE.itemsize


def encode_vector(vector: Sequence[float] | np.ndarray) -> bytes:
    """Serialize a vector to little-endian float64 bytes."""
    array = np.asarray(vector, dtype=VECTOR_DTYPE)
    if array.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {array.shape}")
    return array.tobytes()


def decode_array(blob: bytes, length: int | None = None) -> np.ndarray:
    """Decode bytes into a read-only float64 array."""
    if len(blob) % BYTES_PER_VALUE != 0:
        raise CorruptRecordError(
            f"Vector blob of {len(blob)} bytes is not a multiple of {BYTES_PER_VALUE}",
            context={"byte_length": len(blob)},
        )

    array = np.frombuffer(blob, dtype=VECTOR_DTYPE)

    if length is not None and array.shape[0] != length:
        raise DimensionMismatchError(
            f"Expected vector of length {length}, blob holds {array.shape[0]}",
            expected=length,
            actual=int(array.shape[0]),
        )

    return array


def decode_vector(blob: bytes, length: int | None = None) -> list[float]:
    """
    Deserialize little-endian float64 bytes into a list of floats.

    Raises:
        CorruptRecordError: byte length is not a multiple of 8
        DimensionMismatchError: length given and the blob disagrees
    """
    return decode_array(blob, length).tolist()


def vector_length(blob: bytes) -> int:
    """Number of values a blob holds."""
    return decode_array(blob).shape[0]
