"""
codec.py - Byte encoding for embedding vectors stored in the metadata database.

Vectors are stored as a flat little-endian array of floats:

    float32 -> dimension * 4 bytes
    float64 -> dimension * 8 bytes

No header, no length prefix. The reader must know the precision, and usually
the dimension, up front. decode_vector(encode_vector(v)) == v exactly.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np

from metavss.errors import VectorCodecError

# Precision name -> little-endian numpy dtype
_DTYPES = {
    "float32": np.dtype("<f4"),
    "float64": np.dtype("<f8"),
}

VectorLike = Union[np.ndarray, Sequence[float]]


def _dtype(precision: str) -> np.dtype:
    try:
        return _DTYPES[precision]
    except KeyError:
        raise ValueError(
            f"Unsupported precision: {precision}. Supported: {sorted(_DTYPES)}"
        ) from None


def encode_vector(vector: VectorLike, precision: str = "float32") -> bytes:
    """
    Serialize a 1-D vector to bytes.

    Args:
        vector: The vector (numpy array or sequence of floats)
        precision: "float32" (4 bytes per component) or "float64" (8 bytes)

    Returns:
        len(vector) * itemsize bytes, little-endian
    """
    arr = np.asarray(vector, dtype=_dtype(precision))
    if arr.ndim != 1:
        raise VectorCodecError(f"expected a 1-D vector, got shape {arr.shape}")
    return arr.tobytes()


def decode_vector(
    data: bytes,
    precision: str = "float32",
    dimension: Optional[int] = None,
) -> np.ndarray:
    """
    Deserialize bytes produced by encode_vector().

    Args:
        data: The raw blob
        precision: Must match the precision used to encode
        dimension: If given, the decoded vector must have exactly this many components

    Returns:
        A writable 1-D numpy array in native byte order

    Raises:
        VectorCodecError: length is not a multiple of the element size, or the
                          decoded dimension differs from `dimension`
    """
    dtype = _dtype(precision)
    if len(data) % dtype.itemsize != 0:
        raise VectorCodecError(
            f"{len(data)} bytes is not a multiple of {dtype.itemsize} ({precision})"
        )
    # frombuffer returns a read-only view; copy so callers own the memory
    vec = np.frombuffer(data, dtype=dtype).astype(dtype.newbyteorder("="))
    if dimension is not None and vec.shape[0] != dimension:
        raise VectorCodecError(
            f"decoded dimension {vec.shape[0]} != expected dimension {dimension}"
        )
    return vec
