"""Tests for the vector byte codec."""

from __future__ import annotations

import numpy as np
import pytest

from metavss.codec import decode_vector, encode_vector
from metavss.errors import VectorCodecError


def test_float32_round_trip_is_exact() -> None:
    vec = np.random.default_rng(0).standard_normal(300).astype("float32")

    blob = encode_vector(vec)

    assert len(blob) == 300 * 4
    out = decode_vector(blob, dimension=300)
    assert out.dtype == np.float32
    assert np.array_equal(out, vec)


def test_float64_round_trip_is_exact() -> None:
    vec = np.random.default_rng(1).standard_normal(7)

    blob = encode_vector(vec, precision="float64")

    assert len(blob) == 7 * 8
    assert np.array_equal(decode_vector(blob, precision="float64", dimension=7), vec)


def test_encoding_is_little_endian() -> None:
    assert encode_vector([1.0]) == b"\x00\x00\x80\x3f"
    assert encode_vector([1.0], precision="float64") == b"\x00\x00\x00\x00\x00\x00\xf0\x3f"


def test_decoded_vector_is_writable() -> None:
    out = decode_vector(encode_vector([1.0, 2.0]))
    out[0] = 5.0
    assert out.tolist() == [5.0, 2.0]


def test_ragged_length_is_rejected() -> None:
    with pytest.raises(VectorCodecError):
        decode_vector(b"\x00" * 6)


def test_dimension_mismatch_is_rejected() -> None:
    blob = encode_vector(np.zeros(4, dtype="float32"))
    with pytest.raises(VectorCodecError):
        decode_vector(blob, dimension=5)


def test_empty_blob_decodes_to_empty_vector() -> None:
    assert decode_vector(b"").shape == (0,)


def test_two_dimensional_input_is_rejected() -> None:
    with pytest.raises(VectorCodecError):
        encode_vector(np.zeros((2, 2)))


def test_unknown_precision_is_rejected() -> None:
    with pytest.raises(ValueError):
        encode_vector([1.0], precision="float16")
