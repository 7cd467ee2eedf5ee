"""Tests for the Vector and FaceDescriptor value types."""

import numpy as np
import pytest

from faceverify.descriptor import FaceDescriptor, Vector


def test_vector_is_read_only():
    v = Vector([1.0, 2.0])
    with pytest.raises(ValueError):
        v.values[0] = 5.0


def test_vector_copies_input():
    source = np.array([1.0, 2.0])
    v = Vector(source)
    source[0] = 9.0
    assert v.tolist() == [1.0, 2.0]


@pytest.mark.parametrize("bad", [[[1.0, 2.0], [3.0, 4.0]], 3.0, ["a", "b"]])
def test_vector_rejects_malformed_input(bad):
    with pytest.raises(ValueError):
        Vector(bad)


def test_vector_repr_hides_values():
    v = Vector([0.123456, 0.654321])
    assert repr(v) == "Vector(dim=2)"
    assert "0.123" not in repr(v)


def test_is_finite():
    assert Vector([0.0, 1.0]).is_finite()
    assert not Vector([0.0, float("nan")]).is_finite()
    assert not Vector([float("inf"), 1.0]).is_finite()


def test_stored_layout_is_little_endian_float32():
    v = Vector([1.0, -2.5])
    data = v.to_bytes()
    assert len(data) == 8
    assert data == np.array([1.0, -2.5], dtype="<f4").tobytes()
    assert Vector.from_bytes(data, dimensionality=2) == v


def test_128d_descriptor_buffer_is_512_bytes():
    values = np.arange(128, dtype=np.float32) / 128
    data = values.tobytes()
    assert len(data) == 512
    assert len(Vector.from_bytes(data, dimensionality=128)) == 128


def test_from_bytes_rejects_bad_buffers():
    with pytest.raises(ValueError, match="not float32-aligned"):
        Vector.from_bytes(b"\x00" * 7)
    with pytest.raises(ValueError, match="expected 128"):
        Vector.from_bytes(b"\x00" * 508, dimensionality=128)


def test_face_descriptor_is_frozen():
    d = FaceDescriptor(identity_id="A", vector=Vector([0.0, 0.0]), algorithm_version="v1")
    assert d.dimensionality == 2
    assert d.created_at.tzinfo is not None
    with pytest.raises(AttributeError):
        d.identity_id = "B"


def test_quantized_matches_stored_precision():
    vector = Vector([0.6, 0.0])

    quantized = vector.quantized()

    assert quantized != vector
    assert quantized == Vector.from_bytes(vector.to_bytes())
    assert quantized.quantized() == quantized
