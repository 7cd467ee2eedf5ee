"""Tests for the DeepFace embedding provider adapter (backend faked)."""

import base64
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from faceverify.errors import ExtractionFailure
from faceverify.face_service import DeepFaceEmbeddingProvider, EmbeddingProvider, decode_image_input


class FakeDeepFace:
    """Mimics DeepFace.represent for the calls the provider makes."""

    def __init__(self, representations=None, error=None, load_error=None):
        self.representations = representations if representations is not None else []
        self.error = error
        self.load_error = load_error
        self.calls = []

    def represent(self, img_path, model_name, detector_backend, enforce_detection, align=True):
        self.calls.append({"shape": img_path.shape, "detector_backend": detector_backend})
        if detector_backend == "skip":
            if self.load_error is not None:
                raise self.load_error
            return [{"embedding": [0.0] * 128}]
        if self.error is not None:
            raise self.error
        return self.representations


class FakeBackendProvider(DeepFaceEmbeddingProvider):
    def __init__(self, backend, **kwargs):
        super().__init__(algorithm_version="dlib-test", **kwargs)
        self.fake_backend = backend

    def _load_backend(self):
        return self.fake_backend


def png_bytes(width=320, height=240, mode="RGB"):
    buffer = BytesIO()
    Image.new(mode, (width, height)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_satisfies_provider_protocol():
    assert isinstance(FakeBackendProvider(FakeDeepFace()), EmbeddingProvider)


def test_extract_returns_descriptor():
    embedding = list(np.linspace(-0.2, 0.2, 128))
    backend = FakeDeepFace([{"embedding": embedding, "face_confidence": 0.97}])
    provider = FakeBackendProvider(backend)

    outcome = provider.extract(png_bytes())

    assert outcome.face_detected
    assert outcome.vector == pytest.approx(embedding)
    assert outcome.confidence == pytest.approx(0.97)
    assert outcome.algorithm_version == "dlib-test"
    assert provider.is_ready


def test_extract_no_face():
    backend = FakeDeepFace(error=ValueError("Face could not be detected"))

    outcome = FakeBackendProvider(backend).extract(png_bytes())

    assert not outcome.face_detected
    assert outcome.vector is None


def test_extract_empty_representations_is_no_face():
    outcome = FakeBackendProvider(FakeDeepFace([])).extract(png_bytes())

    assert not outcome.face_detected


def test_model_error_is_extraction_failure():
    backend = FakeDeepFace(error=RuntimeError("graph execution failed"))

    with pytest.raises(ExtractionFailure):
        FakeBackendProvider(backend).extract(png_bytes())


def test_undecodable_image_is_extraction_failure():
    with pytest.raises(ExtractionFailure, match="Failed to process image"):
        FakeBackendProvider(FakeDeepFace()).extract(b"definitely not an image")


def test_warm_up_failure_keeps_provider_not_ready():
    provider = FakeBackendProvider(FakeDeepFace(load_error=OSError("weights missing")))

    with pytest.raises(ExtractionFailure, match="unavailable"):
        provider.warm_up()
    assert not provider.is_ready


def test_warm_up_runs_once():
    backend = FakeDeepFace()
    provider = FakeBackendProvider(backend)

    provider.warm_up()
    provider.warm_up()

    assert len(backend.calls) == 1


def test_small_images_are_upscaled():
    provider = FakeBackendProvider(FakeDeepFace())

    array = provider.preprocess_image(png_bytes(100, 50))

    assert min(array.shape[:2]) >= 224
    assert array.shape[2] == 3


def test_large_images_are_downscaled():
    provider = FakeBackendProvider(FakeDeepFace())

    array = provider.preprocess_image(png_bytes(1600, 1200))

    assert max(array.shape[:2]) == 800


def test_alpha_is_flattened_to_rgb():
    provider = FakeBackendProvider(FakeDeepFace())

    array = provider.preprocess_image(png_bytes(300, 300, mode="RGBA"))

    assert array.shape == (300, 300, 3)


def test_decode_image_input_accepts_data_url():
    raw = png_bytes()
    encoded = "data:image/png;base64," + base64.b64encode(raw).decode()

    assert decode_image_input(encoded) == raw
    assert decode_image_input(raw) == raw
    with pytest.raises(ExtractionFailure):
        decode_image_input("not base64 at all!")
