"""
Embedding Provider using DeepFace

This module is the boundary to the face embedding model:
- Image decoding and preprocessing
- Face detection and descriptor extraction (delegated to DeepFace)
- Explicit, lazy model loading with a readiness check

Descriptors are returned as-is (not normalized): the Dlib model's
128-d output is compared with Euclidean distance.
"""
import base64
import binascii
import logging
import re
import threading
from io import BytesIO
from typing import Optional, Protocol, Union, runtime_checkable

import numpy as np
from PIL import Image, UnidentifiedImageError

from faceverify.config import (
    ALGORITHM_VERSION,
    FACE_DETECTOR_BACKEND,
    FACE_RECOGNITION_MODEL,
    MAX_IMAGE_SIZE,
    MIN_IMAGE_SIZE,
    OPTIMAL_IMAGE_SIZE,
)
from faceverify.errors import ExtractionFailure
from faceverify.schemas import ExtractionOutcome

logger = logging.getLogger(__name__)

ImageInput = Union[bytes, str]

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that turns an image into an ExtractionOutcome."""

    @property
    def is_ready(self) -> bool: ...

    def warm_up(self) -> None: ...

    def extract(self, image: ImageInput) -> ExtractionOutcome: ...


def decode_image_input(image: ImageInput) -> bytes:
    """
    Accept raw bytes or a base64 string (optionally a data URL).

    Raises:
        ExtractionFailure: If the string is not valid base64
    """
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)
    try:
        return base64.b64decode(_DATA_URL_PREFIX.sub("", image.strip()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ExtractionFailure(f"Invalid base64 image: {e}") from None


class DeepFaceEmbeddingProvider:
    """
    Embedding provider backed by DeepFace.

    The model is loaded on `warm_up()` (called at service startup) or on
    first use. Loading is guarded so concurrent requests trigger it once.
    """

    def __init__(
        self,
        model_name: str = FACE_RECOGNITION_MODEL,
        detector_backend: str = FACE_DETECTOR_BACKEND,
        algorithm_version: str = ALGORITHM_VERSION,
    ):
        self.model_name = model_name
        self.detector_backend = detector_backend
        self.algorithm_version = algorithm_version
        self._model_loaded = False
        self._backend = None
        self._load_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._model_loaded

    def _load_backend(self):
        """Import DeepFace (pulls in the ML runtime, so kept off import time)."""
        from deepface import DeepFace

        return DeepFace

    def warm_up(self) -> None:
        """
        Load the model by running a dummy inference.

        Raises:
            ExtractionFailure: If the model cannot be loaded
        """
        if self._model_loaded:
            return
        with self._load_lock:
            if self._model_loaded:
                return
            logger.info(f"Loading {self.model_name} model...")
            try:
                backend = self._load_backend()
                dummy_img = np.zeros((MIN_IMAGE_SIZE, MIN_IMAGE_SIZE, 3), dtype=np.uint8)
                backend.represent(
                    img_path=dummy_img,
                    model_name=self.model_name,
                    detector_backend="skip",
                    enforce_detection=False,
                )
            except Exception as e:
                logger.error(f"Failed to load {self.model_name} model: {e}")
                raise ExtractionFailure(f"Embedding model unavailable: {e}") from e
            self._backend = backend
            self._model_loaded = True
            logger.info(f"{self.model_name} model loaded successfully")

    def preprocess_image(self, image_bytes: bytes) -> np.ndarray:
        """
        Preprocess image bytes into numpy array.

        Steps:
        1. Load image from bytes
        2. Convert to RGB (flattening alpha onto white)
        3. Upscale images below the minimum size, shrink large ones to the optimal size
        4. Convert to numpy array

        Raises:
            ExtractionFailure: If image cannot be decoded
        """
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.error(f"Image preprocessing failed: {e}")
            raise ExtractionFailure(f"Failed to process image: {e}") from None

        if not image.width or not image.height:
            raise ExtractionFailure("Invalid image dimensions")

        if image.mode in ("RGBA", "LA", "P"):
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            image = background
        elif image.mode != "RGB":
            image = image.convert("RGB")

        width, height = image.size
        if width < MIN_IMAGE_SIZE or height < MIN_IMAGE_SIZE:
            scale = max(MIN_IMAGE_SIZE / width, MIN_IMAGE_SIZE / height)
            image = image.resize(
                (int(np.ceil(width * scale)), int(np.ceil(height * scale))),
                Image.Resampling.LANCZOS,
            )
            logger.debug(f"Image upscaled to {image.size}")
        elif max(width, height) > OPTIMAL_IMAGE_SIZE:
            bound = OPTIMAL_IMAGE_SIZE if max(width, height) <= MAX_IMAGE_SIZE else MAX_IMAGE_SIZE
            image.thumbnail((bound, bound), Image.Resampling.LANCZOS)
            logger.debug(f"Image resized to {image.size}")

        return np.array(image)

    def extract(self, image: ImageInput) -> ExtractionOutcome:
        """
        Complete pipeline: image -> descriptor.

        Returns:
            ExtractionOutcome with face_detected=False when no face is found

        Raises:
            ExtractionFailure: If the image is malformed or the model fails
        """
        self.warm_up()
        img_array = self.preprocess_image(decode_image_input(image))

        try:
            representations = self._backend.represent(
                img_path=img_array,
                model_name=self.model_name,
                detector_backend=self.detector_backend,
                enforce_detection=True,
                align=True,
            )
        except ValueError as e:
            # DeepFace signals "Face could not be detected" with ValueError
            logger.info(f"No face detected: {e}")
            return ExtractionOutcome(face_detected=False)
        except Exception as e:
            logger.error(f"Descriptor extraction failed: {e}")
            raise ExtractionFailure(f"Face encoding extraction failed: {e}") from e

        if not representations:
            return ExtractionOutcome(face_detected=False)

        if len(representations) > 1:
            logger.info(f"Detected {len(representations)} faces, using the first")

        first = representations[0]
        embedding = first.get("embedding")
        if embedding is None:
            raise ExtractionFailure("Invalid face descriptor extracted")

        face_confidence: Optional[float] = first.get("face_confidence")
        logger.info(
            f"Face descriptor extracted: length={len(embedding)}, "
            f"confidence={face_confidence if face_confidence is not None else 'n/a'}"
        )

        return ExtractionOutcome(
            face_detected=True,
            vector=[float(v) for v in embedding],
            confidence=float(face_confidence) if face_confidence is not None else None,
            algorithm_version=self.algorithm_version,
        )
