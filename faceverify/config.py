"""
Configuration settings for the Face Verification Service
"""
import os

# =============================================================================
# MATCHING SETTINGS
# =============================================================================

# Distance metric for descriptor comparison.
# Only Euclidean (L2) is supported: the 128-d dlib/face-api descriptors are
# trained for L2 geometry and the default threshold is an L2 distance.
DISTANCE_METRIC = os.getenv("FACE_DISTANCE_METRIC", "euclidean")

# Recognition threshold (maximum L2 distance for a match, inclusive)
# Lower threshold = stricter matching
# Dlib / face-api.js descriptors:
# - Strict: 0.5
# - Normal: 0.6
# - Relaxed: 0.7
RECOGNITION_THRESHOLD = float(os.getenv("FACE_SIMILARITY_THRESHOLD", "0.6"))

# Embedding dimension produced by the embedding provider
EMBEDDING_DIM = int(os.getenv("FACE_EMBEDDING_DIM", "128"))

# Tag of the model that produced enrolled descriptors.
# Descriptors from different versions are never compared.
ALGORITHM_VERSION = os.getenv("FACE_ALGORITHM_VERSION", "dlib-resnet-128-v1")

# Second-best identity within this distance of the best => AMBIGUOUS.
# Empty disables the check (best candidate always wins).
_margin = os.getenv("FACE_AMBIGUITY_MARGIN", "")
AMBIGUITY_MARGIN = float(_margin) if _margin else None

# =============================================================================
# ENROLLMENT SETTINGS
# =============================================================================

# Maximum descriptors kept per identity
MAX_DESCRIPTORS_PER_IDENTITY = int(os.getenv("MAX_DESCRIPTORS_PER_IDENTITY", "5"))

# =============================================================================
# EMBEDDING PROVIDER SETTINGS
# =============================================================================

# DeepFace model with 128-d output and L2 geometry
FACE_RECOGNITION_MODEL = os.getenv("FACE_RECOGNITION_MODEL", "Dlib")

# Face Detection Backend
FACE_DETECTOR_BACKEND = os.getenv("FACE_DETECTOR_BACKEND", "opencv")

# Seconds to wait for the provider (model loading included)
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("FACE_PROVIDER_TIMEOUT_SECONDS", "60"))

# Image preprocessing bounds (pixels)
MIN_IMAGE_SIZE = 224
OPTIMAL_IMAGE_SIZE = 800
MAX_IMAGE_SIZE = 4096
SUPPORTED_FORMATS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}

# =============================================================================
# DATABASE SETTINGS
# =============================================================================

# Empty URL runs the service without persistence (in-memory store only)
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))

# =============================================================================
# LOGGING
# =============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# =============================================================================
# API Configuration
# =============================================================================
API_TITLE = "Face Verification API"
API_DESCRIPTION = """
Biometric face verification for member check-in and face login.

## Features
- **Provision Identity**: Register a member identity eligible for enrollment
- **Enroll Descriptor**: Store a face descriptor for a provisioned identity
- **Verify**: Identify a member from a face image or a pre-extracted descriptor
- **Revoke Identity**: Remove a member and all of their biometric data

## Matching
- **Descriptors**: 128-d face embeddings
- **Metric**: Euclidean (L2) distance, inclusive threshold
"""
API_VERSION = "1.0.0"
