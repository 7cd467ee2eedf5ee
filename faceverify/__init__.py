"""
Face Verification Service

Biometric member identification for gym check-in and face login:
- Euclidean matching of 128-d face descriptors
- Copy-on-write descriptor store with enrollment validation
- FastAPI service with optional PostgreSQL persistence
"""

__version__ = "1.0.0"

from faceverify.descriptor import FaceDescriptor, Vector
from faceverify.descriptor_store import DescriptorStore
from faceverify.enrollment import EnrollmentGate
from faceverify.matcher import MatcherEngine
from faceverify.metric import euclidean_distance
from faceverify.orchestrator import VerificationOrchestrator
from faceverify.schemas import (
    ErrorCause,
    ExtractionOutcome,
    VerificationConfig,
    VerificationResult,
    VerificationStatus,
)

__all__ = [
    "DescriptorStore",
    "EnrollmentGate",
    "ErrorCause",
    "ExtractionOutcome",
    "FaceDescriptor",
    "MatcherEngine",
    "Vector",
    "VerificationConfig",
    "VerificationOrchestrator",
    "VerificationResult",
    "VerificationStatus",
    "euclidean_distance",
]
