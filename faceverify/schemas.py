"""
Pydantic models for verification results, configuration and API schemas
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from faceverify import config


class VerificationStatus(str, Enum):
    MATCH = "MATCH"
    NO_MATCH = "NO_MATCH"
    NO_FACE = "NO_FACE"
    AMBIGUOUS = "AMBIGUOUS"
    ERROR = "ERROR"


class ErrorCause(str, Enum):
    EXTRACTION_FAILURE = "ExtractionFailure"
    TIMEOUT = "Timeout"
    SHAPE_MISMATCH = "ShapeMismatch"
    EMPTY_CONFIGURATION = "EmptyConfiguration"


_DISTANCE_STATUSES = {
    VerificationStatus.MATCH,
    VerificationStatus.NO_MATCH,
    VerificationStatus.AMBIGUOUS,
}


class VerificationConfig(BaseModel):
    """Recognized matching options"""
    distance_metric: Literal["euclidean"] = Field(default="euclidean", description="Distance metric")
    threshold: float = Field(default=0.6, gt=0, description="Maximum distance for a match (inclusive)")
    vector_dimensionality: Optional[int] = Field(default=128, gt=0, description="Descriptor length")
    algorithm_version: Optional[str] = Field(default=None, description="Embedding model tag")
    ambiguity_margin: Optional[float] = Field(default=None, ge=0, description="Near-tie margin for AMBIGUOUS")
    max_descriptors_per_identity: int = Field(default=5, ge=1, description="Enrollment cap per identity")
    provider_timeout_seconds: Optional[float] = Field(default=60.0, gt=0, description="Provider deadline")

    @classmethod
    def from_env(cls) -> "VerificationConfig":
        """Build from the environment-backed settings module."""
        return cls(
            distance_metric=config.DISTANCE_METRIC.lower(),
            threshold=config.RECOGNITION_THRESHOLD,
            vector_dimensionality=config.EMBEDDING_DIM or None,
            algorithm_version=config.ALGORITHM_VERSION or None,
            ambiguity_margin=config.AMBIGUITY_MARGIN,
            max_descriptors_per_identity=config.MAX_DESCRIPTORS_PER_IDENTITY,
            provider_timeout_seconds=config.PROVIDER_TIMEOUT_SECONDS or None,
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.vector_dimensionality) and bool(self.algorithm_version)


class ExtractionOutcome(BaseModel):
    """What the embedding provider reports for one image"""
    face_detected: bool = Field(..., description="Whether a face was detected")
    vector: Optional[List[float]] = Field(default=None, repr=False, description="Face descriptor")
    confidence: Optional[float] = Field(default=None, description="Detector confidence")
    algorithm_version: Optional[str] = Field(default=None, description="Model that produced the vector")


class VerificationResult(BaseModel):
    """Outcome of one verification call"""
    status: VerificationStatus = Field(..., description="Verification outcome")
    matched_identity_id: Optional[str] = Field(default=None, description="Matched identity (MATCH only)")
    distance: Optional[float] = Field(default=None, ge=0, description="Distance to the best candidate")
    confidence: float = Field(default=0.0, ge=0, le=1, description="Normalized score (0-1, higher is better)")
    error_cause: Optional[ErrorCause] = Field(default=None, description="Error classification (ERROR only)")
    error_detail: Optional[str] = Field(default=None, description="Error message (ERROR only)")
    excluded_identity_ids: List[str] = Field(default_factory=list, description="Candidates skipped for shape mismatch")
    message: Optional[str] = Field(default=None, description="Human-readable summary")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "MATCH",
                "matched_identity_id": "member-1024",
                "distance": 0.1414,
                "confidence": 0.7643,
                "error_cause": None,
                "error_detail": None,
                "excluded_identity_ids": [],
                "message": "Face recognized",
            }
        }

    @model_validator(mode="after")
    def _check_presence(self):
        is_match = self.status == VerificationStatus.MATCH
        is_error = self.status == VerificationStatus.ERROR
        if is_match != (self.matched_identity_id is not None):
            raise ValueError("matched_identity_id is present if and only if status is MATCH")
        if self.distance is not None and self.status not in _DISTANCE_STATUSES:
            raise ValueError(f"distance is not allowed for status {self.status.value}")
        if is_match and self.distance is None:
            raise ValueError("MATCH requires a distance")
        if is_error != (self.error_cause is not None) or is_error != (self.error_detail is not None):
            raise ValueError("error_cause and error_detail are present if and only if status is ERROR")
        return self

    @property
    def recognized(self) -> bool:
        return self.status == VerificationStatus.MATCH

    @classmethod
    def no_face(cls) -> "VerificationResult":
        return cls(status=VerificationStatus.NO_FACE, message="No face detected in image")

    @classmethod
    def error(cls, cause: ErrorCause, detail: str) -> "VerificationResult":
        return cls(
            status=VerificationStatus.ERROR,
            error_cause=cause,
            error_detail=detail,
            message="Face verification failed",
        )


# =============================================================================
# API schemas
# =============================================================================

class IdentityRecord(BaseModel):
    """Schema for a provisioned identity"""
    identity_id: str = Field(..., description="Identity identifier")
    descriptor_count: int = Field(..., ge=0, description="Number of enrolled descriptors")


class DescriptorRecord(BaseModel):
    """Schema for an enrolled descriptor (metadata only)"""
    identity_id: str = Field(..., description="Identity the descriptor belongs to")
    algorithm_version: str = Field(..., description="Embedding model tag")
    dimensionality: int = Field(..., description="Descriptor length")
    created_at: datetime = Field(..., description="Enrollment timestamp")


class EnrollVectorRequest(BaseModel):
    """Schema for enrolling a pre-extracted descriptor"""
    vector: List[float] = Field(..., min_length=1, description="Face descriptor")
    algorithm_version: Optional[str] = Field(default=None, description="Embedding model tag")
    replace: bool = Field(default=False, description="Replace all existing descriptors of the identity")


class VerifyVectorRequest(BaseModel):
    """Schema for verifying a pre-extracted probe descriptor"""
    vector: List[float] = Field(..., min_length=1, description="Probe descriptor")
    algorithm_version: Optional[str] = Field(default=None, description="Embedding model tag")
    scope: Optional[List[str]] = Field(
        default=None,
        description="Restrict candidates to these identities; absent or empty means every enrolled identity",
    )

    @field_validator("scope")
    @classmethod
    def _normalize_scope(cls, scope):
        if scope is None:
            return None
        ids = [s.strip() for s in scope if s.strip()]
        return ids or None


class EnrollResponse(BaseModel):
    """Schema for enrollment response"""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    descriptor: Optional[DescriptorRecord] = Field(default=None, description="Enrolled descriptor")
    descriptor_count: int = Field(..., ge=0, description="Descriptors now held by the identity")


class DeleteResponse(BaseModel):
    """Schema for revoke response"""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    deleted_id: Optional[str] = Field(default=None, description="Revoked identity")


class HealthResponse(BaseModel):
    """Schema for health/readiness response"""
    status: str = Field(..., description="healthy, degraded or not_ready")
    ready: bool = Field(..., description="Whether verification requests can be served")
    model_loaded: bool = Field(..., description="Whether the embedding model is loaded")
    config_complete: bool = Field(..., description="Whether matching configuration is complete")
    database_status: str = Field(..., description="healthy, unhealthy or disabled")
    identities: int = Field(..., ge=0, description="Provisioned identities")
    descriptors: int = Field(..., ge=0, description="Enrolled descriptors")


class ErrorResponse(BaseModel):
    """Schema for error responses"""
    error: str = Field(..., description="Error type")
    detail: str = Field(..., description="Detailed error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "InvalidIdentityError",
                "detail": "Identity 'member-1024' is not provisioned"
            }
        }
