"""
Exception types for face verification and enrollment.

Messages carry identifiers and shapes only, never descriptor values.
"""


class FaceVerifyError(Exception):
    """Base class for all faceverify errors."""


class ShapeMismatchError(FaceVerifyError, ValueError):
    """Two vectors (or a vector and the configured dimensionality) disagree in length."""

    def __init__(self, expected: int, actual: int, message: str = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message or f"Vector length mismatch: expected {expected}, got {actual}")


class ExtractionFailure(FaceVerifyError):
    """The embedding provider failed (model unavailable, malformed input)."""


class EnrollmentError(FaceVerifyError):
    """A descriptor was rejected by the enrollment gate or the descriptor store."""

    def __init__(self, identity_id: str, message: str):
        self.identity_id = identity_id
        super().__init__(message)


class DescriptorShapeError(EnrollmentError, ShapeMismatchError):
    """Descriptor length or algorithm version disagrees with the store's constants."""

    def __init__(self, identity_id: str, message: str, expected=None, actual=None):
        self.identity_id = identity_id
        self.expected = expected
        self.actual = actual
        Exception.__init__(self, message)


class InvalidIdentityError(EnrollmentError):
    """The identity has not been provisioned."""

    def __init__(self, identity_id: str):
        super().__init__(identity_id, f"Identity '{identity_id}' is not provisioned")


class NonFiniteVectorError(EnrollmentError):
    """Descriptor contains NaN or Infinity."""

    def __init__(self, identity_id: str):
        super().__init__(identity_id, f"Descriptor for identity '{identity_id}' contains non-finite values")


class DescriptorLimitError(EnrollmentError):
    """Identity already holds the maximum number of descriptors."""

    def __init__(self, identity_id: str, limit: int):
        self.limit = limit
        super().__init__(
            identity_id,
            f"Identity '{identity_id}' already has the maximum of {limit} descriptors",
        )
