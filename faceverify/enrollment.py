"""
Enrollment Gate

Validation layer in front of DescriptorStore.append. This is the only
writer of face descriptors: callers confirm consent and identity
ownership before reaching it.
"""
import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from faceverify import config
from faceverify.descriptor import FaceDescriptor, Vector, utc_now
from faceverify.descriptor_store import DescriptorStore
from faceverify.errors import DescriptorLimitError, DescriptorShapeError, NonFiniteVectorError

logger = logging.getLogger(__name__)


class EnrollmentGate:
    """Validates descriptors and appends them to the store."""

    def __init__(
        self,
        store: DescriptorStore,
        max_descriptors_per_identity: int = config.MAX_DESCRIPTORS_PER_IDENTITY,
        algorithm_version: Optional[str] = None,
    ):
        if max_descriptors_per_identity < 1:
            raise ValueError("max_descriptors_per_identity must be at least 1")
        self.store = store
        self.max_descriptors_per_identity = max_descriptors_per_identity
        self.algorithm_version = algorithm_version or store.algorithm_version
        # Serializes the count check with the append
        self._lock = threading.Lock()

    def build_descriptor(
        self,
        identity_id: str,
        values: Iterable[float],
        algorithm_version: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> FaceDescriptor:
        """
        Validate raw values into a descriptor without storing it.

        Raises:
            DescriptorShapeError: If the values are not a flat numeric sequence,
                or no algorithm version is known
            NonFiniteVectorError: If any value is NaN or Infinity
        """
        try:
            vector = Vector(values)
        except ValueError as e:
            raise DescriptorShapeError(identity_id, f"Malformed descriptor for identity '{identity_id}': {e}") from None
        if len(vector) == 0:
            raise DescriptorShapeError(identity_id, f"Empty descriptor for identity '{identity_id}'")
        # Same precision as the stored bytes
        vector = vector.quantized()
        if not vector.is_finite():
            raise NonFiniteVectorError(identity_id)

        version = algorithm_version or self.algorithm_version or self.store.algorithm_version
        if not version:
            raise DescriptorShapeError(identity_id, "No algorithm version configured for enrollment")

        return FaceDescriptor(
            identity_id=identity_id,
            vector=vector,
            algorithm_version=version,
            created_at=created_at or utc_now(),
        )

    def enroll(
        self,
        identity_id: str,
        values: Iterable[float],
        algorithm_version: Optional[str] = None,
        replace: bool = False,
    ) -> FaceDescriptor:
        """
        Enroll a descriptor for a provisioned identity.

        Args:
            identity_id: Identity to enroll
            values: Descriptor components
            algorithm_version: Model tag, defaults to the configured one
            replace: Replace the identity's existing descriptors instead of appending

        Returns:
            The stored descriptor

        Raises:
            EnrollmentError: Any validation or store rejection
        """
        descriptor = self.build_descriptor(identity_id, values, algorithm_version)

        with self._lock:
            if replace:
                self.store.replace_identity(identity_id, [descriptor])
            else:
                existing = self.store.count_for(identity_id)
                if existing >= self.max_descriptors_per_identity:
                    raise DescriptorLimitError(identity_id, self.max_descriptors_per_identity)
                self.store.append(descriptor)

        logger.info(
            f"Enrolled descriptor for identity {identity_id} "
            f"({'replaced' if replace else 'appended'}, {self.store.count_for(identity_id)} stored)"
        )
        return descriptor
