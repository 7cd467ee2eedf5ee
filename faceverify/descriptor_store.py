"""
In-memory Descriptor Store

This module holds the enrolled face descriptors that make up the matching
population. It provides:
- Identity provisioning and revocation
- Appending and replacing descriptors (enrollment gate only)
- Snapshot reads of the full or scoped population

Readers never take the lock: writers build a new tuple under the lock and
publish it with a single reference assignment (copy-on-write), so an
in-flight verification keeps the snapshot it started with.

Persistence lives in the repository; this store is warm-loaded from it.
"""
import logging
import threading
from typing import Collection, Dict, FrozenSet, Iterable, Optional, Tuple

from faceverify.descriptor import FaceDescriptor
from faceverify.errors import DescriptorShapeError, InvalidIdentityError

logger = logging.getLogger(__name__)

Population = Tuple[FaceDescriptor, ...]


class DescriptorStore:
    """
    Thread-safe store of enrolled descriptors.

    The vector dimensionality and algorithm version are fixed either at
    construction or by the first descriptor appended.
    """

    def __init__(self, vector_dimensionality: Optional[int] = None, algorithm_version: Optional[str] = None):
        self._lock = threading.RLock()
        self._dimensionality = vector_dimensionality
        self._algorithm_version = algorithm_version
        self._descriptors: Population = ()
        self._identities: FrozenSet[str] = frozenset()

    @property
    def vector_dimensionality(self) -> Optional[int]:
        return self._dimensionality

    @property
    def algorithm_version(self) -> Optional[str]:
        return self._algorithm_version

    @property
    def count(self) -> int:
        """Number of enrolled descriptors."""
        return len(self._descriptors)

    @property
    def identity_count(self) -> int:
        """Number of provisioned identities."""
        return len(self._identities)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_candidates(self, scope: Optional[Collection[str]] = None) -> Population:
        """
        Get the matching population.

        Args:
            scope: Identity ids to restrict to, or None for every enrolled identity

        Returns:
            Immutable snapshot of descriptors in enrollment order
        """
        snapshot = self._descriptors
        if scope is None:
            return snapshot
        allowed = frozenset(scope)
        return tuple(d for d in snapshot if d.identity_id in allowed)

    def descriptors_for(self, identity_id: str) -> Population:
        return tuple(d for d in self._descriptors if d.identity_id == identity_id)

    def count_for(self, identity_id: str) -> int:
        return sum(1 for d in self._descriptors if d.identity_id == identity_id)

    def is_provisioned(self, identity_id: str) -> bool:
        return identity_id in self._identities

    def identity_counts(self) -> Dict[str, int]:
        """Descriptor count per provisioned identity."""
        counts = {identity_id: 0 for identity_id in self._identities}
        for d in self._descriptors:
            counts[d.identity_id] = counts.get(d.identity_id, 0) + 1
        return counts

    # ------------------------------------------------------------------
    # Identity lifecycle
    # ------------------------------------------------------------------

    def provision_identity(self, identity_id: str) -> bool:
        """
        Make an identity eligible for enrollment.

        Returns:
            True if newly provisioned, False if it already was
        """
        if not identity_id:
            raise ValueError("identity_id must be a non-empty string")
        with self._lock:
            if identity_id in self._identities:
                return False
            self._identities = self._identities | {identity_id}
            logger.info(f"Provisioned identity {identity_id}")
            return True

    def revoke_identity(self, identity_id: str) -> int:
        """
        Remove an identity and all of its descriptors.

        Returns:
            Number of descriptors removed
        """
        with self._lock:
            kept = tuple(d for d in self._descriptors if d.identity_id != identity_id)
            removed = len(self._descriptors) - len(kept)
            self._descriptors = kept
            self._identities = self._identities - {identity_id}
            logger.info(f"Revoked identity {identity_id} ({removed} descriptors removed)")
            return removed

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check(self, descriptor: FaceDescriptor) -> None:
        if descriptor.identity_id not in self._identities:
            raise InvalidIdentityError(descriptor.identity_id)

        dim = descriptor.dimensionality
        if self._dimensionality is not None and dim != self._dimensionality:
            raise DescriptorShapeError(
                descriptor.identity_id,
                f"Descriptor length {dim} does not match store dimensionality {self._dimensionality}",
                expected=self._dimensionality,
                actual=dim,
            )
        if self._algorithm_version is not None and descriptor.algorithm_version != self._algorithm_version:
            raise DescriptorShapeError(
                descriptor.identity_id,
                f"Descriptor algorithm version '{descriptor.algorithm_version}' does not match "
                f"store version '{self._algorithm_version}'",
            )

    def _establish(self, descriptor: FaceDescriptor) -> None:
        if self._dimensionality is None:
            self._dimensionality = descriptor.dimensionality
        if self._algorithm_version is None:
            self._algorithm_version = descriptor.algorithm_version

    def append(self, descriptor: FaceDescriptor) -> None:
        """
        Add a descriptor to the population.

        Raises:
            InvalidIdentityError: If the identity is not provisioned
            DescriptorShapeError: If length or algorithm version disagree with the store
        """
        with self._lock:
            self._check(descriptor)
            self._establish(descriptor)
            self._descriptors = self._descriptors + (descriptor,)
            logger.debug(f"Appended descriptor for identity {descriptor.identity_id}")

    def replace_identity(self, identity_id: str, descriptors: Iterable[FaceDescriptor]) -> None:
        """
        Atomically replace every descriptor of an identity.

        Either all new descriptors are accepted or the store is left unchanged.
        """
        descriptors = tuple(descriptors)
        with self._lock:
            for d in descriptors:
                if d.identity_id != identity_id:
                    raise ValueError("All replacement descriptors must belong to the replaced identity")
                self._check(d)
            if descriptors:
                self._establish(descriptors[0])
            kept = tuple(d for d in self._descriptors if d.identity_id != identity_id)
            self._descriptors = kept + descriptors
            logger.info(f"Replaced descriptors for identity {identity_id} ({len(descriptors)} stored)")

    def discard(self, descriptor: FaceDescriptor) -> bool:
        """
        Remove one specific descriptor object.

        Returns:
            True if removed, False if not found
        """
        with self._lock:
            kept = tuple(d for d in self._descriptors if d is not descriptor)
            if len(kept) == len(self._descriptors):
                return False
            self._descriptors = kept
            return True

    def load(self, identity_ids: Iterable[str], descriptors: Iterable[FaceDescriptor]) -> int:
        """
        Bulk-load provisioned identities and their descriptors (startup warm-load).

        Descriptors that fail validation are skipped and logged.

        Returns:
            Number of descriptors loaded
        """
        accepted = []
        with self._lock:
            self._identities = self._identities | frozenset(identity_ids)
            for d in descriptors:
                try:
                    self._check(d)
                except (InvalidIdentityError, DescriptorShapeError) as e:
                    logger.warning(f"Skipping stored descriptor for identity {d.identity_id}: {e}")
                    continue
                self._establish(d)
                accepted.append(d)
            self._descriptors = self._descriptors + tuple(accepted)
        loaded = len(accepted)
        logger.info(f"Loaded {loaded} descriptors for {self.identity_count} identities")
        return loaded
