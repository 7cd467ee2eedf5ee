"""
Face Descriptor Repository

Database operations for the identities and face_descriptors tables using
SQLAlchemy async. Descriptor bytes are decoded into `Vector` here, once,
when rows become domain objects.
"""
import logging
import uuid
from datetime import timezone
from typing import Iterable, List, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from faceverify.descriptor import FaceDescriptor, Vector
from faceverify.descriptor_store import DescriptorStore
from faceverify.models import FaceDescriptorDB, IdentityDB

logger = logging.getLogger(__name__)


class FaceDescriptorRepository:
    """
    Repository class for identity and descriptor database operations.

    All methods are async and require an AsyncSession.
    """

    @staticmethod
    async def create_identity(session: AsyncSession, identity_id: str) -> IdentityDB:
        """Create (or reactivate) an identity."""
        db_identity = await session.get(IdentityDB, identity_id)
        if db_identity is None:
            db_identity = IdentityDB(id=identity_id, is_active=True)
            session.add(db_identity)
        else:
            db_identity.is_active = True
        await session.commit()

        logger.info(f"Created DB identity {identity_id}")
        return db_identity

    @staticmethod
    async def identity_exists(session: AsyncSession, identity_id: str) -> bool:
        result = await session.execute(
            select(IdentityDB.id)
            .where(IdentityDB.id == identity_id)
            .where(IdentityDB.is_active.is_(True))
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_active_identity_ids(session: AsyncSession) -> List[str]:
        result = await session.execute(
            select(IdentityDB.id).where(IdentityDB.is_active.is_(True)).order_by(IdentityDB.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def deactivate_identity(session: AsyncSession, identity_id: str) -> bool:
        """
        Soft delete an identity and permanently delete its descriptors.

        Returns:
            True if the identity existed, False if not found
        """
        db_identity = await session.get(IdentityDB, identity_id)
        if db_identity is None:
            return False

        result = await session.execute(
            delete(FaceDescriptorDB).where(FaceDescriptorDB.identity_id == identity_id)
        )
        db_identity.is_active = False
        await session.commit()

        logger.info(f"Deactivated DB identity {identity_id} ({result.rowcount} descriptors deleted)")
        return True

    @staticmethod
    async def add_descriptor(session: AsyncSession, descriptor: FaceDescriptor) -> FaceDescriptorDB:
        """Persist one descriptor."""
        db_descriptor = FaceDescriptorRepository._domain_to_db(descriptor)
        session.add(db_descriptor)
        await session.commit()

        logger.info(f"Created DB descriptor {db_descriptor.id} for identity {descriptor.identity_id}")
        return db_descriptor

    @staticmethod
    async def replace_descriptors(
        session: AsyncSession,
        identity_id: str,
        descriptors: Iterable[FaceDescriptor],
    ) -> int:
        """Delete an identity's descriptors and store new ones in one transaction."""
        await session.execute(
            delete(FaceDescriptorDB).where(FaceDescriptorDB.identity_id == identity_id)
        )
        count = 0
        for descriptor in descriptors:
            session.add(FaceDescriptorRepository._domain_to_db(descriptor))
            count += 1
        await session.commit()

        logger.info(f"Replaced DB descriptors for identity {identity_id} ({count} stored)")
        return count

    @staticmethod
    async def get_all_descriptors(session: AsyncSession) -> List[FaceDescriptor]:
        """All descriptors of active identities, in enrollment order."""
        result = await session.execute(
            select(FaceDescriptorDB)
            .join(IdentityDB, IdentityDB.id == FaceDescriptorDB.identity_id)
            .where(IdentityDB.is_active.is_(True))
            .order_by(FaceDescriptorDB.created_at, FaceDescriptorDB.id)
        )
        descriptors = []
        for row in result.scalars().all():
            try:
                descriptors.append(FaceDescriptorRepository.db_to_domain(row))
            except ValueError as e:
                logger.warning(f"Skipping unreadable descriptor {row.id} for identity {row.identity_id}: {e}")
        return descriptors

    @staticmethod
    async def count(session: AsyncSession) -> int:
        """Get total count of stored descriptors."""
        result = await session.execute(select(func.count(FaceDescriptorDB.id)))
        return result.scalar() or 0

    @staticmethod
    def db_to_domain(db_descriptor: FaceDescriptorDB) -> FaceDescriptor:
        """
        Convert a database row to a FaceDescriptor.

        Raises:
            ValueError: If the stored bytes do not hold `dimensionality` float32 values
        """
        created_at = db_descriptor.created_at
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return FaceDescriptor(
            identity_id=db_descriptor.identity_id,
            vector=Vector.from_bytes(db_descriptor.vector, db_descriptor.dimensionality),
            algorithm_version=db_descriptor.algorithm_version,
            created_at=created_at,
        )

    @staticmethod
    def _domain_to_db(descriptor: FaceDescriptor) -> FaceDescriptorDB:
        return FaceDescriptorDB(
            id=uuid.uuid4(),
            identity_id=descriptor.identity_id,
            algorithm_version=descriptor.algorithm_version,
            dimensionality=descriptor.dimensionality,
            vector=descriptor.vector.to_bytes(),
            created_at=descriptor.created_at,
        )


async def load_store(session: AsyncSession, store: DescriptorStore) -> Tuple[int, int]:
    """
    Warm-load a store from the database.

    Returns:
        (identities loaded, descriptors loaded)
    """
    identity_ids = await FaceDescriptorRepository.get_active_identity_ids(session)
    descriptors = await FaceDescriptorRepository.get_all_descriptors(session)
    loaded = store.load(identity_ids, descriptors)
    return len(identity_ids), loaded
