"""
SQLAlchemy ORM Models for the Face Verification Database

identities:        members provisioned for face enrollment
face_descriptors:  enrolled descriptors, stored as little-endian float32 bytes
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, LargeBinary, String, Uuid

from faceverify.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class IdentityDB(Base):
    """SQLAlchemy model for identities table."""
    __tablename__ = "identities"

    id = Column(String(255), primary_key=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<IdentityDB(id='{self.id}', is_active={self.is_active})>"


class FaceDescriptorDB(Base):
    """
    SQLAlchemy model for face_descriptors table.

    The vector column holds raw biometric data; it is never included in
    repr or logs.
    """
    __tablename__ = "face_descriptors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    identity_id = Column(String(255), ForeignKey("identities.id"), nullable=False, index=True)
    algorithm_version = Column(String(128), nullable=False)
    dimensionality = Column(Integer, nullable=False)
    vector = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<FaceDescriptorDB(id={self.id}, identity_id='{self.identity_id}', "
            f"algorithm_version='{self.algorithm_version}', dimensionality={self.dimensionality})>"
        )
