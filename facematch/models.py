"""
SQLAlchemy ORM Models for the Face Match Database

Tables:
- face_matching_providers: recognition backend configurations
- relationships: relationship records carrying a partner face photo
- face_descriptors: one descriptor record per relationship (entity)
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Float, JSON, ForeignKey

from facematch.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, stored the same way on every backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class ProviderConfigDB(Base):
    """
    SQLAlchemy model for face_matching_providers table.

    At most one row is both active and enabled; activation goes through
    ProviderRepository.set_active which clears the flag everywhere else.
    """
    __tablename__ = "face_matching_providers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False)
    provider_type = Column(String(32), nullable=False, index=True)
    is_active = Column(Boolean, default=False, nullable=False, index=True)
    enabled = Column(Boolean, default=True, nullable=False)
    credentials = Column(JSON, nullable=False, default=dict)
    similarity_threshold = Column(Float, nullable=False, default=0.70)
    max_results = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<ProviderConfigDB(id={self.id}, type={self.provider_type}, active={self.is_active})>"


class RelationshipDB(Base):
    """
    SQLAlchemy model for relationships table.

    Only the columns the matcher needs: the partner display fields and the
    stored partner face photo.
    """
    __tablename__ = "relationships"

    id = Column(String(36), primary_key=True, default=new_id)
    partner_name = Column(Text, nullable=False)
    partner_phone = Column(Text, nullable=True)
    partner_face_photo = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="pending")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<RelationshipDB(id={self.id}, partner_name='{self.partner_name}')>"


class DescriptorRecordDB(Base):
    """
    SQLAlchemy model for face_descriptors table.

    Keyed by entity (relationship) id. descriptor_id is NULL while the record
    is pending or none.
    """
    __tablename__ = "face_descriptors"

    entity_id = Column(
        String(36),
        ForeignKey("relationships.id", ondelete="CASCADE"),
        primary_key=True,
    )
    descriptor_id = Column(Text, nullable=True)
    provider_type = Column(String(32), nullable=True, index=True)
    source_photo_url = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="none", index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<DescriptorRecordDB(entity_id={self.entity_id}, status={self.status})>"
