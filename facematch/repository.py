"""
Face Match Repositories

Database operations using SQLAlchemy async:
- ProviderRepository: provider configs and the single-active invariant
- RelationshipRepository: the relationship rows that own partner photos
- SqlEmbeddingStore: descriptor records (EmbeddingStore implementation)
- SqlCandidateSource: the candidate corpus (CandidateSource implementation)
"""
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import logging

from facematch.config import PHOTO_BASE_URL
from facematch.exceptions import PersistenceError
from facematch.interfaces import Candidate
from facematch.models import DescriptorRecordDB, ProviderConfigDB, RelationshipDB, new_id, utcnow
from facematch.schemas import DescriptorRecord, DescriptorStatus, ProviderConfig, ProviderType

logger = logging.getLogger(__name__)


def resolve_photo_url(photo: str, base_url: str = PHOTO_BASE_URL) -> str:
    """Join a relative stored photo path onto base_url; absolute URLs and data URIs pass through."""
    if not base_url or photo.startswith(("http://", "https://", "data:")):
        return photo
    return f"{base_url.rstrip('/')}/{photo.lstrip('/')}"


class ProviderRepository:
    """
    Repository class for face_matching_providers operations.

    All methods are async and require an AsyncSession.
    """

    @staticmethod
    async def create(
        session: AsyncSession,
        name: str,
        provider_type: ProviderType,
        credentials: Dict[str, Any],
        similarity_threshold: float,
        max_results: int,
        enabled: bool = True,
    ) -> ProviderConfigDB:
        """
        Create a new, inactive provider config.

        Credentials are expected to be validated already (ProviderCreate).
        """
        db_provider = ProviderConfigDB(
            id=new_id(),
            name=name,
            provider_type=ProviderType(provider_type).value,
            is_active=False,
            enabled=enabled,
            credentials=credentials,
            similarity_threshold=similarity_threshold,
            max_results=max_results,
        )

        session.add(db_provider)
        await session.commit()
        await session.refresh(db_provider)

        logger.info(f"Created provider {db_provider.id} ({db_provider.provider_type})")
        return db_provider

    @staticmethod
    async def get(session: AsyncSession, provider_id: str) -> Optional[ProviderConfigDB]:
        """Get a provider by id."""
        result = await session.execute(
            select(ProviderConfigDB).where(ProviderConfigDB.id == provider_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_all(session: AsyncSession) -> List[ProviderConfigDB]:
        """All providers, oldest first."""
        result = await session.execute(
            select(ProviderConfigDB).order_by(ProviderConfigDB.created_at, ProviderConfigDB.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_active(session: AsyncSession) -> Optional[ProviderConfig]:
        """
        The provider that is both active and enabled.

        Returns:
            ProviderConfig snapshot, or None if no provider qualifies

        Raises:
            PersistenceError: If the provider table cannot be read
        """
        try:
            result = await session.execute(
                select(ProviderConfigDB)
                .where(ProviderConfigDB.is_active == True)
                .where(ProviderConfigDB.enabled == True)
            )
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load active provider: {e}") from e

        if not rows:
            return None
        if len(rows) > 1:
            logger.error(
                f"{len(rows)} providers are active and enabled; refusing to pick one "
                f"({', '.join(row.id for row in rows)})"
            )
            return None
        return ProviderRepository.db_to_schema(rows[0])

    @staticmethod
    async def set_active(session: AsyncSession, provider_id: str) -> Optional[ProviderConfigDB]:
        """
        Make one provider the active one, deactivating every other.

        Both updates commit together so the single-active invariant holds.

        Returns:
            The activated provider, or None if not found
        """
        db_provider = await ProviderRepository.get(session, provider_id)
        if db_provider is None:
            return None

        await session.execute(
            update(ProviderConfigDB)
            .where(ProviderConfigDB.id != provider_id)
            .where(ProviderConfigDB.is_active == True)
            .values(is_active=False, updated_at=utcnow())
        )
        db_provider.is_active = True
        await session.commit()
        await session.refresh(db_provider)

        logger.info(f"Activated provider {provider_id} ({db_provider.provider_type})")
        return db_provider

    @staticmethod
    async def delete(session: AsyncSession, provider_id: str) -> bool:
        """
        Permanently delete a provider.

        Returns:
            True if deleted, False if not found
        """
        result = await session.execute(
            delete(ProviderConfigDB).where(ProviderConfigDB.id == provider_id)
        )
        await session.commit()

        if result.rowcount > 0:
            logger.info(f"Deleted provider {provider_id}")
            return True
        return False

    @staticmethod
    def db_to_schema(db_provider: ProviderConfigDB) -> ProviderConfig:
        """Convert database model to an immutable ProviderConfig."""
        return ProviderConfig(
            id=db_provider.id,
            name=db_provider.name,
            provider_type=ProviderType(db_provider.provider_type),
            active=db_provider.is_active,
            enabled=db_provider.enabled,
            credentials=dict(db_provider.credentials or {}),
            similarity_threshold=db_provider.similarity_threshold,
            max_results=db_provider.max_results,
            updated_at=db_provider.updated_at,
        )


class RelationshipRepository:
    """Repository class for relationships."""

    @staticmethod
    async def create(
        session: AsyncSession,
        partner_name: str,
        partner_face_photo: Optional[str],
        partner_phone: Optional[str] = None,
        status: str = "pending",
    ) -> RelationshipDB:
        db_relationship = RelationshipDB(
            id=new_id(),
            partner_name=partner_name,
            partner_phone=partner_phone,
            partner_face_photo=partner_face_photo,
            status=status,
        )

        session.add(db_relationship)
        await session.commit()
        await session.refresh(db_relationship)

        logger.info(f"Created relationship {db_relationship.id}")
        return db_relationship

    @staticmethod
    async def get(session: AsyncSession, relationship_id: str) -> Optional[RelationshipDB]:
        result = await session.execute(
            select(RelationshipDB).where(RelationshipDB.id == relationship_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def delete(session: AsyncSession, relationship_id: str) -> bool:
        """
        Delete a relationship together with its descriptor record.

        The descriptor row is removed explicitly since SQLite does not
        enforce the ON DELETE CASCADE unless foreign keys are switched on.

        Returns:
            True if deleted, False if not found
        """
        await session.execute(
            delete(DescriptorRecordDB).where(DescriptorRecordDB.entity_id == relationship_id)
        )
        result = await session.execute(
            delete(RelationshipDB).where(RelationshipDB.id == relationship_id)
        )
        await session.commit()

        if result.rowcount > 0:
            logger.info(f"Deleted relationship {relationship_id} and its descriptor")
            return True
        return False


class SqlEmbeddingStore:
    """
    EmbeddingStore backed by the face_descriptors table.

    Each call runs in its own session; SQLAlchemy errors surface as
    PersistenceError.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def upsert(self, record: DescriptorRecord) -> DescriptorRecord:
        """Insert or replace the record for record.entity_id; latest write wins."""
        try:
            async with self.session_maker() as session:
                db_record = await session.merge(
                    DescriptorRecordDB(
                        entity_id=record.entity_id,
                        descriptor_id=record.descriptor_id,
                        provider_type=record.provider_type.value if record.provider_type else None,
                        source_photo_url=record.source_photo_url,
                        status=DescriptorStatus(record.status).value,
                        updated_at=record.updated_at or utcnow(),
                    )
                )
                await session.commit()
                stored = self.db_to_schema(db_record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store descriptor for {record.entity_id}: {e}") from e

        logger.debug(f"Stored {stored.status.value} descriptor for {stored.entity_id}")
        return stored

    async def get(self, entity_id: str) -> Optional[DescriptorRecord]:
        try:
            async with self.session_maker() as session:
                db_record = await session.get(DescriptorRecordDB, entity_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load descriptor for {entity_id}: {e}") from e
        return self.db_to_schema(db_record) if db_record else None

    async def get_many(self, entity_ids: Sequence[str]) -> dict[str, DescriptorRecord]:
        """
        Get descriptor records for several entities.

        Returns:
            Dictionary mapping entity_id to DescriptorRecord; entities without
            a record are absent
        """
        if not entity_ids:
            return {}

        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(DescriptorRecordDB).where(DescriptorRecordDB.entity_id.in_(list(entity_ids)))
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load descriptors: {e}") from e
        return {row.entity_id: self.db_to_schema(row) for row in rows}

    async def list_needing_descriptor(self, provider_type: ProviderType) -> List[DescriptorRecord]:
        """Records that are pending or none, or were produced by another provider type."""
        provider_type = ProviderType(provider_type).value
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(DescriptorRecordDB)
                    .where(
                        or_(
                            DescriptorRecordDB.status != DescriptorStatus.EXTRACTED.value,
                            DescriptorRecordDB.provider_type.is_(None),
                            DescriptorRecordDB.provider_type != provider_type,
                        )
                    )
                    .order_by(DescriptorRecordDB.updated_at, DescriptorRecordDB.entity_id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list descriptors needing extraction: {e}") from e
        return [self.db_to_schema(row) for row in rows]

    async def delete(self, entity_id: str) -> bool:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    delete(DescriptorRecordDB).where(DescriptorRecordDB.entity_id == entity_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete descriptor for {entity_id}: {e}") from e
        return result.rowcount > 0

    @staticmethod
    def db_to_schema(db_record: DescriptorRecordDB) -> DescriptorRecord:
        """Convert database model to Pydantic schema."""
        return DescriptorRecord(
            entity_id=db_record.entity_id,
            descriptor_id=db_record.descriptor_id,
            provider_type=ProviderType(db_record.provider_type) if db_record.provider_type else None,
            source_photo_url=db_record.source_photo_url,
            status=DescriptorStatus(db_record.status),
            updated_at=db_record.updated_at,
        )


class SqlCandidateSource:
    """CandidateSource over relationships that carry a partner face photo."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], photo_base_url: str = PHOTO_BASE_URL):
        self.session_maker = session_maker
        self.photo_base_url = photo_base_url

    def _to_candidate(self, row: RelationshipDB) -> Candidate:
        return Candidate(
            entity_id=row.id,
            photo_url=resolve_photo_url(row.partner_face_photo, self.photo_base_url),
            name=row.partner_name,
            phone=row.partner_phone,
            status=row.status,
        )

    async def list_candidates(self) -> List[Candidate]:
        """Every relationship with a non-empty photo, oldest first."""
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(RelationshipDB)
                    .where(RelationshipDB.partner_face_photo.is_not(None))
                    .where(RelationshipDB.partner_face_photo != "")
                    .order_by(RelationshipDB.created_at, RelationshipDB.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load candidates: {e}") from e
        return [self._to_candidate(row) for row in rows]

    async def get_candidate(self, entity_id: str) -> Optional[Candidate]:
        try:
            async with self.session_maker() as session:
                row = await session.get(RelationshipDB, entity_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load candidate {entity_id}: {e}") from e
        if row is None or not row.partner_face_photo:
            return None
        return self._to_candidate(row)
