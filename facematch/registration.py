"""
Photo registration

Extracts and stores the descriptor for an entity's registered photo. A record
is always written, so every registered photo is visible to the batch job even
when extraction failed or no provider was configured.
"""
import logging
from typing import Optional, Tuple

from facematch.extractor import DescriptorExtractor
from facematch.images import ImageInput
from facematch.interfaces import EmbeddingStore, ExtractionOutcome
from facematch.models import utcnow
from facematch.registry import ProviderRegistry
from facematch.schemas import DescriptorRecord, DescriptorStatus

logger = logging.getLogger(__name__)


class PhotoRegistrar:
    """Stores one DescriptorRecord per entity after an extraction attempt."""

    def __init__(self, registry: ProviderRegistry, extractor: DescriptorExtractor, store: EmbeddingStore):
        self.registry = registry
        self.extractor = extractor
        self.store = store

    async def register(
        self,
        entity_id: str,
        photo_url: ImageInput,
    ) -> Tuple[DescriptorRecord, Optional[ExtractionOutcome]]:
        """
        Extract and store the descriptor for an entity's photo.

        Args:
            entity_id: Relationship id owning the photo
            photo_url: Photo to extract from

        Returns:
            Tuple of (stored record, extraction outcome). The outcome is None
            when no provider is active and the record was stored as none.

        Raises:
            PersistenceError: If the record cannot be stored
        """
        source = photo_url if isinstance(photo_url, str) else ""
        provider = await self.registry.get_active()

        if provider is None:
            record = DescriptorRecord(
                entity_id=entity_id,
                source_photo_url=source,
                status=DescriptorStatus.NONE,
                updated_at=utcnow(),
            )
            logger.info(f"No active provider; registered photo for {entity_id} without a descriptor")
            return await self.store.upsert(record), None

        outcome = await self.extractor.attempt(provider, photo_url)

        if outcome.ok:
            record = DescriptorRecord(
                entity_id=entity_id,
                descriptor_id=outcome.descriptor.value,
                provider_type=outcome.descriptor.provider_type,
                source_photo_url=source,
                status=DescriptorStatus.EXTRACTED,
                updated_at=utcnow(),
            )
            logger.info(f"Extracted {provider.provider_type.value} descriptor for {entity_id}")
        else:
            # Placeholder so the entity is picked up by the next regeneration run
            record = DescriptorRecord(
                entity_id=entity_id,
                descriptor_id=None,
                provider_type=provider.provider_type,
                source_photo_url=source,
                status=DescriptorStatus.PENDING,
                updated_at=utcnow(),
            )
            logger.warning(f"Descriptor for {entity_id} left pending ({outcome.failure}): {outcome.detail}")

        return await self.store.upsert(record), outcome
