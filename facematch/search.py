"""
Match search

Finds registered photos that match a query image under the active provider.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from facematch.backends import BackendFactory, RecognitionBackend
from facematch.comparator import DescriptorComparator
from facematch.config import SEARCH_MAX_CONCURRENCY
from facematch.exceptions import NoFaceDetected, PersistenceError
from facematch.extractor import DescriptorExtractor
from facematch.images import ImageInput
from facematch.interfaces import Candidate, CandidateSource, Descriptor, EmbeddingStore
from facematch.models import utcnow
from facematch.registry import ProviderRegistry
from facematch.schemas import DescriptorRecord, DescriptorStatus, MatchResult, ProviderConfig

logger = logging.getLogger(__name__)


class MatchSearch:
    """
    Scores every candidate photo against a query image.

    Candidate work runs concurrently, at most max_concurrency at a time.
    Stored descriptors are reused when they are usable under the active
    provider; otherwise the candidate photo is re-extracted on the fly.

    Attributes:
        persist_refreshed: Write descriptors extracted during a search back
            to the store so the next search can reuse them
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        extractor: DescriptorExtractor,
        comparator: DescriptorComparator,
        candidates: CandidateSource,
        store: EmbeddingStore,
        backends: BackendFactory,
        max_concurrency: int = SEARCH_MAX_CONCURRENCY,
        persist_refreshed: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.extractor = extractor
        self.comparator = comparator
        self.candidates = candidates
        self.store = store
        self.backends = backends
        self.max_concurrency = max(1, max_concurrency)
        self.persist_refreshed = persist_refreshed
        self.clock = clock

    async def search(
        self,
        query_image: ImageInput,
        threshold_override: Optional[float] = None,
    ) -> List[MatchResult]:
        """
        Find matches for a query image.

        Args:
            query_image: Remote URL, data URI, base64 text or raw bytes
            threshold_override: Use instead of the provider's threshold

        Returns:
            Matches with similarity >= threshold, best first, at most
            provider.max_results. Empty when no provider is active.

        Raises:
            NoFaceDetected: If no descriptor could be extracted from the query
            PersistenceError: If candidates or descriptors cannot be loaded
        """
        provider = await self.registry.get_active()
        if provider is None:
            logger.warning("Search requested but no provider is active")
            return []

        query = await self.extractor.extract(provider, query_image)
        if query is None:
            raise NoFaceDetected("No face detected in the provided image")

        threshold = provider.similarity_threshold if threshold_override is None else threshold_override

        candidates = await self.candidates.list_candidates()
        if not candidates:
            return []
        records = await self.store.get_many([c.entity_id for c in candidates])

        backend = self.backends.for_provider(provider)
        now = self.clock()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def score(candidate: Candidate) -> Optional[float]:
            async with semaphore:
                descriptor = self._reusable(backend, provider, records.get(candidate.entity_id), now)
                fresh = descriptor is None
                if fresh:
                    descriptor = await self.extractor.extract(provider, candidate.photo_url)
                    if descriptor is None:
                        logger.debug(f"Skipping {candidate.entity_id}: no descriptor")
                        return None
                    if self.persist_refreshed:
                        await self._write_back(candidate, descriptor)
                return await self.comparator.compare(
                    provider, query, descriptor, candidate.photo_url, fresh_b=fresh
                )

        scores = await asyncio.gather(*(score(c) for c in candidates))

        matches = [
            MatchResult(
                entity_id=candidate.entity_id,
                similarity=similarity,
                name=candidate.name,
                phone=candidate.phone,
                status=candidate.status,
                photo_url=candidate.photo_url,
            )
            for candidate, similarity in zip(candidates, scores)
            if similarity is not None and similarity >= threshold
        ]
        # list.sort is stable, so equal scores keep candidate order
        matches.sort(key=lambda m: m.similarity, reverse=True)

        logger.info(
            f"Search with {provider.provider_type.value}: {len(candidates)} candidates, "
            f"{len(matches)} above {threshold}, returning {min(len(matches), provider.max_results)}"
        )
        return matches[:provider.max_results]

    @staticmethod
    def _reusable(
        backend: RecognitionBackend,
        provider: ProviderConfig,
        record: Optional[DescriptorRecord],
        now: datetime,
    ) -> Optional[Descriptor]:
        """Stored descriptor if it was extracted by this provider type and has not expired."""
        if record is None or record.status != DescriptorStatus.EXTRACTED or not record.descriptor_id:
            return None
        if record.provider_type != provider.provider_type:
            return None
        if backend.is_expired(record.updated_at, now):
            return None
        return Descriptor(provider_type=provider.provider_type, value=record.descriptor_id)

    async def _write_back(self, candidate: Candidate, descriptor: Descriptor) -> None:
        try:
            await self.store.upsert(
                DescriptorRecord(
                    entity_id=candidate.entity_id,
                    descriptor_id=descriptor.value,
                    provider_type=descriptor.provider_type,
                    source_photo_url=candidate.photo_url,
                    status=DescriptorStatus.EXTRACTED,
                    updated_at=self.clock(),
                )
            )
        except PersistenceError as e:
            logger.warning(f"Could not cache refreshed descriptor for {candidate.entity_id}: {e}")
