"""In-memory fakes and builders shared by the tests."""

from __future__ import annotations

import base64
from io import BytesIO
from typing import Dict, List, Optional, Sequence

from PIL import Image

from facematch.interfaces import Candidate
from facematch.registry import ProviderRegistry
from facematch.schemas import DescriptorRecord, DescriptorStatus, ProviderConfig, ProviderType


def make_provider(
    provider_type: ProviderType = ProviderType.LOCAL_FALLBACK,
    similarity_threshold: float = 0.5,
    max_results: int = 10,
    credentials: Optional[dict] = None,
    provider_id: str = "provider-1",
) -> ProviderConfig:
    return ProviderConfig(
        id=provider_id,
        name=f"{provider_type.value} provider",
        provider_type=provider_type,
        active=True,
        enabled=True,
        credentials=credentials or {},
        similarity_threshold=similarity_threshold,
        max_results=max_results,
    )


def make_registry(provider: Optional[ProviderConfig]) -> ProviderRegistry:
    async def loader():
        return provider

    return ProviderRegistry(loader)


def png_bytes(color: tuple = (200, 30, 30), size: tuple = (8, 8)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def data_uri(payload: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(payload).decode("ascii")


class FakeCandidateSource:
    """CandidateSource over a fixed list."""

    def __init__(self, candidates: Sequence[Candidate]):
        self.candidates = list(candidates)

    async def list_candidates(self) -> List[Candidate]:
        return list(self.candidates)

    async def get_candidate(self, entity_id: str) -> Optional[Candidate]:
        return next((c for c in self.candidates if c.entity_id == entity_id), None)


class InMemoryEmbeddingStore:
    """EmbeddingStore keeping records in a dict; upserts are recorded in order."""

    def __init__(self, records: Sequence[DescriptorRecord] = ()):
        self.records: Dict[str, DescriptorRecord] = {r.entity_id: r for r in records}
        self.upserts: List[DescriptorRecord] = []

    async def upsert(self, record: DescriptorRecord) -> DescriptorRecord:
        self.records[record.entity_id] = record
        self.upserts.append(record)
        return record

    async def get(self, entity_id: str) -> Optional[DescriptorRecord]:
        return self.records.get(entity_id)

    async def get_many(self, entity_ids: Sequence[str]) -> Dict[str, DescriptorRecord]:
        return {i: self.records[i] for i in entity_ids if i in self.records}

    async def list_needing_descriptor(self, provider_type: ProviderType) -> List[DescriptorRecord]:
        return [
            r for r in self.records.values()
            if r.status != DescriptorStatus.EXTRACTED or r.provider_type != provider_type
        ]

    async def delete(self, entity_id: str) -> bool:
        return self.records.pop(entity_id, None) is not None


def make_candidates(count: int) -> List[Candidate]:
    return [
        Candidate(entity_id=f"e{i}", photo_url=f"https://photos.test/e{i}.png", name=f"Partner {i}")
        for i in range(1, count + 1)
    ]


def extracted_record(entity_id: str, descriptor_id: str, provider_type=ProviderType.LOCAL_FALLBACK, **kwargs):
    return DescriptorRecord(
        entity_id=entity_id,
        descriptor_id=descriptor_id,
        provider_type=provider_type,
        source_photo_url=f"https://photos.test/{entity_id}.png",
        status=DescriptorStatus.EXTRACTED,
        **kwargs,
    )


