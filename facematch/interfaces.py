"""Core interfaces and value types for the matching pipeline.

The search and batch services depend on these abstractions rather than on
the SQLAlchemy implementations, so a different corpus or store can be
plugged in without touching them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from facematch.schemas import DescriptorRecord, ProviderType


@dataclass(frozen=True)
class Descriptor:
    """Opaque descriptor id tagged with the provider type that issued it.

    Attributes:
        provider_type: Backend that produced the id
        value: The id itself; meaningless under any other provider type
    """

    provider_type: ProviderType
    value: str


@dataclass(frozen=True)
class Candidate:
    """Entity with a registered photo, plus display fields for results.

    Attributes:
        entity_id: Relationship id
        photo_url: Fetchable URL (or data URI) of the registered photo
        name: Partner name
        phone: Partner phone
        status: Relationship status
    """

    entity_id: str
    photo_url: str
    name: str
    phone: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class ExtractionOutcome:
    """Result of one extraction attempt.

    A missing descriptor means "retry later"; failure names the category
    (authorization_required, no_face, image_unavailable, provider_error).
    """

    descriptor: Optional[Descriptor]
    failure: Optional[str] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.descriptor is not None


@runtime_checkable
class CandidateSource(Protocol):
    """Accessor for the corpus of entities with a non-empty photo."""

    async def list_candidates(self) -> List[Candidate]:
        ...

    async def get_candidate(self, entity_id: str) -> Optional[Candidate]:
        ...


@runtime_checkable
class EmbeddingStore(Protocol):
    """Persistence for one DescriptorRecord per entity.

    Implementations raise PersistenceError when the backing store fails.
    """

    async def upsert(self, record: DescriptorRecord) -> DescriptorRecord:
        ...

    async def get(self, entity_id: str) -> Optional[DescriptorRecord]:
        ...

    async def get_many(self, entity_ids: Sequence[str]) -> dict[str, DescriptorRecord]:
        ...

    async def list_needing_descriptor(self, provider_type: ProviderType) -> List[DescriptorRecord]:
        ...

    async def delete(self, entity_id: str) -> bool:
        ...


@runtime_checkable
class FaceApiClient(Protocol):
    """SDK client behind an SDK-based cloud backend (cloud_a, cloud_c).

    detect_face returns None when the image holds no face. compare_faces
    returns a similarity in [0, 1]. Both may raise on transport errors.
    """

    async def detect_face(self, image: bytes) -> Optional[str]:
        ...

    async def compare_faces(self, face_id_a: str, face_id_b: str, image_b: Optional[bytes]) -> float:
        ...
