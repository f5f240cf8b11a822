"""Abstract RecognitionBackend interface for descriptor extraction and comparison."""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import ClassVar, Optional

import httpx

from facematch.config import PROVIDER_REQUEST_TIMEOUT_SECONDS
from facematch.images import normalize_for_upload
from facematch.schemas import ProviderConfig, ProviderType


class RecognitionBackend(ABC):
    """Base class for recognition backends, one subclass per provider type.

    Backends are thin adapters: they raise TransientProviderError (or a
    subclass) on any failure and never store anything. Converting those
    errors into None / 0.0 is the job of DescriptorExtractor and
    DescriptorComparator.

    Class attributes:
        provider_type: Discriminant this backend serves.
        descriptor_ttl: Validity window of issued ids, None if they never expire.
            Comparisons re-extract side B when this is set.
        needs_target_image: Whether similarity() wants the side-B image bytes.
        accepts_raw_input: Whether inputs that cannot be loaded as an image are
            used as the payload themselves (text as its UTF-8 bytes).
    """

    provider_type: ClassVar[ProviderType]
    descriptor_ttl: ClassVar[Optional[timedelta]] = None
    needs_target_image: ClassVar[bool] = False
    accepts_raw_input: ClassVar[bool] = False

    def __init__(
        self,
        provider: ProviderConfig,
        client: httpx.AsyncClient,
        timeout: float = PROVIDER_REQUEST_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.client = client
        self.timeout = timeout

    @property
    def credentials(self) -> dict:
        return self.provider.credentials

    def prepare(self, image_bytes: bytes) -> bytes:
        """Turn raw image bytes into the payload this backend uploads."""
        return normalize_for_upload(image_bytes)

    def is_expired(self, issued_at: Optional[datetime], now: datetime) -> bool:
        """Whether a descriptor issued at issued_at can no longer be used."""
        if self.descriptor_ttl is None:
            return False
        if issued_at is None:
            return True
        return now - issued_at >= self.descriptor_ttl

    @abstractmethod
    async def detect(self, image: bytes) -> str:
        """Extract a descriptor id from a prepared image.

        Raises:
            ProviderAuthorizationError: The vendor gates the feature.
            NoFaceInImage: The service found no face.
            TransientProviderError: Any other request failure.
        """

    @abstractmethod
    async def similarity(self, face_id_a: str, face_id_b: str, image_b: Optional[bytes] = None) -> float:
        """Similarity between two descriptor ids of this provider type.

        image_b is the prepared side-B image when needs_target_image is set.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider.id})"
