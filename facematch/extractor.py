"""
Descriptor extraction

Turns an image into a provider-tagged descriptor using the backend for the
given provider. Extraction never raises for provider-side problems and never
touches persisted state; storing the result is the caller's job.
"""
import asyncio
import logging
from typing import Optional

from facematch.backends import BackendFactory, RecognitionBackend
from facematch.config import PROVIDER_REQUEST_TIMEOUT_SECONDS
from facematch.exceptions import ImageLoadError, TransientProviderError
from facematch.images import ImageInput, ImageLoader
from facematch.interfaces import Descriptor, ExtractionOutcome
from facematch.schemas import ProviderConfig

logger = logging.getLogger(__name__)


class DescriptorExtractor:
    """
    Extracts descriptors through the backend matching a provider's type.

    Every failure (authorization gating, no face, unreachable image, HTTP
    error, timeout) comes back as an ExtractionOutcome without a descriptor,
    which callers treat as "could not extract right now".
    """

    def __init__(
        self,
        backends: BackendFactory,
        images: ImageLoader,
        timeout: float = PROVIDER_REQUEST_TIMEOUT_SECONDS,
    ):
        self.backends = backends
        self.images = images
        self.timeout = timeout

    async def attempt(self, provider: ProviderConfig, image: ImageInput) -> ExtractionOutcome:
        """
        Try to extract a descriptor and report why it failed if it did.

        Args:
            provider: Active provider config
            image: Remote URL, data URI, base64 text or raw bytes

        Returns:
            ExtractionOutcome with either a descriptor or a failure category
        """
        try:
            backend = self.backends.for_provider(provider)
            payload = backend.prepare(await self._load(backend, image))
            face_id = await asyncio.wait_for(backend.detect(payload), timeout=self.timeout)

        except TransientProviderError as e:
            logger.warning(f"Descriptor extraction failed ({e.category}) with {provider.provider_type.value}: {e}")
            return ExtractionOutcome(descriptor=None, failure=e.category, detail=str(e))

        except asyncio.TimeoutError:
            logger.warning(f"Descriptor extraction timed out after {self.timeout}s with {provider.provider_type.value}")
            return ExtractionOutcome(
                descriptor=None,
                failure="provider_error",
                detail=f"Timed out after {self.timeout}s",
            )

        except Exception as e:
            logger.error(f"Unexpected error extracting descriptor with {provider.provider_type.value}: {e}", exc_info=True)
            return ExtractionOutcome(descriptor=None, failure="provider_error", detail=str(e))

        return ExtractionOutcome(descriptor=Descriptor(provider_type=provider.provider_type, value=face_id))

    async def extract(self, provider: ProviderConfig, image: ImageInput) -> Optional[Descriptor]:
        """Extract a descriptor, or None when the backend could not produce one."""
        outcome = await self.attempt(provider, image)
        return outcome.descriptor

    async def _load(self, backend: RecognitionBackend, image: ImageInput) -> bytes:
        try:
            return await self.images.load(image)
        except ImageLoadError as e:
            if not backend.accepts_raw_input:
                raise
            # Hash the input itself so the local fallback never fails
            logger.info(f"Using the raw input as payload for {backend.provider_type.value}: {e}")
            return image.encode("utf-8") if isinstance(image, str) else bytes(image)
