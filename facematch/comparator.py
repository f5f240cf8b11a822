"""
Descriptor comparison

Scores two descriptors of the same provider type in [0, 1]. Any backend
failure scores 0.0, meaning "no evidence of a match".
"""
import asyncio
import logging
import math
from typing import Optional

from facematch.backends import BackendFactory
from facematch.config import PROVIDER_REQUEST_TIMEOUT_SECONDS
from facematch.exceptions import DescriptorMismatchError, TransientProviderError
from facematch.images import ImageInput, ImageLoader
from facematch.interfaces import Descriptor
from facematch.schemas import ProviderConfig

logger = logging.getLogger(__name__)


class DescriptorComparator:
    """
    Compares descriptors through the backend matching a provider's type.

    For backends whose ids expire, side B is re-extracted from image_b right
    before the comparison call, so a stale stored id is never sent. Callers
    that extracted side B themselves pass fresh_b to skip that second detect.
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

    async def compare(
        self,
        provider: ProviderConfig,
        descriptor_a: Descriptor,
        descriptor_b: Descriptor,
        image_b: Optional[ImageInput] = None,
        fresh_b: bool = False,
    ) -> float:
        """
        Similarity between two descriptors.

        Args:
            provider: Active provider config
            descriptor_a: Query descriptor
            descriptor_b: Candidate descriptor
            image_b: Candidate image, required by backends with expiring ids
            fresh_b: descriptor_b was extracted just now, so an expiring id
                is used as is instead of being re-extracted from image_b

        Returns:
            Similarity in [0, 1]; 0.0 when the backend could not compare

        Raises:
            DescriptorMismatchError: If the descriptors come from different
                provider types, or not from this provider's type
        """
        if not (descriptor_a.provider_type == descriptor_b.provider_type == provider.provider_type):
            raise DescriptorMismatchError(
                f"Cannot compare {descriptor_a.provider_type.value} and "
                f"{descriptor_b.provider_type.value} descriptors under {provider.provider_type.value}"
            )

        try:
            backend = self.backends.for_provider(provider)
            redetect = backend.descriptor_ttl is not None and not fresh_b

            target_bytes = None
            if image_b is not None and (redetect or backend.needs_target_image):
                target_bytes = backend.prepare(await self.images.load(image_b))
            elif redetect:
                raise TransientProviderError("Expiring descriptors need the candidate image to re-extract")

            target_id = descriptor_b.value
            if redetect:
                target_id = await asyncio.wait_for(backend.detect(target_bytes), timeout=self.timeout)

            score = await asyncio.wait_for(
                backend.similarity(descriptor_a.value, target_id, target_bytes),
                timeout=self.timeout,
            )

        except TransientProviderError as e:
            logger.warning(f"Comparison failed ({e.category}) with {provider.provider_type.value}: {e}")
            return 0.0

        except asyncio.TimeoutError:
            logger.warning(f"Comparison timed out after {self.timeout}s with {provider.provider_type.value}")
            return 0.0

        except Exception as e:
            logger.error(f"Unexpected error comparing descriptors with {provider.provider_type.value}: {e}", exc_info=True)
            return 0.0

        if score is None or math.isnan(score):
            return 0.0
        return max(0.0, min(1.0, float(score)))
