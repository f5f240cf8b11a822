"""SDK-backed cloud backends (cloud_a, cloud_c).

These services are reached through vendor SDKs rather than plain HTTP. The
backend holds an injected FaceApiClient; deployments without the SDK get a
backend that soft-fails every call instead of a fake descriptor.
"""
import logging
from typing import Optional

import httpx

from facematch.backends.base import RecognitionBackend
from facematch.config import PROVIDER_REQUEST_TIMEOUT_SECONDS
from facematch.exceptions import NoFaceInImage, TransientProviderError
from facematch.interfaces import FaceApiClient
from facematch.schemas import ProviderConfig, ProviderType

logger = logging.getLogger(__name__)


class SdkBackend(RecognitionBackend):
    """Delegates detection and comparison to a FaceApiClient."""

    needs_target_image = True

    def __init__(
        self,
        provider: ProviderConfig,
        client: httpx.AsyncClient,
        timeout: float = PROVIDER_REQUEST_TIMEOUT_SECONDS,
        sdk_client: Optional[FaceApiClient] = None,
    ):
        super().__init__(provider, client, timeout)
        self.sdk_client = sdk_client

    def _require_client(self) -> FaceApiClient:
        if self.sdk_client is None:
            raise TransientProviderError(
                f"{self.provider_type.value} integration requires an SDK client; none is configured"
            )
        return self.sdk_client

    async def detect(self, image: bytes) -> str:
        face_id = await self._require_client().detect_face(image)
        if not face_id:
            raise NoFaceInImage(f"No face detected in image by {self.provider_type.value}")
        return face_id

    async def similarity(self, face_id_a: str, face_id_b: str, image_b: Optional[bytes] = None) -> float:
        return float(await self._require_client().compare_faces(face_id_a, face_id_b, image_b))


class CloudABackend(SdkBackend):
    """Access-key cloud service (access_key_id, secret_access_key, region)."""

    provider_type = ProviderType.CLOUD_A


class CloudCBackend(SdkBackend):
    """Project-scoped cloud service (project_id, credentials_json)."""

    provider_type = ProviderType.CLOUD_C
