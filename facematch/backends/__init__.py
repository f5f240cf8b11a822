"""Recognition backend implementations.

One backend per provider type:
- cloud_a / cloud_c: SDK-backed cloud services (pluggable FaceApiClient)
- cloud_b: REST face API with expiring face ids
- custom_http: any service speaking the detect/compare JSON contract
- local_fallback: byte-hash descriptors, no network

Use BackendFactory to build the backend for a provider config.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Type

import httpx

from facematch.backends.base import RecognitionBackend
from facematch.backends.cloud_b import CloudBBackend
from facematch.backends.custom_http import CustomHttpBackend
from facematch.backends.local import LocalFallbackBackend
from facematch.backends.sdk import CloudABackend, CloudCBackend, SdkBackend
from facematch.config import PROVIDER_REQUEST_TIMEOUT_SECONDS
from facematch.interfaces import FaceApiClient
from facematch.schemas import ProviderConfig, ProviderType

logger = logging.getLogger(__name__)

BACKENDS: Dict[ProviderType, Type[RecognitionBackend]] = {
    ProviderType.CLOUD_A: CloudABackend,
    ProviderType.CLOUD_B: CloudBBackend,
    ProviderType.CLOUD_C: CloudCBackend,
    ProviderType.CUSTOM_HTTP: CustomHttpBackend,
    ProviderType.LOCAL_FALLBACK: LocalFallbackBackend,
}


class BackendFactory:
    """Builds the backend for a provider config.

    Attributes:
        client: Shared httpx client for HTTP backends
        sdk_clients: SDK clients for cloud_a / cloud_c, keyed by provider type
        timeout: Per-call timeout handed to every backend

    Example:
        >>> factory = BackendFactory(http_client)
        >>> backend = factory.for_provider(provider)
        >>> face_id = await backend.detect(backend.prepare(image_bytes))
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        sdk_clients: Optional[Mapping[ProviderType, FaceApiClient]] = None,
        timeout: float = PROVIDER_REQUEST_TIMEOUT_SECONDS,
    ):
        self.client = client
        self.sdk_clients = dict(sdk_clients or {})
        self.timeout = timeout

    def backend_class(self, provider_type: ProviderType) -> Type[RecognitionBackend]:
        try:
            return BACKENDS[ProviderType(provider_type)]
        except (KeyError, ValueError):
            raise ValueError(
                f"Unknown provider type: '{provider_type}'. "
                f"Supported: {', '.join(t.value for t in BACKENDS)}"
            )

    def for_provider(self, provider: ProviderConfig) -> RecognitionBackend:
        backend_class = self.backend_class(provider.provider_type)

        if issubclass(backend_class, SdkBackend):
            return backend_class(
                provider,
                self.client,
                self.timeout,
                sdk_client=self.sdk_clients.get(provider.provider_type),
            )
        return backend_class(provider, self.client, self.timeout)


__all__ = [
    "BACKENDS",
    "BackendFactory",
    "RecognitionBackend",
    "CloudABackend",
    "CloudBBackend",
    "CloudCBackend",
    "CustomHttpBackend",
    "LocalFallbackBackend",
]
