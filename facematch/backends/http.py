"""Shared plumbing for backends that talk to a recognition service over HTTP."""
import logging
from typing import Any, Dict, Optional

import httpx

from facematch.backends.base import RecognitionBackend
from facematch.exceptions import TransientProviderError

logger = logging.getLogger(__name__)


class HttpBackend(RecognitionBackend):
    """RecognitionBackend whose requests go through the shared httpx client."""

    def auth_headers(self) -> Dict[str, str]:
        return {}

    async def post(self, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> httpx.Response:
        """
        POST to the service and return the successful response.

        Raises:
            TransientProviderError: On transport errors or non-2xx responses
        """
        request_headers = {**self.auth_headers(), **(headers or {})}
        try:
            response = await self.client.post(url, headers=request_headers, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as e:
            raise TransientProviderError(f"{self.provider_type.value} request failed: {e}")

        if response.is_error:
            self.raise_for_error(response)
        return response

    def raise_for_error(self, response: httpx.Response) -> None:
        raise TransientProviderError(
            f"{self.provider_type.value} error: {response.status_code} - {response.text[:300]}"
        )

    @staticmethod
    def parse_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise TransientProviderError(f"Malformed response body: {e}")
