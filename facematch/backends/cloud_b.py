"""cloud_b backend: REST face API with detect and verify endpoints.

Face ids issued by detect expire after 24 hours, so stored ids are only
reused inside that window and comparisons re-detect side B unless the
caller has just detected it.
Some deployments gate detection or verification behind vendor approval; the
service then answers with innererror.code == "UnsupportedFeature".
"""
import logging
from datetime import timedelta
from typing import Dict, Optional

import httpx

from facematch.backends.http import HttpBackend
from facematch.config import CLOUD_B_AUTHORIZATION_HELP_URL, CLOUD_B_DESCRIPTOR_TTL_HOURS
from facematch.exceptions import NoFaceInImage, ProviderAuthorizationError
from facematch.schemas import ProviderType

logger = logging.getLogger(__name__)

DETECT_PATH = "/face/v1.0/detect"
VERIFY_PATH = "/face/v1.0/verify"


class CloudBBackend(HttpBackend):
    provider_type = ProviderType.CLOUD_B
    descriptor_ttl = timedelta(hours=CLOUD_B_DESCRIPTOR_TTL_HOURS)

    @property
    def endpoint(self) -> str:
        return self.credentials["endpoint"].rstrip("/")

    def auth_headers(self) -> Dict[str, str]:
        return {"Ocp-Apim-Subscription-Key": self.credentials["subscription_key"]}

    def raise_for_error(self, response: httpx.Response) -> None:
        try:
            body = response.json()
        except ValueError:
            body = None

        inner = {}
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            inner = body["error"].get("innererror") or {}
        if isinstance(inner, dict) and inner.get("code") == "UnsupportedFeature":
            raise ProviderAuthorizationError(
                f"Feature approval required: {inner.get('message', '')} "
                f"(apply at {CLOUD_B_AUTHORIZATION_HELP_URL})"
            )
        super().raise_for_error(response)

    async def detect(self, image: bytes) -> str:
        # Only ask for the face id; attribute requests need extra approval
        response = await self.post(
            f"{self.endpoint}{DETECT_PATH}",
            params={"returnFaceId": "true"},
            headers={"Content-Type": "application/octet-stream"},
            content=image,
        )
        faces = self.parse_json(response)
        if not faces or not isinstance(faces, list) or not faces[0].get("faceId"):
            raise NoFaceInImage("No face detected in image by cloud_b")
        return faces[0]["faceId"]

    async def similarity(self, face_id_a: str, face_id_b: str, image_b: Optional[bytes] = None) -> float:
        response = await self.post(
            f"{self.endpoint}{VERIFY_PATH}",
            json={"faceId1": face_id_a, "faceId2": face_id_b},
        )
        result = self.parse_json(response)
        if not isinstance(result, dict) or "isIdentical" not in result:
            return 0.0

        # A zero or missing confidence falls back to the verdict
        confidence = result.get("confidence")
        if confidence:
            return float(confidence)
        return 0.8 if result["isIdentical"] else 0.2
