"""custom_http backend: any service implementing the detect/compare JSON contract.

Detect:  {"action": "detect", "image": <base64>, **extra_config} -> {"faceId" | "face_id"}
Compare: {"action": "compare", "faceId1", "faceId2", "targetImage", **extra_config}
         -> {"similarity" | "confidence"}
"""
from typing import Dict, Optional

from facematch.backends.http import HttpBackend
from facematch.exceptions import NoFaceInImage
from facematch.images import encode_base64
from facematch.schemas import ProviderType


class CustomHttpBackend(HttpBackend):
    provider_type = ProviderType.CUSTOM_HTTP
    needs_target_image = True

    @property
    def endpoint(self) -> str:
        return self.credentials["endpoint"]

    @property
    def extra_config(self) -> dict:
        return self.credentials.get("extra_config") or {}

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.credentials['api_key']}"}

    def prepare(self, image_bytes: bytes) -> bytes:
        # The service receives the upload as-is
        return image_bytes

    async def detect(self, image: bytes) -> str:
        payload = {"image": encode_base64(image), "action": "detect", **self.extra_config}
        result = self.parse_json(await self.post(self.endpoint, json=payload))

        face_id = None
        if isinstance(result, dict):
            face_id = result.get("faceId") or result.get("face_id")
        if not face_id:
            raise NoFaceInImage("Custom API returned no face id")
        return str(face_id)

    async def similarity(self, face_id_a: str, face_id_b: str, image_b: Optional[bytes] = None) -> float:
        payload = {
            "action": "compare",
            "faceId1": face_id_a,
            "faceId2": face_id_b,
            "targetImage": encode_base64(image_b) if image_b else None,
            **self.extra_config,
        }
        result = self.parse_json(await self.post(self.endpoint, json=payload))
        if not isinstance(result, dict):
            return 0.0
        return float(result.get("similarity") or result.get("confidence") or 0.0)
