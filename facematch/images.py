"""
Image input handling

Images reach the engine as remote URLs, data URIs, bare base64 text or raw
bytes. This module turns any of them into raw bytes and prepares those bytes
for upload to a cloud backend.
"""
import base64
import binascii
import logging
from io import BytesIO
from typing import Union

import httpx
from PIL import Image, UnidentifiedImageError

from facematch.config import MAX_IMAGE_BYTES, MAX_IMAGE_SIZE
from facematch.exceptions import ImageLoadError

logger = logging.getLogger(__name__)

ImageInput = Union[str, bytes]


def is_remote_url(image: ImageInput) -> bool:
    return isinstance(image, str) and image.startswith(("http://", "https://"))


def decode_base64_image(data: str) -> bytes:
    """
    Decode a data URI (data:image/jpeg;base64,...) or bare base64 text.

    Raises:
        ImageLoadError: If the text is not valid base64
    """
    if data.startswith("data:"):
        if "," not in data:
            raise ImageLoadError("Malformed data URI: missing payload")
        data = data.split(",", 1)[1]

    try:
        return base64.b64decode(data.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageLoadError(f"Image is neither a URL nor valid base64: {e}")


def encode_base64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode("ascii")


def normalize_for_upload(image_bytes: bytes) -> bytes:
    """
    Re-encode an image the way cloud backends expect it.

    Steps:
    1. Load image from bytes
    2. Convert to RGB
    3. Resize if too large (preserving aspect ratio)
    4. Encode as JPEG

    Raises:
        ImageLoadError: If the bytes are not a decodable image
    """
    try:
        image = Image.open(BytesIO(image_bytes))

        # Convert to RGB (handles PNG with alpha, grayscale, etc.)
        if image.mode != "RGB":
            image = image.convert("RGB")

        if image.size[0] > MAX_IMAGE_SIZE[0] or image.size[1] > MAX_IMAGE_SIZE[1]:
            image.thumbnail(MAX_IMAGE_SIZE, Image.Resampling.LANCZOS)
            logger.debug(f"Image resized to {image.size}")

        buffer = BytesIO()
        image.save(buffer, format="JPEG", quality=95)
        return buffer.getvalue()

    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning(f"Image preprocessing failed: {e}")
        raise ImageLoadError(f"Failed to process image: {e}")


class ImageLoader:
    """
    Resolves image inputs to raw bytes.

    Remote URLs are fetched with the shared httpx client; payloads larger
    than MAX_IMAGE_BYTES are rejected.
    """

    def __init__(self, client: httpx.AsyncClient, max_bytes: int = MAX_IMAGE_BYTES):
        self.client = client
        self.max_bytes = max_bytes

    async def load(self, image: ImageInput) -> bytes:
        """
        Return the raw bytes behind an image input.

        Raises:
            ImageLoadError: If the image cannot be fetched or decoded
        """
        if isinstance(image, (bytes, bytearray)):
            payload = bytes(image)
        elif is_remote_url(image):
            payload = await self._fetch(image)
        elif isinstance(image, str):
            payload = decode_base64_image(image)
        else:
            raise ImageLoadError(f"Unsupported image input type: {type(image).__name__}")

        if not payload:
            raise ImageLoadError("Empty image payload")
        if len(payload) > self.max_bytes:
            raise ImageLoadError(f"Image exceeds {self.max_bytes} bytes ({len(payload)})")
        return payload

    async def _fetch(self, url: str) -> bytes:
        """Download a remote image, giving up as soon as it exceeds max_bytes."""
        too_large = f"Image at {url} exceeds {self.max_bytes} bytes"
        try:
            async with self.client.stream("GET", url, follow_redirects=True) as response:
                if response.status_code >= 400:
                    raise ImageLoadError(f"Failed to fetch image {url}: HTTP {response.status_code}")

                declared = response.headers.get("Content-Length", "")
                if declared.isdigit() and int(declared) > self.max_bytes:
                    raise ImageLoadError(too_large)

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise ImageLoadError(too_large)
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise ImageLoadError(f"Failed to fetch image {url}: {e}")

        return b"".join(chunks)
