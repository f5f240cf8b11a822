"""Local fallback backend: byte-hash descriptors with no external service.

It only recognizes near byte-identical uploads of the same photo, never
actual facial similarity, so its scores stay in a conservative range.
"""
from typing import Optional

from facematch.backends.base import RecognitionBackend
from facematch.config import (
    LOCAL_EXACT_MATCH_SCORE,
    LOCAL_HASH_PREFIX_BYTES,
    LOCAL_MAX_PARTIAL_SCORE,
    LOCAL_PARTIAL_SCALE,
)
from facematch.exceptions import TransientProviderError
from facematch.schemas import ProviderType

DESCRIPTOR_PREFIX = "local_"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def rolling_hash(payload: bytes, prefix_bytes: int = LOCAL_HASH_PREFIX_BYTES) -> str:
    """
    32-bit rolling hash (h = h*31 + byte) over the leading bytes.

    The signed 32-bit result is folded to its absolute value and rendered in
    base 36, so the output is at most 7 characters.
    """
    h = 0
    for byte in payload[:prefix_bytes]:
        h = (h * 31 + byte) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return to_base36(abs(h))


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def hash_similarity(hash_a: str, hash_b: str) -> float:
    """
    Similarity of two local hashes.

    Identical hashes get the fixed exact-match score; anything else is the
    normalized edit distance scaled into [0, LOCAL_MAX_PARTIAL_SCORE].
    """
    if hash_a == hash_b:
        return LOCAL_EXACT_MATCH_SCORE

    distance = levenshtein(hash_a, hash_b)
    similarity = 1.0 - distance / max(len(hash_a), len(hash_b))
    return max(0.0, min(LOCAL_MAX_PARTIAL_SCORE, similarity * LOCAL_PARTIAL_SCALE))


class LocalFallbackBackend(RecognitionBackend):
    """Free backend; needs no credentials and never calls the network."""

    provider_type = ProviderType.LOCAL_FALLBACK
    accepts_raw_input = True

    def prepare(self, image_bytes: bytes) -> bytes:
        # Hash what was uploaded, not a re-encoding of it
        return image_bytes

    async def detect(self, image: bytes) -> str:
        return DESCRIPTOR_PREFIX + rolling_hash(image)

    async def similarity(self, face_id_a: str, face_id_b: str, image_b: Optional[bytes] = None) -> float:
        if not (face_id_a.startswith(DESCRIPTOR_PREFIX) and face_id_b.startswith(DESCRIPTOR_PREFIX)):
            raise TransientProviderError("Local comparison needs two local_ descriptors")
        return hash_similarity(face_id_a[len(DESCRIPTOR_PREFIX):], face_id_b[len(DESCRIPTOR_PREFIX):])
