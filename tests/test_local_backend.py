"""Unit tests for the local fallback hash backend."""

from __future__ import annotations

import httpx
import pytest

from facematch.backends.local import (
    LocalFallbackBackend,
    hash_similarity,
    levenshtein,
    rolling_hash,
    to_base36,
)
from facematch.exceptions import TransientProviderError

from fakes import make_provider


@pytest.fixture
async def backend():
    async with httpx.AsyncClient() as client:
        yield LocalFallbackBackend(make_provider(), client)


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"


def test_rolling_hash_single_byte():
    # h = 97 -> "2p" in base 36
    assert rolling_hash(b"a") == "2p"


def test_rolling_hash_is_deterministic():
    payload = bytes(range(256)) * 8
    assert rolling_hash(payload) == rolling_hash(bytes(payload))


def test_rolling_hash_only_reads_prefix():
    prefix = b"\x89PNG" + bytes(range(200)) * 5
    assert rolling_hash(prefix[:1000] + b"tail-one") == rolling_hash(prefix[:1000] + b"different tail")


def test_rolling_hash_is_bounded():
    # abs of a signed 32-bit value fits in 7 base-36 digits
    assert len(rolling_hash(b"\xff" * 5000)) <= 7


def test_levenshtein():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("same", "same") == 0


def test_hash_similarity_exact_match():
    assert hash_similarity("1x9k2p", "1x9k2p") == pytest.approx(0.95)


def test_hash_similarity_partial_match_is_scaled():
    # 1 - 1/4 = 0.75, scaled by 0.8
    assert hash_similarity("abcd", "abce") == pytest.approx(0.6)


def test_hash_similarity_disjoint():
    assert hash_similarity("abc", "xyz") == 0.0


@pytest.mark.parametrize("a,b", [("abcd", "abce"), ("1x9k2p", "1x9k"), ("zz", "a0b1c2")])
def test_hash_similarity_is_symmetric_and_capped(a, b):
    assert hash_similarity(a, b) == hash_similarity(b, a)
    assert 0.0 <= hash_similarity(a, b) <= 0.7


@pytest.mark.asyncio
async def test_detect_prefixes_descriptor(backend, red_png):
    face_id = await backend.detect(backend.prepare(red_png))

    assert face_id.startswith("local_")
    assert face_id == "local_" + rolling_hash(red_png)


@pytest.mark.asyncio
async def test_similarity_is_reflexive(backend, red_png, blue_png):
    red = await backend.detect(red_png)
    blue = await backend.detect(blue_png)

    assert await backend.similarity(red, red) == pytest.approx(0.95)
    assert await backend.similarity(red, blue) == await backend.similarity(blue, red)
    assert await backend.similarity(red, blue) <= 0.7


@pytest.mark.asyncio
async def test_similarity_rejects_foreign_descriptors(backend):
    with pytest.raises(TransientProviderError):
        await backend.similarity("local_abc", "cloud-face-id")
