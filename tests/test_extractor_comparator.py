"""Tests for descriptor extraction and comparison across backends."""

from __future__ import annotations

import asyncio
import json
from typing import Callable, List

import httpx
import pytest
import pytest_mock

from facematch.backends import BackendFactory
from facematch.backends.local import rolling_hash
from facematch.comparator import DescriptorComparator
from facematch.exceptions import DescriptorMismatchError
from facematch.extractor import DescriptorExtractor
from facematch.images import ImageLoader
from facematch.interfaces import Descriptor
from facematch.schemas import ProviderType

from fakes import data_uri, make_provider, png_bytes

CLOUD_B = make_provider(
    ProviderType.CLOUD_B,
    credentials={"endpoint": "https://face.test/", "subscription_key": "sub-key"},
)
CUSTOM = make_provider(
    ProviderType.CUSTOM_HTTP,
    credentials={
        "endpoint": "https://custom.test/faces",
        "api_key": "secret",
        "extra_config": {"model": "v2"},
    },
)


class Recorder:
    """MockTransport handler that records requests and delegates to a route function."""

    def __init__(self, route: Callable[[httpx.Request], httpx.Response]):
        self.route = route
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.route(request)


def build(handler, sdk_clients=None, timeout: float = 5.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backends = BackendFactory(client, sdk_clients=sdk_clients, timeout=timeout)
    images = ImageLoader(client)
    return (
        client,
        DescriptorExtractor(backends, images, timeout=timeout),
        DescriptorComparator(backends, images, timeout=timeout),
    )


def unsupported_feature(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        403,
        json={
            "error": {
                "code": "InvalidRequest",
                "message": "Invalid request has been sent.",
                "innererror": {
                    "code": "UnsupportedFeature",
                    "message": "Feature is not supported, missing approval for one or more of the following features: Identification,Verification.",
                },
            }
        },
    )


@pytest.mark.asyncio
async def test_local_extract_from_data_uri(local_provider, red_png):
    client, extractor, _ = build(Recorder(lambda r: httpx.Response(404)))
    async with client:
        descriptor = await extractor.extract(local_provider, data_uri(red_png))

    assert descriptor.provider_type == ProviderType.LOCAL_FALLBACK
    assert descriptor.value.startswith("local_")


@pytest.mark.asyncio
@pytest.mark.parametrize("image", ["not base64 !!", "https://photos.test/missing.png"])
async def test_local_extract_hashes_unloadable_text(local_provider, image):
    recorder = Recorder(lambda r: httpx.Response(404))
    client, extractor, _ = build(recorder)
    async with client:
        outcome = await extractor.attempt(local_provider, image)

    assert outcome.ok
    assert outcome.descriptor.value == "local_" + rolling_hash(image.encode("utf-8"))


@pytest.mark.asyncio
async def test_local_extract_of_empty_bytes_still_succeeds(local_provider):
    client, extractor, _ = build(Recorder(lambda r: httpx.Response(404)))
    async with client:
        outcome = await extractor.attempt(local_provider, b"")

    assert outcome.descriptor.value == "local_0"


@pytest.mark.asyncio
async def test_unreachable_photo_url_is_soft_failure():
    recorder = Recorder(lambda r: httpx.Response(404))
    client, extractor, _ = build(recorder)
    async with client:
        outcome = await extractor.attempt(CLOUD_B, "https://photos.test/missing.png")

    assert not outcome.ok
    assert outcome.failure == "image_unavailable"
    assert [r.url.host for r in recorder.requests] == ["photos.test"]


@pytest.mark.asyncio
async def test_cloud_b_detect_sends_octet_stream():
    def route(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/face/v1.0/detect"
        assert request.url.params["returnFaceId"] == "true"
        assert request.headers["Ocp-Apim-Subscription-Key"] == "sub-key"
        assert request.headers["Content-Type"] == "application/octet-stream"
        return httpx.Response(200, json=[{"faceId": "c5c24a82-6845-4031-9d5d-978df9175426"}])

    recorder = Recorder(route)
    client, extractor, _ = build(recorder)
    async with client:
        descriptor = await extractor.extract(CLOUD_B, png_bytes())

    assert descriptor == Descriptor(ProviderType.CLOUD_B, "c5c24a82-6845-4031-9d5d-978df9175426")
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_cloud_b_unsupported_feature_is_authorization_failure():
    client, extractor, _ = build(Recorder(unsupported_feature))
    async with client:
        outcome = await extractor.attempt(CLOUD_B, png_bytes())
        descriptor = await extractor.extract(CLOUD_B, png_bytes())

    assert outcome.failure == "authorization_required"
    assert descriptor is None


@pytest.mark.asyncio
async def test_cloud_b_without_faces_is_no_face():
    client, extractor, _ = build(Recorder(lambda r: httpx.Response(200, json=[])))
    async with client:
        outcome = await extractor.attempt(CLOUD_B, png_bytes())

    assert outcome.failure == "no_face"


@pytest.mark.asyncio
async def test_cloud_b_server_error_is_provider_error():
    client, extractor, _ = build(Recorder(lambda r: httpx.Response(500, text="boom")))
    async with client:
        outcome = await extractor.attempt(CLOUD_B, png_bytes())

    assert outcome.failure == "provider_error"


@pytest.mark.asyncio
async def test_custom_http_detect_contract(red_png):
    def route(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.headers["Authorization"] == "Bearer secret"
        assert body["action"] == "detect"
        assert body["model"] == "v2"
        assert body["image"]
        return httpx.Response(200, json={"face_id": "abc-123"})

    client, extractor, _ = build(Recorder(route))
    async with client:
        descriptor = await extractor.extract(CUSTOM, red_png)

    assert descriptor == Descriptor(ProviderType.CUSTOM_HTTP, "abc-123")


@pytest.mark.asyncio
async def test_custom_http_compare_sends_target_image(red_png):
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == "photos.test":
            return httpx.Response(200, content=red_png)
        body = json.loads(request.content)
        assert body["action"] == "compare"
        assert body["faceId1"] == "q" and body["faceId2"] == "c"
        assert body["targetImage"]
        return httpx.Response(200, json={"confidence": 0.77})

    client, _, comparator = build(Recorder(route))
    async with client:
        score = await comparator.compare(
            CUSTOM,
            Descriptor(ProviderType.CUSTOM_HTTP, "q"),
            Descriptor(ProviderType.CUSTOM_HTTP, "c"),
            image_b="https://photos.test/c.png",
        )

    assert score == pytest.approx(0.77)


@pytest.mark.asyncio
async def test_comparator_clamps_scores():
    client, _, comparator = build(Recorder(lambda r: httpx.Response(200, json={"similarity": 1.7})))
    async with client:
        score = await comparator.compare(
            CUSTOM,
            Descriptor(ProviderType.CUSTOM_HTTP, "q"),
            Descriptor(ProviderType.CUSTOM_HTTP, "c"),
        )

    assert score == 1.0


@pytest.mark.asyncio
async def test_cloud_b_compare_redetects_side_b():
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == "photos.test":
            return httpx.Response(200, content=png_bytes())
        if request.url.path.endswith("/detect"):
            return httpx.Response(200, json=[{"faceId": "fresh-id"}])
        body = json.loads(request.content)
        assert body == {"faceId1": "query-id", "faceId2": "fresh-id"}
        return httpx.Response(200, json={"isIdentical": True})

    client, _, comparator = build(Recorder(route))
    async with client:
        score = await comparator.compare(
            CLOUD_B,
            Descriptor(ProviderType.CLOUD_B, "query-id"),
            Descriptor(ProviderType.CLOUD_B, "stale-id"),
            image_b="https://photos.test/b.png",
        )

    assert score == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_cloud_b_verify_prefers_confidence():
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == "photos.test":
            return httpx.Response(200, content=png_bytes())
        if request.url.path.endswith("/detect"):
            return httpx.Response(200, json=[{"faceId": "fresh-id"}])
        return httpx.Response(200, json={"isIdentical": False, "confidence": 0.41})

    client, _, comparator = build(Recorder(route))
    async with client:
        score = await comparator.compare(
            CLOUD_B,
            Descriptor(ProviderType.CLOUD_B, "query-id"),
            Descriptor(ProviderType.CLOUD_B, "stale-id"),
            image_b="https://photos.test/b.png",
        )

    assert score == pytest.approx(0.41)


@pytest.mark.asyncio
async def test_cloud_b_zero_confidence_falls_back_to_verdict():
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == "photos.test":
            return httpx.Response(200, content=png_bytes())
        if request.url.path.endswith("/detect"):
            return httpx.Response(200, json=[{"faceId": "fresh-id"}])
        return httpx.Response(200, json={"isIdentical": True, "confidence": 0})

    client, _, comparator = build(Recorder(route))
    async with client:
        score = await comparator.compare(
            CLOUD_B,
            Descriptor(ProviderType.CLOUD_B, "query-id"),
            Descriptor(ProviderType.CLOUD_B, "stale-id"),
            image_b="https://photos.test/b.png",
        )

    assert score == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_cloud_b_fresh_side_b_skips_redetect():
    recorder = Recorder(lambda r: httpx.Response(200, json={"isIdentical": True, "confidence": 0.7}))
    client, _, comparator = build(recorder)
    async with client:
        score = await comparator.compare(
            CLOUD_B,
            Descriptor(ProviderType.CLOUD_B, "query-id"),
            Descriptor(ProviderType.CLOUD_B, "just-detected"),
            image_b="https://photos.test/b.png",
            fresh_b=True,
        )

    assert score == pytest.approx(0.7)
    assert [r.url.path for r in recorder.requests] == ["/face/v1.0/verify"]
    assert json.loads(recorder.requests[0].content) == {"faceId1": "query-id", "faceId2": "just-detected"}


@pytest.mark.asyncio
async def test_comparison_failure_scores_zero():
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == "photos.test":
            return httpx.Response(200, content=png_bytes())
        return unsupported_feature(request)

    client, _, comparator = build(Recorder(route))
    async with client:
        score = await comparator.compare(
            CLOUD_B,
            Descriptor(ProviderType.CLOUD_B, "query-id"),
            Descriptor(ProviderType.CLOUD_B, "stale-id"),
            image_b="https://photos.test/b.png",
        )

    assert score == 0.0


@pytest.mark.asyncio
async def test_mismatched_descriptors_raise_before_any_call(local_provider):
    recorder = Recorder(lambda r: httpx.Response(200, json={"similarity": 0.9}))
    client, _, comparator = build(recorder)
    async with client:
        with pytest.raises(DescriptorMismatchError):
            await comparator.compare(
                local_provider,
                Descriptor(ProviderType.LOCAL_FALLBACK, "local_abc"),
                Descriptor(ProviderType.CLOUD_B, "face-id"),
            )

    assert recorder.requests == []


@pytest.mark.asyncio
async def test_descriptor_from_other_provider_type_raises(local_provider):
    client, _, comparator = build(Recorder(lambda r: httpx.Response(404)))
    async with client:
        with pytest.raises(ValueError):
            await comparator.compare(
                local_provider,
                Descriptor(ProviderType.CUSTOM_HTTP, "a"),
                Descriptor(ProviderType.CUSTOM_HTTP, "b"),
            )


@pytest.mark.asyncio
async def test_sdk_backend_without_client_soft_fails(red_png):
    provider = make_provider(
        ProviderType.CLOUD_A,
        credentials={"access_key_id": "AKIA", "secret_access_key": "s", "region": "us-east-1"},
    )
    client, extractor, _ = build(Recorder(lambda r: httpx.Response(404)))
    async with client:
        outcome = await extractor.attempt(provider, red_png)

    assert outcome.failure == "provider_error"


@pytest.mark.asyncio
async def test_sdk_backend_delegates_to_client(mocker: pytest_mock.MockerFixture, red_png):
    provider = make_provider(
        ProviderType.CLOUD_C,
        credentials={"project_id": "proj", "credentials_json": {"type": "service_account"}},
    )
    sdk = mocker.Mock()
    sdk.detect_face = mocker.AsyncMock(return_value="sdk-face")
    sdk.compare_faces = mocker.AsyncMock(return_value=0.88)

    client, extractor, comparator = build(
        Recorder(lambda r: httpx.Response(404)),
        sdk_clients={ProviderType.CLOUD_C: sdk},
    )
    async with client:
        descriptor = await extractor.extract(provider, red_png)
        score = await comparator.compare(provider, descriptor, Descriptor(ProviderType.CLOUD_C, "other"), red_png)

    assert descriptor == Descriptor(ProviderType.CLOUD_C, "sdk-face")
    assert score == pytest.approx(0.88)
    sdk.compare_faces.assert_awaited_once()


@pytest.mark.asyncio
async def test_slow_backend_times_out(mocker: pytest_mock.MockerFixture, red_png):
    provider = make_provider(
        ProviderType.CLOUD_C,
        credentials={"project_id": "proj", "credentials_json": {"type": "service_account"}},
    )

    async def slow_detect(image):
        await asyncio.sleep(1)
        return "late"

    sdk = mocker.Mock()
    sdk.detect_face = slow_detect

    client, extractor, _ = build(
        Recorder(lambda r: httpx.Response(404)),
        sdk_clients={ProviderType.CLOUD_C: sdk},
        timeout=0.01,
    )
    async with client:
        outcome = await extractor.attempt(provider, red_png)

    assert outcome.failure == "provider_error"
    assert "Timed out" in outcome.detail
