"""
Tests for the upstream HTTP clients.

Covers:
- Fixed sleep and retry on HTTP 429
- Non-2xx and network failures raised as UpstreamError
- Function responses validated against their schema
- Discogs pagination
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from musicscan.schemas.functions import ArtProductResponse, PosterStylesResponse
from musicscan.services.discogs import SINGLE_FORMATS, DiscogsClient
from musicscan.services.functions_client import FunctionsClient
from musicscan.services.http_client import RateLimitedError, UpstreamClient, UpstreamError
from musicscan.services.steps import SchemaValidationError


def sequence_transport(*responses):
    """Transport answering with the given responses in order."""
    remaining = list(responses)
    requests = []

    def handler(request):
        requests.append(request)
        return remaining.pop(0)

    return httpx.MockTransport(handler), requests


class TestUpstreamClient:
    """Tests for UpstreamClient.request."""

    async def test_sleeps_and_retries_on_429(self):
        transport, requests = sequence_transport(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json={"ok": True}),
        )
        sleep = AsyncMock()
        client = UpstreamClient(
            "http://upstream.test", rate_limit_sleep=60, rate_limit_retries=3,
            transport=transport, sleep=sleep,
        )

        data = await client.get_json("things")

        assert data == {"ok": True}
        assert len(requests) == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(60)

    async def test_gives_up_after_retries(self):
        transport, requests = sequence_transport(*[httpx.Response(429) for _ in range(3)])
        client = UpstreamClient(
            "http://upstream.test", rate_limit_sleep=1, rate_limit_retries=2,
            transport=transport, sleep=AsyncMock(),
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await client.get_json("things")

        assert exc_info.value.status_code == 429
        assert len(requests) == 3

    async def test_error_status_raises(self):
        transport, _ = sequence_transport(httpx.Response(502, text="Bad gateway"))
        client = UpstreamClient("http://upstream.test", transport=transport, sleep=AsyncMock())

        with pytest.raises(UpstreamError) as exc_info:
            await client.post_json("things", {"a": 1})

        assert exc_info.value.status_code == 502
        assert "Bad gateway" in str(exc_info.value)

    async def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = UpstreamClient("http://upstream.test", transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamError, match="connection refused"):
            await client.get_json("things")

    async def test_invalid_json_is_permanent(self):
        transport, _ = sequence_transport(httpx.Response(200, text="<html>"))
        client = UpstreamClient("http://upstream.test", transport=transport)

        with pytest.raises(SchemaValidationError, match="Invalid JSON") as exc_info:
            await client.get_json("things")

        assert exc_info.value.permanent


class TestFunctionsClient:
    """Tests for FunctionsClient.invoke."""

    async def test_sends_service_key_and_validates(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["apikey"] = request.headers.get("apikey")
            return httpx.Response(200, json={"product_id": 42, "blog_id": "b1", "extra": "ignored"})

        client = FunctionsClient(
            base_url="http://functions.test/functions/v1", service_key="secret",
            transport=httpx.MockTransport(handler),
        )

        response = await client.invoke("create-art-product", {"discogs_id": 1}, schema=ArtProductResponse)

        assert seen["url"] == "http://functions.test/functions/v1/create-art-product"
        assert seen["auth"] == "Bearer secret"
        assert seen["apikey"] == "secret"
        assert response.product_id == "42"
        assert response.already_exists is False

    async def test_schema_mismatch_is_permanent(self):
        transport, _ = sequence_transport(httpx.Response(200, json={"blog_id": "b1"}))
        client = FunctionsClient(base_url="http://functions.test", service_key="k", transport=transport)

        with pytest.raises(SchemaValidationError) as exc_info:
            await client.invoke("create-art-product", {}, schema=ArtProductResponse)

        assert exc_info.value.permanent
        assert "product_id" in str(exc_info.value)

    async def test_error_body_raises(self):
        transport, _ = sequence_transport(httpx.Response(200, json={"error": "OpenAI quota exceeded"}))
        client = FunctionsClient(base_url="http://functions.test", service_key="k", transport=transport)

        with pytest.raises(UpstreamError, match="OpenAI quota exceeded"):
            await client.invoke("generate-single-story", {})

    async def test_camel_case_fields(self):
        transport, _ = sequence_transport(httpx.Response(200, json={
            "styleVariants": [{"url": "https://img/1.png", "style": "vintage"}],
        }))
        client = FunctionsClient(base_url="http://functions.test", service_key="k", transport=transport)

        response = await client.invoke("batch-generate-poster-styles", {}, schema=PosterStylesResponse)

        assert response.style_variants[0].style == "vintage"


class TestDiscogsClient:
    """Tests for DiscogsClient pagination."""

    async def test_fetches_every_page(self):
        pages = {
            "1": {"pagination": {"page": 1, "pages": 2, "items": 3},
                  "releases": [{"id": 1, "title": "One"}, {"id": 2, "title": "Two"}]},
            "2": {"pagination": {"page": 2, "pages": 2, "items": 3},
                  "releases": [{"id": 3, "title": "Three"}]},
        }
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=pages[request.url.params["page"]])

        sleep = AsyncMock()
        client = DiscogsClient(
            token="t", base_url="http://discogs.test", page_delay=1.5,
            transport=httpx.MockTransport(handler), sleep=sleep,
        )

        releases = await client.artist_releases(99, release_format="Single")

        assert [r.id for r in releases] == [1, 2, 3]
        assert requests[0].url.path == "/artists/99/releases"
        assert requests[0].url.params["format"] == "Single"
        assert requests[0].headers["Authorization"] == "Discogs token=t"
        sleep.assert_awaited_once_with(1.5)

    async def test_artist_singles_queries_every_format(self):
        formats = []

        def handler(request):
            formats.append(request.url.params["format"])
            return httpx.Response(200, json={"pagination": {"pages": 1}, "releases": []})

        client = DiscogsClient(
            token="", base_url="http://discogs.test", page_delay=0,
            transport=httpx.MockTransport(handler),
        )

        assert await client.artist_singles(5) == []
        assert tuple(formats) == SINGLE_FORMATS
