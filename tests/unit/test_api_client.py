"""Unit tests for KabiniAPIClient against an httpx mock transport."""

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from kabini_qa.api_client import APIError, KabiniAPIClient
from kabini_qa.config import ApiConfig


class FakeServer:
    """Serves queued responses and records every request it sees."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self):
        return json.loads(self.last.content)


def make_client(server: FakeServer, **config) -> KabiniAPIClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))
    refresher = config.pop("token_refresher", None)
    return KabiniAPIClient(ApiConfig(**config), client=http, token_refresher=refresher)


def ok(body) -> httpx.Response:
    return httpx.Response(200, json=body)


class TestTransport:
    """Request/response handling."""

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        server = FakeServer(ok({"status": "ok"}))
        client = make_client(server, base_url="https://api.test/api/", access_token="tok")
        await client.request("GET", "/health")

        assert server.last.method == "GET"
        assert str(server.last.url) == "https://api.test/api/health"
        assert server.last.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        server = FakeServer(ok({}))
        client = make_client(server)
        await client.request("GET", "/health")
        assert "Authorization" not in server.last.headers

    @pytest.mark.asyncio
    async def test_http_error_uses_body_error(self):
        client = make_client(FakeServer(httpx.Response(500, json={"error": "boom"})))
        with pytest.raises(APIError, match="boom") as exc:
            await client.request("POST", "/x", {})
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_http_error_without_body(self):
        client = make_client(FakeServer(httpx.Response(502, text="Bad Gateway")))
        with pytest.raises(APIError, match="502"):
            await client.request("POST", "/x", {})

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        page = httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"})
        client = make_client(FakeServer(page))
        with pytest.raises(APIError, match="Expected JSON"):
            await client.request("GET", "/health")

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        client = make_client(FakeServer(httpx.ConnectError("refused")))
        with pytest.raises(APIError, match="refused"):
            await client.request("GET", "/health")

    @pytest.mark.asyncio
    async def test_403_refresh_and_retry(self):
        server = FakeServer(httpx.Response(403), ok({"ok": True}))
        refresher = MagicMock(return_value="fresh")
        client = make_client(server, access_token="stale", token_refresher=refresher)

        assert await client.request("GET", "/health") == {"ok": True}
        assert len(server.requests) == 2
        assert server.requests[0].headers["Authorization"] == "Bearer stale"
        assert server.last.headers["Authorization"] == "Bearer fresh"
        assert client.access_token == "fresh"

    @pytest.mark.asyncio
    async def test_403_refresh_failure(self):
        client = make_client(FakeServer(httpx.Response(403)), token_refresher=lambda: None)
        with pytest.raises(APIError, match="Session expired") as exc:
            await client.request("GET", "/health")
        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_403_without_refresher(self):
        server = FakeServer(httpx.Response(403, json={"error": "Forbidden"}))
        client = make_client(server)
        with pytest.raises(APIError, match="Forbidden"):
            await client.request("GET", "/health")
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_requests_overlap_on_the_loop(self):
        """Two calls in flight at once share one client without threads."""
        in_flight = 0
        peak = 0

        async def slow(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ok({"content": request.url.path})

        http = httpx.AsyncClient(transport=httpx.MockTransport(slow))
        client = KabiniAPIClient(ApiConfig(), client=http)
        first, second = await asyncio.gather(
            client.extract_content("https://a.test"),
            client.extract_content("https://b.test"),
        )

        assert first.endswith("/extract-content")
        assert second.endswith("/extract-content")
        assert peak == 2

    @pytest.mark.asyncio
    async def test_aclose_drops_client(self):
        client = make_client(FakeServer(ok({})))
        await client.request("GET", "/health")
        await client.aclose()
        assert client._client is None

    def test_client_created_lazily(self):
        client = KabiniAPIClient(ApiConfig(timeout_seconds=5))
        assert client._client is None
        http = client._get_client()
        assert isinstance(http, httpx.AsyncClient)
        assert client._get_client() is http


class TestEndpoints:
    """Endpoint payloads and response mapping."""

    @pytest.mark.asyncio
    async def test_extract_content(self):
        server = FakeServer(ok({"content": "page text"}))
        client = make_client(server)
        assert await client.extract_content("https://a.test") == "page text"
        assert server.last_json() == {"url": "https://a.test"}

    @pytest.mark.asyncio
    async def test_crawl_website(self):
        server = FakeServer(ok({"success": True, "result": {"content": "all pages", "totalPages": 4}}))
        client = make_client(server)
        result = await client.crawl_website("https://a.test", max_pages=50, max_depth=3, timeout_ms=30000)

        assert result.success is True
        assert result.content == "all pages"
        assert result.total_pages == 4
        assert server.last_json()["options"] == {
            "maxPages": 50,
            "maxDepth": 3,
            "timeout": 30000,
        }

    @pytest.mark.asyncio
    async def test_generate_questions(self):
        server = FakeServer(ok({"questions": ["Q1?", "Q2?", 3], "inputTokens": 100, "outputTokens": 20}))
        client = make_client(server)
        result = await client.generate_questions("content", 2, "gemini", "gemini-1.5-flash")

        assert result.questions == ["Q1?", "Q2?"]
        assert result.input_tokens == 100
        assert server.last.url.path.endswith("/llm/generate-questions")
        assert server.last_json()["questionCount"] == 2

    @pytest.mark.asyncio
    async def test_generate_answers(self):
        server = FakeServer(ok({"answers": [{"answer": "A", "inputTokens": 5, "outputTokens": 7}]}))
        client = make_client(server)
        result = await client.generate_answers("content", ["Q?"], "gemini", "gemini-1.5-flash")

        assert result.answers[0].answer == "A"
        assert result.answers[0].output_tokens == 7

    @pytest.mark.asyncio
    async def test_scores(self):
        server = FakeServer(ok({"citationLikelihood": 64}), ok({"accuracy": "88"}))
        client = make_client(server)
        assert await client.calculate_citation_likelihood("a", "c", "gemini", "m") == 64
        assert await client.calculate_accuracy("a", "c", "gemini", "m") == "88"
        assert server.last.url.path.endswith("/accuracy/calculate")
