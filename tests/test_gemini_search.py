"""Tests for the Gemini File Search adapter."""

import json

import httpx
import pytest

from rag_gateway.adapters.gemini_search import (
    NO_RESPONSE_TEXT,
    Citation,
    GeminiSearchClient,
    extract_citations,
    render_sources,
)
from rag_gateway.infra.circuit_breaker import CircuitBreaker, CircuitState
from rag_gateway.infra.error_handler import (
    APIError,
    CircuitOpenError,
    ClientRequestError,
    NetworkError,
    RateLimitError,
)
from rag_gateway.infra.metrics import GatewayMetrics


def answer(text, chunks=None):
    candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
    if chunks is not None:
        candidate["groundingMetadata"] = {"groundingChunks": chunks}
    return {"candidates": [candidate]}


def make_client(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiSearchClient("gm-key", base_url="https://gemini.test/v1beta", client=client, **kwargs)


class TestCitations:
    def test_duplicate_sources_collapse(self):
        chunks = [
            {"retrievedContext": {"title": "q3-report.pdf", "uri": "fileSearchStores/fin/documents/doc-1"}},
            {"retrievedContext": {"title": "q3-report.pdf", "uri": "fileSearchStores/fin/documents/doc-1"}},
            {"retrievedContext": {"title": "budget.xlsx"}},
            {"web": {"title": "Example", "uri": "https://example.com"}},
        ]
        citations = extract_citations({"groundingChunks": chunks})
        assert citations == [
            Citation("q3-report.pdf", "fileSearchStores/fin/documents/doc-1"),
            Citation("budget.xlsx", ""),
            Citation("Example", "https://example.com"),
        ]

    def test_missing_title_gets_default(self):
        citations = extract_citations({"groundingChunks": [{"retrievedContext": {"uri": "u1"}}]})
        assert citations[0].title == "Document Source"

    def test_render_sources(self):
        text = render_sources("Revenue grew.", [Citation("q3-report.pdf", "doc-1"), Citation("budget.xlsx")])
        assert text == "Revenue grew.\n\nSources:\n[1] q3-report.pdf (doc-1)\n[2] budget.xlsx"

    def test_render_without_citations_is_unchanged(self):
        assert render_sources("plain", []) == "plain"


class TestSearch:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=answer("ok"))

        client = make_client(handler)
        await client.search(
            "What changed?",
            ["fileSearchStores/a", "fileSearchStores/b"],
            "gemini-2.5-flash",
            system_prompt="Be brief.",
            history=[{"role": "assistant", "content": "Hi"}],
        )

        assert seen["url"] == "https://gemini.test/v1beta/models/gemini-2.5-flash:generateContent"
        assert seen["key"] == "gm-key"
        body = seen["body"]
        assert body["tools"] == [{"file_search": {"file_search_store_names": ["fileSearchStores/a", "fileSearchStores/b"]}}]
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert body["contents"][0] == {"role": "model", "parts": [{"text": "Hi"}]}
        assert body["contents"][-1] == {"role": "user", "parts": [{"text": "What changed?"}]}

    @pytest.mark.asyncio
    async def test_answer_carries_sources(self):
        chunks = [{"retrievedContext": {"title": "q3-report.pdf", "uri": "doc-1"}}]
        client = make_client(lambda request: httpx.Response(200, json=answer("Revenue grew.", chunks)))

        result = await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")

        assert result.text == "Revenue grew.\n\nSources:\n[1] q3-report.pdf (doc-1)"
        assert result.citations == [Citation("q3-report.pdf", "doc-1")]

    @pytest.mark.asyncio
    async def test_empty_answer(self):
        client = make_client(lambda request: httpx.Response(200, json={"candidates": []}))
        result = await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")
        assert result.text == NO_RESPONSE_TEXT

        client = make_client(lambda request: httpx.Response(200, json=answer("   ")))
        result = await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")
        assert result.text == NO_RESPONSE_TEXT

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        client = make_client(lambda request: httpx.Response(429, headers={"retry-after": "12"}, json={}))
        with pytest.raises(RateLimitError) as exc_info:
            await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")
        assert exc_info.value.retry_after == 12
        assert "QUOTA_EXCEEDED" in exc_info.value.user_message()

    @pytest.mark.asyncio
    async def test_api_error_detail(self):
        body = {"error": {"code": 400, "message": "Unknown store fileSearchStores/x"}}
        client = make_client(lambda request: httpx.Response(400, json=body))
        with pytest.raises(APIError) as exc_info:
            await client.search("q", ["fileSearchStores/x"], "gemini-2.5-flash")
        assert exc_info.value.status_code == 400
        assert "Unknown store" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(NetworkError):
            await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")

    @pytest.mark.asyncio
    async def test_open_circuit_blocks_calls(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"error": {"message": "overloaded"}})

        breaker = CircuitBreaker("gemini", failure_threshold=2, counted_exceptions=(NetworkError, APIError))
        client = make_client(handler, circuit_breaker=breaker)

        for _ in range(2):
            with pytest.raises(APIError):
                await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_metrics_recorded(self):
        metrics = GatewayMetrics()
        client = make_client(lambda request: httpx.Response(200, json=answer("ok")), metrics=metrics)
        await client.search("q", ["fileSearchStores/a"], "gemini-2.5-flash")

        value = metrics.registry.get_sample_value(
            "upstream_search_calls_total", {"model": "gemini-2.5-flash", "status": "success"}
        )
        assert value == 1

    @pytest.mark.asyncio
    async def test_client_errors_do_not_open_circuit(self):
        def handler(request):
            if "bogus-model" in request.url.path:
                return httpx.Response(404, json={"error": {"message": "models/bogus-model is not found"}})
            return httpx.Response(200, json=answer("ok"))

        client = make_client(handler)
        for _ in range(client.circuit_breaker.failure_threshold + 1):
            with pytest.raises(ClientRequestError):
                await client.search("q", ["fileSearchStores/a"], "bogus-model")

        assert client.circuit_breaker.state == CircuitState.CLOSED
        result = await client.search("q", ["fileSearchStores/b"], "gemini-2.5-flash")
        assert result.text == "ok"
