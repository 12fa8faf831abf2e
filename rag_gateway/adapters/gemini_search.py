"""Gemini File Search generation adapter."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from rag_gateway.infra.circuit_breaker import CircuitBreaker
from rag_gateway.infra.error_handler import (
    APIError,
    ClientRequestError,
    NetworkError,
    UpstreamError,
    wrap_upstream_error,
)
from rag_gateway.infra.metrics import GatewayMetrics

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "(No response)"
DEFAULT_SOURCE_TITLE = "Document Source"


@dataclass(frozen=True)
class Citation:
    """A source that supported a generated answer."""
    title: str
    locator: str = ""


@dataclass
class SearchResult:
    text: str
    citations: List[Citation] = field(default_factory=list)


def extract_citations(grounding_metadata: Optional[Dict[str, Any]]) -> List[Citation]:
    """
    Build the de-duplicated citation list from Gemini grounding metadata.

    Chunks are keyed by their source identifier (the retrieved document URI
    or web URI, else the title); the first chunk seen for a source wins.

    Args:
        grounding_metadata: `groundingMetadata` object of a candidate

    Returns:
        Citations in first-seen order
    """
    if not grounding_metadata:
        return []

    citations: List[Citation] = []
    seen = set()
    for chunk in grounding_metadata.get("groundingChunks") or []:
        source = chunk.get("retrievedContext") or chunk.get("web") or {}
        title = source.get("title") or DEFAULT_SOURCE_TITLE
        locator = source.get("uri") or ""
        key = locator or title
        if key in seen:
            continue
        seen.add(key)
        citations.append(Citation(title=title, locator=locator))
    return citations


def render_sources(text: str, citations: List[Citation]) -> str:
    """Append a human-readable Sources block to the answer text."""
    if not citations:
        return text
    lines = []
    for i, citation in enumerate(citations, start=1):
        line = f"[{i}] {citation.title}"
        if citation.locator and citation.locator != citation.title:
            line += f" ({citation.locator})"
        lines.append(line)
    return f"{text}\n\nSources:\n" + "\n".join(lines)


def _to_content(turn: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a history turn to Gemini `Content` shape."""
    if "parts" in turn:
        return turn
    role = "model" if turn.get("role") in ("assistant", "model") else "user"
    return {"role": role, "parts": [{"text": turn.get("content", "")}]}


class GeminiSearchClient:
    """Client for grounded generation over one or more File Search Stores."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "gemini",
            failure_threshold=5,
            recovery_timeout=60,
            counted_exceptions=(NetworkError, APIError),
            ignored_exceptions=(ClientRequestError,),
        )
        self.metrics = metrics

    def build_payload(
        self,
        query: str,
        store_handles: List[str],
        system_prompt: Optional[str] = None,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        contents = [_to_content(turn) for turn in history or []]
        contents.append({"role": "user", "parts": [{"text": query}]})

        payload: Dict[str, Any] = {
            "contents": contents,
            "tools": [{"file_search": {"file_search_store_names": list(store_handles)}}],
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return payload

    async def _generate(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/models/{model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self._api_key,
        }
        try:
            response = await self._client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise wrap_upstream_error(e, "gemini") from e
        return response.json()

    async def search(
        self,
        query: str,
        store_handles: List[str],
        model: str,
        system_prompt: Optional[str] = None,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> SearchResult:
        """
        Run one grounded generation call spanning every given store.

        Args:
            query: User turn text
            store_handles: File Search Store resource names ("fileSearchStores/xxx")
            model: Gemini model name
            system_prompt: Optional system instruction
            history: Optional prior turns, oldest first

        Returns:
            SearchResult whose text already carries the Sources block

        Raises:
            UpstreamError: On rate limit, network, API or open-circuit failures
        """
        payload = self.build_payload(query, store_handles, system_prompt, history)
        logger.info(f"Gemini file_search: model={model} stores={store_handles}")

        start = time.time()
        status = "success"
        try:
            result = await self.circuit_breaker.call_async(self._generate, model, payload)
        except UpstreamError:
            status = "error"
            raise
        except Exception as e:
            status = "error"
            raise wrap_upstream_error(e, "gemini") from e
        finally:
            if self.metrics:
                self.metrics.upstream_calls.labels(model=model, status=status).inc()
                self.metrics.upstream_call_duration.labels(model=model).observe(time.time() - start)

        candidates = result.get("candidates") or []
        if not candidates:
            return SearchResult(text=NO_RESPONSE_TEXT)

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part["text"] for part in parts if isinstance(part, dict) and part.get("text"))
        if not text.strip():
            text = NO_RESPONSE_TEXT

        citations = extract_citations(candidate.get("groundingMetadata") or candidate.get("grounding_metadata"))
        return SearchResult(text=render_sources(text, citations), citations=citations)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
