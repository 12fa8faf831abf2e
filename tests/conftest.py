"""Pytest configuration and fixtures."""

import os
from typing import Any, Dict, List, Optional

import pytest

from rag_gateway.adapters.gemini_search import SearchResult
from rag_gateway.adapters.supabase_store import BackingStoreError
from rag_gateway.context import build_context
from rag_gateway.infra.circuit_breaker import CircuitBreaker
from rag_gateway.infra.config import Config

# Set test environment
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"
KEY_A = "sk-aaaaaaaaaaaaaaaa"
KEY_B = "sk-bbbbbbbbbbbbbbbb"


class FakeBackingStore:
    """In-memory stand-in for SupabaseRestStore with the same coroutine API."""

    def __init__(self):
        self.keys: Dict[str, Dict[str, Any]] = {}
        self.settings: Dict[str, Dict[str, Any]] = {}
        self.stores: List[Dict[str, Any]] = []
        self.documents: List[Dict[str, Any]] = []
        self.key_lookups = 0
        self.touched: List[str] = []
        self.fail_lookups = False
        self.fail_touch = False

    # Seeding helpers

    def add_key(self, key_value: str, user_id: str, active: bool = True) -> None:
        self.keys[key_value] = {"id": f"key-{user_id}", "user_id": user_id, "is_active": active}

    def add_store(self, user_id: str, store_id: str, display_name: str, document_count: int = 0) -> None:
        self.stores.append({
            "id": store_id,
            "user_id": user_id,
            "name": f"fileSearchStores/{store_id}",
            "display_name": display_name,
            "document_count": document_count,
        })

    def add_document(self, user_id: str, store_id: str, doc_id: str, display_name: str, name: Optional[str] = None) -> None:
        self.documents.append({
            "id": doc_id,
            "user_id": user_id,
            "store_id": store_id,
            "name": name if name is not None else f"fileSearchStores/{store_id}/documents/{doc_id}",
            "display_name": display_name,
            "original_filename": display_name,
            "mime_type": "application/pdf",
            "size": 2048,
            "local_path": f"{doc_id}.pdf",
        })

    # SupabaseRestStore API

    async def find_api_key(self, key_value: str):
        self.key_lookups += 1
        if self.fail_lookups:
            raise BackingStoreError("connection refused")
        row = self.keys.get(key_value)
        if row and row["is_active"]:
            return {"id": row["id"], "user_id": row["user_id"]}
        return None

    async def touch_api_key(self, key_id: str) -> None:
        if self.fail_touch:
            raise BackingStoreError("timeout")
        self.touched.append(key_id)

    async def get_user_settings(self, user_id: str):
        return self.settings.get(user_id)

    async def update_user_settings(self, user_id: str, values: Dict[str, Any]) -> None:
        self.settings.setdefault(user_id, {}).update(values)

    async def list_stores(self, user_id: str):
        return [dict(s) for s in self.stores if s["user_id"] == user_id]

    async def get_store(self, user_id: str, store_id: str):
        for s in self.stores:
            if s["user_id"] == user_id and s["id"] == store_id:
                return dict(s)
        return None

    async def update_store(self, user_id: str, store_id: str, values: Dict[str, Any]) -> None:
        for s in self.stores:
            if s["user_id"] == user_id and s["id"] == store_id:
                s.update(values)

    async def list_documents(self, user_id: str, store_id: str, limit: int = 50):
        rows = [dict(d) for d in self.documents if d["user_id"] == user_id and d["store_id"] == store_id]
        return rows[:limit]

    async def get_document(self, user_id: str, store_id: str, document_id: str):
        for d in self.documents:
            if d["user_id"] == user_id and d["store_id"] == store_id and d["id"] == document_id:
                return dict(d)
        return None

    async def get_document_by_name(self, user_id: str, name: str):
        for d in self.documents:
            if d["user_id"] == user_id and d["name"] == name:
                return dict(d)
        return None

    async def delete_document(self, user_id: str, store_id: str, document_id: str) -> None:
        self.documents = [
            d for d in self.documents
            if not (d["user_id"] == user_id and d["store_id"] == store_id and d["id"] == document_id)
        ]

    async def aclose(self) -> None:
        pass


class FakeSearchClient:
    """Records search calls and answers from a canned template."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.circuit_breaker = CircuitBreaker("fake")

    async def search(self, query, store_handles, model, system_prompt=None, history=None) -> SearchResult:
        self.calls.append({
            "query": query,
            "store_handles": list(store_handles),
            "model": model,
            "system_prompt": system_prompt,
        })
        if self.error:
            raise self.error
        return SearchResult(text=f"Answer to: {query}")

    async def aclose(self) -> None:
        pass


class FakeDocumentService:
    def __init__(self):
        self.deleted: List[str] = []
        self.missing_upstream = set()
        self.error: Optional[Exception] = None

    async def delete_document(self, name: str) -> bool:
        if self.error:
            raise self.error
        if name in self.missing_upstream:
            return False
        self.deleted.append(name)
        return True


@pytest.fixture
def gateway_env(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-gemini-key")
    monkeypatch.setenv("SUPABASE_URL", "http://supabase.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://rag.example.com")
    monkeypatch.setenv("HEARTBEAT_INTERVAL_SECONDS", "15")
    monkeypatch.delenv("CORS_ORIGINS", raising=False)
    monkeypatch.delenv("DEFAULT_MODEL", raising=False)


@pytest.fixture
def config(gateway_env) -> Config:
    return Config()


@pytest.fixture
def backing_store() -> FakeBackingStore:
    store = FakeBackingStore()
    store.add_key(KEY_A, TENANT_A)
    store.add_key(KEY_B, TENANT_B)
    store.add_store(TENANT_A, "fin-123", "Finance Docs", document_count=2)
    store.add_store(TENANT_A, "mkt-456", "Marketing")
    store.add_store(TENANT_A, "alpha-1", "Alpha")
    store.add_document(TENANT_A, "fin-123", "doc-1", "q3-report.pdf")
    store.add_document(TENANT_A, "fin-123", "doc-2", "budget.xlsx")
    return store


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def document_service() -> FakeDocumentService:
    return FakeDocumentService()


@pytest.fixture
def context(config, backing_store, search_client, document_service):
    return build_context(
        config,
        data_store=backing_store,
        search_client=search_client,
        document_service=document_service,
    )


@pytest.fixture
def open_context(monkeypatch, gateway_env, search_client, document_service):
    """Context without a backing store (open mode)."""
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    monkeypatch.delenv("NEXT_PUBLIC_SUPABASE_URL", raising=False)
    monkeypatch.delenv("NEXT_PUBLIC_SUPABASE_ANON_KEY", raising=False)
    return build_context(Config(), search_client=search_client, document_service=document_service)


def rpc(method: str, params: Optional[Dict[str, Any]] = None, request_id: Any = 1) -> Dict[str, Any]:
    message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def call(name: str, arguments: Optional[Dict[str, Any]] = None, request_id: Any = 1) -> Dict[str, Any]:
    return rpc("tools/call", {"name": name, "arguments": arguments or {}}, request_id)
