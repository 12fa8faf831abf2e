"""Tests for RAG tool behavior through the protocol engine."""

import pytest

from rag_gateway.infra.error_handler import NetworkError, RateLimitError

from conftest import KEY_A, KEY_B, TENANT_A, TENANT_B, call


async def run_tool(context, session, name, arguments=None):
    response = await context.engine.handle(session, call(name, arguments))
    result = response["result"]
    return result["content"][0]["text"], result["isError"]


@pytest.fixture
def session_a(context):
    return context.sessions.open_session(TENANT_A, KEY_A)


@pytest.fixture
def session_b(context):
    return context.sessions.open_session(TENANT_B, KEY_B)


class TestChat:
    @pytest.mark.asyncio
    async def test_no_active_store_is_in_band_guidance(self, context, session_b, search_client):
        text, is_error = await run_tool(context, session_b, "chat", {"message": "hello"})
        assert is_error is True
        assert "set_active_store" in text
        assert search_client.calls == []

    @pytest.mark.asyncio
    async def test_chat_uses_active_store_and_tenant_settings(self, context, session_a, backing_store, search_client):
        backing_store.settings[TENANT_A] = {
            "active_store_id": "fin-123",
            "active_model": "gemini-2.5-pro",
            "system_prompt": "Answer tersely.",
        }
        text, is_error = await run_tool(context, session_a, "chat", {"message": "What was Q3 revenue?"})

        assert is_error is False
        assert text == "Answer to: What was Q3 revenue?"
        assert search_client.calls == [{
            "query": "What was Q3 revenue?",
            "store_handles": ["fileSearchStores/fin-123"],
            "model": "gemini-2.5-pro",
            "system_prompt": "Answer tersely.",
        }]

    @pytest.mark.asyncio
    async def test_model_argument_overrides_and_default_applies(self, context, session_a, search_client):
        await run_tool(context, session_a, "chat", {"message": "a", "storeId": "fin-123", "model": "gemini-2.0-flash"})
        await run_tool(context, session_a, "chat", {"message": "b", "storeId": "fin-123"})
        assert [c["model"] for c in search_client.calls] == ["gemini-2.0-flash", "gemini-2.5-flash"]

    @pytest.mark.asyncio
    async def test_cross_tenant_store_is_not_found(self, context, session_b, search_client):
        text, is_error = await run_tool(context, session_b, "chat_with_store", {"message": "x", "storeId": "Alpha"})
        assert is_error is True
        assert "not found" in text
        assert search_client.calls == []

    @pytest.mark.asyncio
    async def test_chat_with_store_fuzzy_match(self, context, session_a, search_client):
        _, is_error = await run_tool(context, session_a, "chat_with_store", {"message": "x", "storeId": "market"})
        assert is_error is False
        assert search_client.calls[0]["store_handles"] == ["fileSearchStores/mkt-456"]

    @pytest.mark.asyncio
    async def test_chat_all_stores_is_one_call(self, context, session_a, search_client):
        await run_tool(context, session_a, "chat_all_stores", {"message": "overview"})
        assert len(search_client.calls) == 1
        assert search_client.calls[0]["store_handles"] == [
            "fileSearchStores/fin-123",
            "fileSearchStores/mkt-456",
            "fileSearchStores/alpha-1",
        ]

    @pytest.mark.asyncio
    async def test_chat_all_stores_without_stores(self, context, session_b):
        text, is_error = await run_tool(context, session_b, "chat_all_stores", {"message": "overview"})
        assert is_error is True
        assert "No stores found" in text

    @pytest.mark.asyncio
    async def test_rate_limit_is_reported_in_band(self, context, session_a, search_client):
        search_client.error = RateLimitError("gemini rate limit exceeded (429)")
        text, is_error = await run_tool(context, session_a, "chat", {"message": "x", "storeId": "fin-123"})
        assert is_error is True
        assert "QUOTA_EXCEEDED" in text

    @pytest.mark.asyncio
    async def test_network_failure_is_reported_in_band(self, context, session_a, search_client):
        search_client.error = NetworkError("gemini request timed out")
        text, is_error = await run_tool(context, session_a, "summarize", {"storeId": "fin-123"})
        assert is_error is True
        assert "timed out" in text

    @pytest.mark.asyncio
    async def test_summarize_focus_prompt(self, context, session_a, search_client):
        await run_tool(context, session_a, "summarize", {"storeId": "fin-123", "focus": "risks"})
        await run_tool(context, session_a, "summarize", {"storeId": "fin-123"})
        assert search_client.calls[0]["query"].endswith("focusing specifically on: risks")
        assert "comprehensive summary" in search_client.calls[1]["query"]


class TestStores:
    @pytest.mark.asyncio
    async def test_set_then_get_active_store_round_trip(self, context, session_a):
        text, is_error = await run_tool(context, session_a, "set_active_store", {"storeId": "Finance Docs"})
        assert is_error is False
        assert "Finance Docs (fin-123)" in text

        text, is_error = await run_tool(context, session_a, "get_active_store")
        assert is_error is False
        assert text.startswith("Active store: Finance Docs\n")

    @pytest.mark.asyncio
    async def test_set_active_store_invalidates_stale_settings(self, context, session_a, backing_store):
        backing_store.settings[TENANT_A] = {"active_store_id": "mkt-456"}
        await run_tool(context, session_a, "get_active_store")

        await run_tool(context, session_a, "set_active_store", {"storeId": "alpha"})
        text, _ = await run_tool(context, session_a, "get_active_store")
        assert "Active store: Alpha" in text

    @pytest.mark.asyncio
    async def test_list_stores_marks_active(self, context, session_a, backing_store):
        backing_store.settings[TENANT_A] = {"active_store_id": "mkt-456"}
        text, _ = await run_tool(context, session_a, "list_stores")
        assert text.startswith("3 store(s)")
        assert "★ Marketing" in text
        assert "★ Finance Docs" not in text

    @pytest.mark.asyncio
    async def test_get_active_store_when_unset(self, context, session_b):
        text, is_error = await run_tool(context, session_b, "get_active_store")
        assert is_error is False
        assert "No active store set" in text


class TestDocuments:
    @pytest.mark.asyncio
    async def test_list_documents(self, context, session_a):
        text, is_error = await run_tool(context, session_a, "list_documents", {"storeId": "fin-123"})
        assert is_error is False
        assert text.startswith('2 document(s) in "Finance Docs"')
        assert "ID: doc-1" in text

    @pytest.mark.asyncio
    async def test_list_documents_respects_limit(self, context, session_a):
        text, _ = await run_tool(context, session_a, "list_documents", {"storeId": "fin-123", "limit": 1})
        assert text.startswith("1 document(s)")

    @pytest.mark.asyncio
    async def test_zero_limit_is_clamped_to_one(self, context, session_a):
        text, is_error = await run_tool(context, session_a, "list_documents", {"storeId": "fin-123", "limit": 0})
        assert is_error is False
        assert text.startswith("1 document(s)")

    @pytest.mark.asyncio
    async def test_delete_document(self, context, session_a, backing_store, document_service):
        await context.tenant_data.get_settings(TENANT_A)

        text, is_error = await run_tool(context, session_a, "delete_document", {"documentId": "doc-1", "storeId": "fin-123"})
        await context.background.drain()

        assert is_error is False
        assert "Deleted" in text
        assert document_service.deleted == ["fileSearchStores/fin-123/documents/doc-1"]
        assert [d["id"] for d in backing_store.documents] == ["doc-2"]
        assert (await backing_store.get_store(TENANT_A, "fin-123"))["document_count"] == 1
        assert len(context.tenant_data.settings_cache) == 0

    @pytest.mark.asyncio
    async def test_delete_succeeds_when_already_gone_upstream(self, context, session_a, backing_store, document_service):
        document_service.missing_upstream.add("fileSearchStores/fin-123/documents/doc-2")
        text, is_error = await run_tool(
            context, session_a, "delete_document", {"documentId": "fileSearchStores/fin-123/documents/doc-2"}
        )
        assert is_error is False
        assert "already gone" in text
        assert [d["id"] for d in backing_store.documents] == ["doc-1"]

    @pytest.mark.asyncio
    async def test_delete_fails_when_local_record_missing(self, context, session_a, document_service):
        text, is_error = await run_tool(context, session_a, "delete_document", {"documentId": "doc-999", "storeId": "fin-123"})
        assert is_error is True
        assert "not found" in text
        assert document_service.deleted == []

    @pytest.mark.asyncio
    async def test_delete_other_tenants_document_by_name_is_refused(self, context, session_b, backing_store):
        text, is_error = await run_tool(
            context, session_b, "delete_document", {"documentId": "fileSearchStores/fin-123/documents/doc-1"}
        )
        assert is_error is True
        assert len(backing_store.documents) == 2

    @pytest.mark.asyncio
    async def test_get_document_link(self, context, session_a):
        text, is_error = await run_tool(context, session_a, "get_document_link", {"documentId": "doc-2", "storeId": "Finance"})
        assert is_error is False
        assert text == "budget.xlsx\nhttps://rag.example.com/api/stores/fin-123/documents/doc-2/download"


class TestOpenMode:
    @pytest.mark.asyncio
    async def test_tenant_tools_refuse_without_tenant(self, open_context, search_client):
        session = open_context.sessions.open_session(None, "dev")
        text, is_error = await run_tool(open_context, session, "chat", {"message": "hi", "storeId": "x"})
        assert is_error is True
        assert "tenant" in text
        assert search_client.calls == []

    @pytest.mark.asyncio
    async def test_help_still_works(self, open_context):
        session = open_context.sessions.open_session(None, "dev")
        text, is_error = await run_tool(open_context, session, "help")
        assert is_error is False
        for name in ("chat", "chat_all_stores", "delete_document", "get_document_link"):
            assert name in text
