"""Tests for tenant-scoped store resolution and settings caching."""

import pytest

from rag_gateway.models.store import KnowledgeStore
from rag_gateway.services.tenant_data import (
    NoActiveStoreError,
    StoreNotFoundError,
    TenantDataService,
    TenantRequiredError,
    match_store,
    split_document_name,
)

from conftest import TENANT_A, TENANT_B


def make_store(store_id: str, display_name: str) -> KnowledgeStore:
    return KnowledgeStore(id=store_id, name=f"fileSearchStores/{store_id}", display_name=display_name)


class TestMatchStore:
    def test_exact_id_beats_display_name(self):
        stores = [make_store("b1", "docs"), make_store("docs", "Project X")]
        assert match_store(stores, "docs").id == "docs"

    def test_resource_name_matches_id(self):
        stores = [make_store("abc", "Alpha")]
        assert match_store(stores, "fileSearchStores/abc").id == "abc"

    def test_display_name_equality_beats_substring(self):
        stores = [make_store("s1", "Finance Docs Archive"), make_store("s2", "Finance Docs")]
        assert match_store(stores, "finance docs").id == "s2"

    def test_substring_match_is_case_insensitive(self):
        stores = [make_store("s1", "Finance Docs Archive"), make_store("s2", "Marketing")]
        assert match_store(stores, "ARCH").id == "s1"

    def test_first_substring_match_wins(self):
        stores = [make_store("s1", "Team Notes"), make_store("s2", "Notes Backup")]
        assert match_store(stores, "notes").id == "s1"

    def test_no_match(self):
        assert match_store([make_store("s1", "Alpha")], "beta") is None
        assert match_store([make_store("s1", "Alpha")], "  ") is None


def test_split_document_name():
    assert split_document_name("fileSearchStores/fin-123/documents/doc-1") == ("fin-123", "doc-1")
    assert split_document_name("doc-1") is None
    assert split_document_name("stores/x/documents/y") is None


class TestTenantDataService:
    @pytest.fixture
    def service(self, backing_store):
        return TenantDataService(backing_store, settings_ttl=30)

    @pytest.mark.asyncio
    async def test_store_search_space_is_the_tenant(self, service):
        with pytest.raises(StoreNotFoundError):
            await service.resolve_store(TENANT_B, "Alpha")
        store = await service.resolve_store(TENANT_A, "Alpha")
        assert store.id == "alpha-1"

    @pytest.mark.asyncio
    async def test_not_found_lists_available_stores(self, service):
        with pytest.raises(StoreNotFoundError) as exc_info:
            await service.resolve_store(TENANT_A, "Legal")
        message = exc_info.value.user_message()
        assert 'Store "Legal" not found' in message
        assert "Finance Docs (fin-123)" in message

    @pytest.mark.asyncio
    async def test_no_active_store(self, service):
        with pytest.raises(NoActiveStoreError):
            await service.resolve_target_store(TENANT_A)

    @pytest.mark.asyncio
    async def test_active_store_pointing_elsewhere_is_not_found(self, service, backing_store):
        backing_store.settings[TENANT_B] = {"active_store_id": "fin-123"}
        with pytest.raises(StoreNotFoundError):
            await service.resolve_target_store(TENANT_B)

    @pytest.mark.asyncio
    async def test_set_active_store_persists_canonical_id_and_invalidates(self, service, backing_store):
        await service.get_settings(TENANT_A)
        assert len(service.settings_cache) == 1

        store = await service.set_active_store(TENANT_A, "finance")

        assert store.id == "fin-123"
        assert backing_store.settings[TENANT_A]["active_store_id"] == "fin-123"
        assert (await service.get_settings(TENANT_A)).active_store_id == "fin-123"

    @pytest.mark.asyncio
    async def test_settings_are_cached(self, service, backing_store):
        backing_store.settings[TENANT_A] = {"active_model": "gemini-2.5-pro"}
        await service.get_settings(TENANT_A)
        backing_store.settings[TENANT_A] = {"active_model": "changed"}
        assert (await service.get_settings(TENANT_A)).active_model == "gemini-2.5-pro"

    @pytest.mark.asyncio
    async def test_none_tenant_is_refused(self, service):
        with pytest.raises(TenantRequiredError):
            await service.list_stores(None)
