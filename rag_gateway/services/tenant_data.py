"""Tenant-scoped data access: settings, stores and documents."""

import logging
from typing import List, Optional, Tuple

from rag_gateway.adapters.supabase_store import SupabaseRestStore
from rag_gateway.infra.cache import TTLCache
from rag_gateway.infra.metrics import GatewayMetrics
from rag_gateway.models.store import (
    STORE_RESOURCE_PREFIX,
    DocumentRecord,
    KnowledgeStore,
    TenantSettings,
)

logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Failure a tool reports in-band; the message is shown to the agent as-is."""

    def user_message(self) -> str:
        return str(self)


class TenantRequiredError(ToolError):
    def __init__(self):
        super().__init__(
            "This tool needs an authenticated tenant, but the gateway is running without "
            "a tenant backend. Configure the backing store and connect with an MCP API key."
        )


class NoActiveStoreError(ToolError):
    def __init__(self):
        super().__init__(
            "⚠️ No active store set. Use set_active_store first (list_stores shows your stores), "
            "or pass storeId explicitly, or select a store in the Gemini RAG UI."
        )


class StoreNotFoundError(ToolError):
    def __init__(self, identifier: str, available: List[KnowledgeStore]):
        self.identifier = identifier
        if available:
            names = "\n".join(f"• {s.display_name} ({s.id})" for s in available)
            message = f'Store "{identifier}" not found.\n\nAvailable stores:\n{names}'
        else:
            message = f'Store "{identifier}" not found. You have no stores yet; create one in the Gemini RAG UI.'
        super().__init__(message)


class DocumentNotFoundError(ToolError):
    def __init__(self, reference: str, store: KnowledgeStore):
        super().__init__(
            f'Document "{reference}" not found in store "{store.display_name}" ({store.id}). '
            "Use list_documents to see the document IDs in this store."
        )


def match_store(stores: List[KnowledgeStore], identifier: str) -> Optional[KnowledgeStore]:
    """
    Find a store by identifier.

    Precedence: exact id or resource name, then display name (case-insensitive
    equality), then case-insensitive substring of the display name. The first
    store matching the highest-priority rule wins.
    """
    query = (identifier or "").strip()
    if not query:
        return None
    lowered = query.lower()

    for store in stores:
        if lowered in (store.id.lower(), store.name.lower(), store.handle.lower()):
            return store
    for store in stores:
        if store.display_name.lower() == lowered:
            return store
    for store in stores:
        if lowered in store.display_name.lower():
            return store
    return None


def split_document_name(name: str) -> Optional[Tuple[str, str]]:
    """Split 'fileSearchStores/<store>/documents/<doc>' into (store_id, doc_id)."""
    parts = name.strip("/").split("/")
    if len(parts) == 4 and f"{parts[0]}/" == STORE_RESOURCE_PREFIX and parts[2] == "documents":
        return parts[1], parts[3]
    return None


class TenantDataService:
    """
    Reads and patches tenant-owned entities.

    Every method takes the resolved tenant id; there is no notion of a
    current user. Settings are cached per tenant for `settings_ttl` seconds.
    """

    def __init__(
        self,
        data_store: Optional[SupabaseRestStore],
        settings_ttl: float = 30.0,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.data_store = data_store
        self.settings_cache: TTLCache = TTLCache(settings_ttl)
        self.metrics = metrics

    def _require(self, tenant_id: Optional[str]) -> SupabaseRestStore:
        if tenant_id is None or self.data_store is None:
            raise TenantRequiredError()
        return self.data_store

    async def get_settings(self, tenant_id: Optional[str]) -> TenantSettings:
        store = self._require(tenant_id)
        cached = self.settings_cache.get(tenant_id)
        if cached is not None:
            self._record_lookup("hit")
            return cached
        self._record_lookup("miss")

        settings = TenantSettings.from_row(await store.get_user_settings(tenant_id))
        self.settings_cache.set(tenant_id, settings)
        return settings

    def invalidate_settings(self, tenant_id: Optional[str]) -> None:
        if tenant_id is not None:
            self.settings_cache.invalidate(tenant_id)

    async def list_stores(self, tenant_id: Optional[str]) -> List[KnowledgeStore]:
        store = self._require(tenant_id)
        rows = await store.list_stores(tenant_id)
        return [KnowledgeStore.from_row(row) for row in rows]

    async def resolve_store(self, tenant_id: Optional[str], identifier: str) -> KnowledgeStore:
        """
        Resolve an identifier against the tenant's own stores.

        Raises:
            StoreNotFoundError: No store of this tenant matches
        """
        stores = await self.list_stores(tenant_id)
        match = match_store(stores, identifier)
        if match is None:
            raise StoreNotFoundError(identifier, stores)
        return match

    async def get_owned_store(self, tenant_id: Optional[str], store_id: str) -> KnowledgeStore:
        """Exact-id lookup among the tenant's stores (no fuzzy matching)."""
        stores = await self.list_stores(tenant_id)
        for store in stores:
            if store_id in (store.id, store.name, store.handle):
                return store
        raise StoreNotFoundError(store_id, stores)

    async def resolve_target_store(
        self,
        tenant_id: Optional[str],
        store_arg: Optional[str] = None,
        settings: Optional[TenantSettings] = None,
    ) -> KnowledgeStore:
        """
        Pick the store a tool should act on: the explicit argument if given,
        otherwise the tenant's active store.

        Raises:
            NoActiveStoreError: No argument and no active store
            StoreNotFoundError: The store does not belong to the tenant
        """
        if store_arg:
            return await self.resolve_store(tenant_id, store_arg)

        settings = settings or await self.get_settings(tenant_id)
        if not settings.active_store_id:
            raise NoActiveStoreError()

        try:
            return await self.get_owned_store(tenant_id, settings.active_store_id)
        except StoreNotFoundError:
            # Pointer to a store that was deleted or is not owned by this tenant
            logger.warning(f"Active store {settings.active_store_id} of tenant {tenant_id} is not among its stores")
            raise

    async def set_active_store(self, tenant_id: Optional[str], identifier: str) -> KnowledgeStore:
        """Fuzzy-resolve a store and persist its canonical id as the active store."""
        data_store = self._require(tenant_id)
        store = await self.resolve_store(tenant_id, identifier)
        await data_store.update_user_settings(tenant_id, {"active_store_id": store.id})
        self.invalidate_settings(tenant_id)
        logger.info(f"Tenant {tenant_id} set active store to {store.id}")
        return store

    async def list_documents(self, tenant_id: Optional[str], store: KnowledgeStore, limit: int = 50) -> List[DocumentRecord]:
        data_store = self._require(tenant_id)
        rows = await data_store.list_documents(tenant_id, store.id, limit=limit)
        return [DocumentRecord.from_row(row) for row in rows]

    async def find_document(self, tenant_id: Optional[str], store: KnowledgeStore, reference: str) -> DocumentRecord:
        """
        Find a tenant-owned document by id or upstream resource name.

        Raises:
            DocumentNotFoundError: No matching record in this store
        """
        data_store = self._require(tenant_id)
        reference = reference.strip()
        if "/" in reference:
            row = await data_store.get_document_by_name(tenant_id, reference)
        else:
            row = await data_store.get_document(tenant_id, store.id, reference)

        if not row or str(row.get("store_id")) != store.id:
            raise DocumentNotFoundError(reference, store)
        return DocumentRecord.from_row(row)

    async def delete_document_record(self, tenant_id: Optional[str], document: DocumentRecord) -> None:
        data_store = self._require(tenant_id)
        await data_store.delete_document(tenant_id, document.store_id, document.id)
        self.invalidate_settings(tenant_id)

    async def decrement_document_count(self, tenant_id: str, store_id: str) -> None:
        """Lower the store's document counter by one (never below zero)."""
        data_store = self._require(tenant_id)
        row = await data_store.get_store(tenant_id, store_id)
        if not row:
            return
        count = max(0, (row.get("document_count") or 0) - 1)
        await data_store.update_store(tenant_id, store_id, {"document_count": count})

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.cache_lookups.labels(cache="settings", result=result).inc()
