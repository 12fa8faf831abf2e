"""Supabase (PostgREST) adapter for tenant-owned rows."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

_STORE_COLUMNS = "id,name,display_name,document_count"
_DOCUMENT_COLUMNS = "id,store_id,name,display_name,original_filename,mime_type,size,local_path,uploaded_at"


class BackingStoreError(Exception):
    """The backing store could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def _eq(value: Any) -> str:
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseRestStore:
    """
    Thin async client over the Supabase REST API.

    Every tenant-owned query carries a `user_id=eq.<tenant>` filter; the
    row-level security policy on the database side is the authorization
    boundary, this filter is the scoping the gateway relies on.
    """

    def __init__(self, url: str, anon_key: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self._anon_key = anon_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._anon_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = self._headers
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise BackingStoreError(f"Backing store request to {table} failed: {e}") from e

        logger.debug(f"Backing store {method} {table} -> {response.status_code}")
        if response.status_code >= 400:
            raise BackingStoreError(
                f"Backing store returned {response.status_code} for {method} {table}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        rows = await self._request("GET", table, params=params)
        return rows or []

    # API keys

    async def find_api_key(self, key_value: str) -> Optional[Dict[str, Any]]:
        """Return the active api-key row for a credential, or None."""
        rows = await self._select(
            "mcp_api_keys",
            {"key_value": _eq(key_value), "is_active": _eq(True), "select": "id,user_id", "limit": "1"},
        )
        return rows[0] if rows else None

    async def touch_api_key(self, key_id: str) -> None:
        await self._request(
            "PATCH",
            "mcp_api_keys",
            params={"id": _eq(key_id)},
            json={"last_used_at": datetime.now(timezone.utc).isoformat()},
        )

    # Settings

    async def get_user_settings(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._select(
            "user_settings",
            {"user_id": _eq(user_id), "select": "active_store_id,active_model,system_prompt"},
        )
        return rows[0] if rows else None

    async def update_user_settings(self, user_id: str, values: Dict[str, Any]) -> None:
        """Upsert the tenant's settings row."""
        await self._request(
            "POST",
            "user_settings",
            params={"on_conflict": "user_id"},
            json={"user_id": user_id, **values},
            prefer="resolution=merge-duplicates",
        )

    # Stores

    async def list_stores(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._select(
            "stores",
            {
                "user_id": _eq(user_id),
                "select": _STORE_COLUMNS,
                "order": "created_at.asc",
            },
        )

    async def get_store(self, user_id: str, store_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._select(
            "stores",
            {"user_id": _eq(user_id), "id": _eq(store_id), "select": _STORE_COLUMNS},
        )
        return rows[0] if rows else None

    async def update_store(self, user_id: str, store_id: str, values: Dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            "stores",
            params={"user_id": _eq(user_id), "id": _eq(store_id)},
            json=values,
        )

    # Documents

    async def list_documents(self, user_id: str, store_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return await self._select(
            "documents",
            {
                "user_id": _eq(user_id),
                "store_id": _eq(store_id),
                "select": _DOCUMENT_COLUMNS,
                "order": "uploaded_at.desc",
                "limit": str(limit),
            },
        )

    async def get_document(self, user_id: str, store_id: str, document_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._select(
            "documents",
            {
                "user_id": _eq(user_id),
                "store_id": _eq(store_id),
                "id": _eq(document_id),
                "select": _DOCUMENT_COLUMNS,
            },
        )
        return rows[0] if rows else None

    async def get_document_by_name(self, user_id: str, name: str) -> Optional[Dict[str, Any]]:
        """Look a document up by its upstream resource name."""
        rows = await self._select(
            "documents",
            {
                "user_id": _eq(user_id),
                "name": _eq(name),
                "select": _DOCUMENT_COLUMNS,
            },
        )
        return rows[0] if rows else None

    async def delete_document(self, user_id: str, store_id: str, document_id: str) -> None:
        await self._request(
            "DELETE",
            "documents",
            params={"user_id": _eq(user_id), "store_id": _eq(store_id), "id": _eq(document_id)},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
