"""Tenant-owned entity models (mirrors of backing store rows)."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

STORE_RESOURCE_PREFIX = "fileSearchStores/"


def to_store_handle(store_id: str) -> str:
    """Upstream resource name for a store id."""
    return store_id if store_id.startswith(STORE_RESOURCE_PREFIX) else f"{STORE_RESOURCE_PREFIX}{store_id}"


class KnowledgeStore(BaseModel):
    """A searchable document collection owned by one tenant."""
    id: str = Field(..., description="Store id (upstream id without prefix)")
    name: str = Field(..., description="Upstream handle, e.g. 'fileSearchStores/abc'")
    display_name: str = Field(..., description="Human-readable name")
    document_count: int = Field(default=0)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "KnowledgeStore":
        store_id = str(row["id"])
        return cls(
            id=store_id,
            name=row.get("name") or to_store_handle(store_id),
            display_name=row.get("display_name") or row.get("name") or store_id,
            document_count=row.get("document_count") or 0,
        )

    @property
    def handle(self) -> str:
        return to_store_handle(self.name or self.id)


class DocumentRecord(BaseModel):
    """A document ingested into a store."""
    id: str
    store_id: str
    name: str = Field(..., description="Upstream resource name, e.g. 'fileSearchStores/a/documents/b'")
    display_name: str
    original_filename: str = ""
    mime_type: Optional[str] = None
    size: int = 0
    local_path: Optional[str] = None
    uploaded_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DocumentRecord":
        return cls(
            id=str(row["id"]),
            store_id=str(row["store_id"]),
            name=row.get("name") or "",
            display_name=row.get("display_name") or row.get("original_filename") or str(row["id"]),
            original_filename=row.get("original_filename") or "",
            mime_type=row.get("mime_type"),
            size=row.get("size") or 0,
            local_path=row.get("local_path"),
            uploaded_at=row.get("uploaded_at"),
        )


class TenantSettings(BaseModel):
    """Per-tenant settings read by the tools."""
    active_store_id: Optional[str] = None
    active_model: Optional[str] = None
    system_prompt: Optional[str] = None

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]]) -> "TenantSettings":
        if not row:
            return cls()
        return cls(
            active_store_id=row.get("active_store_id") or None,
            active_model=row.get("active_model") or None,
            system_prompt=row.get("system_prompt") or None,
        )
