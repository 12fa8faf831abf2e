"""Session state models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """Lifecycle of one streaming connection."""
    PENDING_AUTH = "pending_auth"
    ESTABLISHED = "established"
    CLOSED = "closed"


class SessionRecord(BaseModel):
    """Diagnostic record of a closed session (kept in a bounded history)."""
    session_id: str = Field(..., description="Opaque session token")
    tenant_id: Optional[str] = Field(None, description="Tenant the session was bound to")
    established_at: float = Field(..., description="Unix timestamp when the stream opened")
    closed_at: float = Field(..., description="Unix timestamp when the session closed")
    close_reason: str = Field(default="closed", description="disconnect | heartbeat | explicit | shutdown")

    def to_status(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "tenantId": self.tenant_id,
            "establishedAt": iso_timestamp(self.established_at),
            "closedAt": iso_timestamp(self.closed_at),
            "durationSeconds": round(self.closed_at - self.established_at, 3),
            "closeReason": self.close_reason,
        }


def iso_timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
