"""Session status and activity log endpoints."""

from fastapi import APIRouter, Depends

from rag_gateway.api.deps import Caller, get_context, require_caller
from rag_gateway.context import GatewayContext
from rag_gateway.services.auth_resolver import mask_credential

router = APIRouter(prefix="/api")


@router.get("/mcp-status", tags=["Status"])
async def mcp_status(
    caller: Caller = Depends(require_caller),
    context: GatewayContext = Depends(get_context),
):
    """
    Live sessions, recent session history and activity for the caller's tenant.

    Without a tenant backend every session is visible.
    """
    tenant_id = caller.tenant_id
    return {
        "status": "running",
        "openMode": context.open_mode,
        "sessions": [s.to_status(mask_credential) for s in context.sessions.list_sessions(tenant_id)],
        "history": [r.to_status() for r in context.sessions.history(tenant_id)],
        "logs": [e.to_status() for e in context.activity_log.entries(tenant_id)],
    }


@router.post("/mcp-logs/clear", tags=["Status"])
async def clear_logs(
    caller: Caller = Depends(require_caller),
    context: GatewayContext = Depends(get_context),
):
    """Clear the caller's activity log entries."""
    cleared = context.activity_log.clear(caller.tenant_id)
    return {"success": True, "cleared": cleared}
