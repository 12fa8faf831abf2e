"""MCP HTTP+SSE transport endpoints."""

import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from rag_gateway.api.deps import Caller, get_context, require_caller
from rag_gateway.context import GatewayContext
from rag_gateway.services.protocol_engine import (
    INVALID_REQUEST,
    PARSE_ERROR,
    SESSION_NOT_FOUND,
    JsonRpcError,
    check_envelope,
    error_response,
)
from rag_gateway.services.session_manager import Session

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class EventStreamResponse(StreamingResponse):
    """StreamingResponse that runs `on_finish` however the response ends."""

    def __init__(self, content: AsyncIterator[str], on_finish: Callable[[], Any], **kwargs):
        super().__init__(content, media_type="text/event-stream", headers=SSE_HEADERS, **kwargs)
        self._on_finish = on_finish

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # Covers disconnects before the body iterator ever started
            self._on_finish()


@router.get("/sse", tags=["MCP"])
async def open_stream(
    caller: Caller = Depends(require_caller),
    context: GatewayContext = Depends(get_context),
):
    """Open an MCP session. The first event names the message endpoint for this session."""
    session = context.sessions.open_session(caller.tenant_id, caller.credential)
    logger.info(
        "SSE session opened",
        extra={"session_id": session.session_id, "tenant_id": caller.tenant_id},
    )
    return EventStreamResponse(
        context.sessions.stream(session),
        on_finish=lambda: context.sessions.close(session.session_id, "disconnect"),
    )


def _rpc_error(http_status: int, code: int, message: str, request_id: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=http_status,
        content=error_response(request_id, JsonRpcError(code, message)),
    )


@router.post("/messages", tags=["MCP"])
async def post_message(
    request: Request,
    session_id: Optional[str] = Query(None, alias="sessionId"),
    context: GatewayContext = Depends(get_context),
):
    """
    Deliver one client message (or a batch) to a live session.

    Messages are processed in the background; their responses are pushed on
    the session's event stream. Inside a batch, a malformed element is
    answered with its own error on the stream and the rest still run.
    """
    session = context.sessions.get(session_id)
    if session is None:
        return _rpc_error(status.HTTP_404_NOT_FOUND, SESSION_NOT_FOUND, "Session not found")

    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return _rpc_error(status.HTTP_400_BAD_REQUEST, PARSE_ERROR, "Parse error")

    if not isinstance(payload, list):
        try:
            check_envelope(payload)
        except JsonRpcError as e:
            request_id = payload.get("id") if isinstance(payload, dict) else None
            return _rpc_error(status.HTTP_400_BAD_REQUEST, e.code, e.message, request_id)
        _dispatch(context, session, payload)
        return PlainTextResponse("Accepted", status_code=status.HTTP_202_ACCEPTED)

    if not payload:
        return _rpc_error(status.HTTP_400_BAD_REQUEST, INVALID_REQUEST, "Invalid Request: empty batch")
    for message in payload:
        try:
            check_envelope(message)
        except JsonRpcError as e:
            request_id = message.get("id") if isinstance(message, dict) else None
            session.transport.send(error_response(request_id, e))
            continue
        _dispatch(context, session, message)
    return PlainTextResponse("Accepted", status_code=status.HTTP_202_ACCEPTED)


def _dispatch(context: GatewayContext, session: Session, message: Dict[str, Any]) -> None:
    context.background.spawn(
        context.engine.process(session, message),
        name=f"mcp:{message['method']}",
    )
