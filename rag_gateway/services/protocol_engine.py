"""MCP JSON-RPC 2.0 message handling."""

import logging
import time
from typing import Any, Dict, Optional

from rag_gateway import __version__
from rag_gateway.infra.error_handler import UpstreamError
from rag_gateway.infra.metrics import GatewayMetrics
from rag_gateway.models.tool import ToolResult
from rag_gateway.services.activity_log import ActivityLog
from rag_gateway.services.rag_tools import SERVER_NAME
from rag_gateway.services.session_manager import Session
from rag_gateway.services.tenant_data import TenantRequiredError, ToolError
from rag_gateway.services.tool_registry import ArgumentValidationError, ToolRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SESSION_NOT_FOUND = -32001


class JsonRpcError(Exception):
    """Structural protocol error, answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)

    def to_error(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


def error_response(request_id: Any, error: JsonRpcError) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_error()}


def check_envelope(message: Any) -> None:
    """
    Reject anything that is not a JSON-RPC 2.0 request or notification.

    Raises:
        JsonRpcError: INVALID_REQUEST
    """
    if not isinstance(message, dict):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: expected a JSON object")
    if message.get("jsonrpc") != "2.0":
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: jsonrpc must be '2.0'")
    if not isinstance(message.get("method"), str):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: method must be a string")


class ProtocolEngine:
    """
    Answers MCP requests for one session at a time.

    The tenant always comes from the Session object the request was routed
    to; nothing in the message itself can change it.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        activity_log: Optional[ActivityLog] = None,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.registry = registry
        self.activity_log = activity_log
        self.metrics = metrics

    async def handle(self, session: Session, message: Any) -> Optional[Dict[str, Any]]:
        """
        Process one message.

        Returns:
            The JSON-RPC response, or None for notifications
        """
        request_id = message.get("id") if isinstance(message, dict) else None
        try:
            check_envelope(message)
        except JsonRpcError as e:
            return error_response(request_id, e)

        method = message["method"]
        is_notification = "id" not in message
        try:
            result = await self._dispatch(session, method, message.get("params") or {})
        except JsonRpcError as e:
            if is_notification:
                return None
            return error_response(request_id, e)
        except Exception as e:
            logger.error(f"Internal error handling {method}: {e}", exc_info=True)
            if is_notification:
                return None
            return error_response(request_id, JsonRpcError(INTERNAL_ERROR, "Internal error"))
        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def process(self, session: Session, message: Any) -> bool:
        """
        Handle a message and push the response onto the session stream.

        Returns:
            False if a response was produced but the session is already gone
        """
        response = await self.handle(session, message)
        if response is None:
            return True
        delivered = session.transport.send(response)
        if not delivered:
            logger.info(f"Discarding response for closed session {session.session_id}")
        return delivered

    async def _dispatch(self, session: Session, method: str, params: Any) -> Dict[str, Any]:
        if method.startswith("notifications/"):
            return {}
        if not isinstance(params, dict):
            raise JsonRpcError(INVALID_PARAMS, "params must be an object")
        if method == "initialize":
            return self.initialize(params)
        if method == "ping":
            return {}
        if method == "tools/list":
            return self.registry.list_payload()
        if method == "tools/call":
            return await self.call_tool(session, params)
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    async def call_tool(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and run a tool for the session's tenant.

        Raises:
            JsonRpcError: Unknown tool or invalid arguments
        """
        name = params.get("name")
        tool = self.registry.get(name) if isinstance(name, str) else None
        if tool is None:
            raise JsonRpcError(INVALID_PARAMS, f"Unknown tool: {name}")

        try:
            arguments = self.registry.validate(name, params.get("arguments"))
        except ArgumentValidationError as e:
            raise JsonRpcError(INVALID_PARAMS, str(e), data={"errors": e.errors})

        tenant_id = session.tenant_id
        self._log(f"tools/call {name}", session, tool=name)

        start = time.time()
        if tool.tenant_scoped and tenant_id is None:
            result = ToolResult.failure(TenantRequiredError().user_message())
        else:
            result = await self._run(tool.handler, name, arguments, session)
        duration = time.time() - start

        if self.metrics:
            status = "error" if result.is_error else "success"
            self.metrics.tool_calls.labels(tool_name=name, status=status).inc()
            self.metrics.tool_call_duration.labels(tool_name=name).observe(duration)
        if result.is_error:
            self._log(f"{name} failed: {result.text[:200]}", session, tool=name, level="warning")
        return result.to_content()

    async def _run(self, handler, name: str, arguments: Dict[str, Any], session: Session) -> ToolResult:
        try:
            return await handler(arguments, session.tenant_id)
        except ToolError as e:
            return ToolResult.failure(e.user_message())
        except UpstreamError as e:
            logger.warning(f"Upstream failure in tool {name}: {e.message}")
            return ToolResult.failure(e.user_message())
        except Exception as e:
            logger.error(f"Unhandled error in tool {name}: {e}", exc_info=True)
            return ToolResult.failure(f"Error: {e}")

    def _log(self, message: str, session: Session, tool: Optional[str] = None, level: str = "info") -> None:
        if self.activity_log:
            self.activity_log.add(
                message,
                level=level,
                session_id=session.session_id,
                tenant_id=session.tenant_id,
                tool=tool,
            )
