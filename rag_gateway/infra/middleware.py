"""Request middleware for tracking, CORS, and other cross-cutting concerns.

Both middlewares are plain ASGI callables rather than BaseHTTPMiddleware so
the long-lived SSE responses stream through them untouched.
"""

import logging
import time
import uuid
from typing import List

from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("rag_gateway.request")


class RequestIDMiddleware:
    """Attach a request ID to every HTTP request and response."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for name, value in scope.get("headers", []):
            if name == b"x-request-id":
                request_id = value.decode("latin-1")
                break
        request_id = request_id or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id
            await send(message)

        await self.app(scope, receive, send_with_id)


class RequestLoggingMiddleware:
    """Log request start and completion with timing."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        request_id = scope.get("state", {}).get("request_id", "unknown")
        client = scope.get("client")
        status_holder = {"status_code": None}

        logger.info(
            "Request started",
            extra={
                "request_id": request_id,
                "method": scope.get("method"),
                "path": scope.get("path"),
                "client": client[0] if client else None,
            },
        )

        async def send_with_status(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status_code"] = message["status"]
                duration_ms = int((time.time() - start_time) * 1000)
                headers = MutableHeaders(scope=message)
                headers["X-Response-Time-Ms"] = str(duration_ms)
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "request_id": request_id,
                    "method": scope.get("method"),
                    "path": scope.get("path"),
                    "error": str(e),
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
                exc_info=True,
            )
            raise

        # For SSE this fires when the stream ends, so duration is the connection lifetime
        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "method": scope.get("method"),
                "path": scope.get("path"),
                "status_code": status_holder["status_code"],
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )


def setup_cors(app, allowed_origins: List[str], app_env: str = "development"):
    """Setup CORS middleware from the configured allow-list."""
    # SECURITY: Never use wildcard outside development
    if app_env != "development":
        allowed_origins = [origin for origin in allowed_origins if origin != "*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-API-Key",
            "X-Request-ID",
        ],
        expose_headers=["X-Request-ID", "X-Response-Time-Ms"],
    )
