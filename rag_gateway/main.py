"""FastAPI application for the Gemini RAG MCP gateway."""

import logging
import sys
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rag_gateway import __version__
from rag_gateway.api.routers import health, sse, status
from rag_gateway.context import GatewayContext, build_context
from rag_gateway.infra.config import Config, ConfigError, load_config
from rag_gateway.infra.logging import setup_logging
from rag_gateway.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors

logger = logging.getLogger(__name__)


def create_app(config: Optional[Config] = None, context: Optional[GatewayContext] = None) -> FastAPI:
    """
    Build the application.

    Args:
        config: Configuration; read from the environment when omitted
        context: Prebuilt gateway context (tests); built at startup when omitted
    """
    if context is not None:
        config = context.config
    config = config or Config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        app_logger = setup_logging(config.DEBUG)
        owned = context is None
        if owned:
            # Refuse to start without the upstream key
            config.validate()
            app.state.context = build_context(config)
        else:
            app.state.context = context
        app_logger.info(
            "Gemini RAG MCP gateway starting up",
            extra={
                "port": config.PORT,
                "open_mode": app.state.context.open_mode,
                "tools": app.state.context.registry.names(),
            },
        )

        yield

        app_logger.info("Gemini RAG MCP gateway shutting down")
        if owned:
            await app.state.context.aclose()
        else:
            app.state.context.sessions.close_all("shutdown")

    app = FastAPI(
        title="Gemini RAG MCP Gateway",
        description="Model Context Protocol (HTTP+SSE) gateway exposing Gemini File Search stores to AI agents.",
        version=__version__,
        lifespan=lifespan,
        tags_metadata=[
            {"name": "MCP", "description": "MCP HTTP+SSE transport"},
            {"name": "Status", "description": "Sessions, history and activity log"},
            {"name": "Health", "description": "Health check and monitoring endpoints"},
        ],
    )

    # Last added runs first; the request id must exist before the logger reads it
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    setup_cors(app, config.CORS_ORIGINS, config.APP_ENV)

    app.include_router(sse.router)
    app.include_router(status.router)
    app.include_router(health.router)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors()},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions."""
        error_id = str(uuid.uuid4())
        logger.error(
            f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id}
        )
        return JSONResponse(
            status_code=500,
            content={"detail": f"Internal server error. Error ID: {error_id}"},
        )

    return app


def run() -> None:
    """Console entry point: validate configuration, then serve with uvicorn."""
    import uvicorn

    try:
        config = load_config()
    except ConfigError as e:
        print(f"[MCP] Fatal configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    uvicorn.run(
        create_app(config),
        host="0.0.0.0",
        port=config.PORT,
        log_level="debug" if config.DEBUG else "info",
        timeout_graceful_shutdown=5,
    )


if __name__ == "__main__":
    run()
