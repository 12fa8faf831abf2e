"""Health check API router."""

from fastapi import APIRouter, Depends

from rag_gateway import __version__
from rag_gateway.api.deps import get_context
from rag_gateway.context import GatewayContext

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check(context: GatewayContext = Depends(get_context)):
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "rag-gateway",
        "version": __version__,
        "sessions": len(context.sessions),
        "tools": len(context.registry),
        "backingStore": "disconnected" if context.open_mode else "configured",
        "upstreamCircuit": context.search_client.circuit_breaker.state.value,
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/metrics", tags=["Health"])
async def metrics(context: GatewayContext = Depends(get_context)):
    """Prometheus metrics endpoint."""
    return context.metrics.response()
