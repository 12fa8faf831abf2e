"""Process-scoped gateway state, built once at startup."""

import logging
from dataclasses import dataclass
from typing import Optional

from rag_gateway.adapters.gemini_documents import GeminiDocumentService
from rag_gateway.adapters.gemini_search import GeminiSearchClient
from rag_gateway.adapters.supabase_store import SupabaseRestStore
from rag_gateway.infra.background import BackgroundTaskSet
from rag_gateway.infra.config import Config
from rag_gateway.infra.metrics import GatewayMetrics
from rag_gateway.services.activity_log import ActivityLog
from rag_gateway.services.auth_resolver import AuthResolver
from rag_gateway.services.protocol_engine import ProtocolEngine
from rag_gateway.services.rag_tools import RagToolset, build_tool_registry
from rag_gateway.services.session_manager import SessionManager
from rag_gateway.services.tenant_data import TenantDataService
from rag_gateway.services.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class GatewayContext:
    """Everything the request handlers share. Attached to `app.state.context`."""
    config: Config
    metrics: GatewayMetrics
    background: BackgroundTaskSet
    activity_log: ActivityLog
    data_store: Optional[SupabaseRestStore]
    auth: AuthResolver
    tenant_data: TenantDataService
    search_client: GeminiSearchClient
    document_service: GeminiDocumentService
    sessions: SessionManager
    registry: ToolRegistry
    engine: ProtocolEngine

    @property
    def open_mode(self) -> bool:
        return self.data_store is None

    async def aclose(self) -> None:
        """Close sessions, let background work finish, release HTTP clients."""
        closed = self.sessions.close_all("shutdown")
        if closed:
            logger.info(f"Closed {closed} session(s) on shutdown")
        await self.background.drain()
        await self.search_client.aclose()
        if self.data_store is not None:
            await self.data_store.aclose()


def build_context(
    config: Config,
    data_store: Optional[SupabaseRestStore] = None,
    search_client: Optional[GeminiSearchClient] = None,
    document_service: Optional[GeminiDocumentService] = None,
    metrics: Optional[GatewayMetrics] = None,
) -> GatewayContext:
    """
    Wire the gateway components together.

    Args:
        config: Validated configuration
        data_store: Backing store adapter; created from config when omitted and configured
        search_client: Upstream search client; created from config when omitted
        document_service: Upstream document operations; created from config when omitted
        metrics: Metrics holder; a fresh registry is used when omitted

    Returns:
        GatewayContext
    """
    metrics = metrics or GatewayMetrics()
    background = BackgroundTaskSet()
    activity_log = ActivityLog(config.ACTIVITY_LOG_SIZE)

    if data_store is None and config.backing_store_configured:
        data_store = SupabaseRestStore(
            config.SUPABASE_URL,
            config.SUPABASE_ANON_KEY,
            timeout=config.BACKING_STORE_TIMEOUT_SECONDS,
        )
    if data_store is None:
        logger.warning("Backing store not configured: running in open mode without tenant scoping")

    search_client = search_client or GeminiSearchClient(
        config.GEMINI_API_KEY,
        base_url=config.GEMINI_API_BASE,
        timeout=config.UPSTREAM_TIMEOUT_SECONDS,
        metrics=metrics,
    )
    document_service = document_service or GeminiDocumentService(config.GEMINI_API_KEY)

    auth = AuthResolver(data_store, background, ttl_seconds=config.AUTH_CACHE_TTL_SECONDS, metrics=metrics)
    tenant_data = TenantDataService(data_store, settings_ttl=config.SETTINGS_CACHE_TTL_SECONDS, metrics=metrics)
    toolset = RagToolset(
        tenant_data,
        search_client,
        document_service,
        background,
        default_model=config.DEFAULT_MODEL,
        public_base_url=config.PUBLIC_BASE_URL,
    )
    registry = build_tool_registry(toolset)
    sessions = SessionManager(
        heartbeat_interval=config.HEARTBEAT_INTERVAL_SECONDS,
        history_size=config.SESSION_HISTORY_SIZE,
        metrics=metrics,
        activity_log=activity_log,
    )
    engine = ProtocolEngine(registry, activity_log=activity_log, metrics=metrics)

    return GatewayContext(
        config=config,
        metrics=metrics,
        background=background,
        activity_log=activity_log,
        data_store=data_store,
        auth=auth,
        tenant_data=tenant_data,
        search_client=search_client,
        document_service=document_service,
        sessions=sessions,
        registry=registry,
        engine=engine,
    )
