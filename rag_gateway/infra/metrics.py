"""Prometheus metrics export."""

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class GatewayMetrics:
    """Gateway metrics bound to one registry so each process context owns its own."""

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()

        # Sessions
        self.active_sessions = Gauge(
            "mcp_active_sessions",
            "Number of live MCP sessions",
            registry=self.registry,
        )
        self.sessions_opened = Counter(
            "mcp_sessions_opened_total",
            "Total MCP sessions opened",
            registry=self.registry,
        )
        self.sessions_closed = Counter(
            "mcp_sessions_closed_total",
            "Total MCP sessions closed",
            ["reason"],
            registry=self.registry,
        )

        # Tool metrics
        self.tool_calls = Counter(
            "mcp_tool_calls_total",
            "Total tool calls",
            ["tool_name", "status"],
            registry=self.registry,
        )
        self.tool_call_duration = Histogram(
            "mcp_tool_call_duration_seconds",
            "Tool call duration in seconds",
            ["tool_name"],
            registry=self.registry,
        )

        # Upstream search metrics
        self.upstream_calls = Counter(
            "upstream_search_calls_total",
            "Total upstream generative search calls",
            ["model", "status"],
            registry=self.registry,
        )
        self.upstream_call_duration = Histogram(
            "upstream_search_duration_seconds",
            "Upstream generative search duration in seconds",
            ["model"],
            registry=self.registry,
        )

        # Caches
        self.cache_lookups = Counter(
            "cache_lookups_total",
            "Cache lookups by cache and result",
            ["cache", "result"],  # result: hit or miss
            registry=self.registry,
        )

    def response(self) -> Response:
        """Get Prometheus metrics as HTTP response."""
        return Response(
            content=generate_latest(self.registry),
            media_type=CONTENT_TYPE_LATEST,
        )
