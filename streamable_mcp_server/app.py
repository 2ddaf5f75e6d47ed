"""FastAPI application factory.

Every call builds an independent server instance (registry, engine, router,
lifecycle controller) exposed on ``app.state``, so several apps can live in
one process.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mcp.server.streamable_http import LAST_EVENT_ID_HEADER, MCP_PROTOCOL_VERSION_HEADER, MCP_SESSION_ID_HEADER

from streamable_mcp_server.config import ServerSettings
from streamable_mcp_server.engine import McpEngine
from streamable_mcp_server.lifecycle import LifecycleController
from streamable_mcp_server.logging_config import RequestLoggingMiddleware
from streamable_mcp_server.sessions import InMemoryEventStore, McpRequestRouter, SessionRegistry, TransportHandle
from streamable_mcp_server.tools import register_greeting_tools

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"


def create_engine(settings: ServerSettings) -> McpEngine:
    """Create the protocol engine with the example tools registered."""
    engine = McpEngine(settings.name, settings.version)
    register_greeting_tools(engine)
    return engine


def create_app(settings: Optional[ServerSettings] = None, engine: Optional[McpEngine] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Server settings; read from the environment when omitted
        engine: Protocol engine to serve; a default one with the greeting tools is created when omitted

    Returns:
        The application, with ``registry``, ``engine``, ``router``, ``lifecycle`` and ``settings`` on ``app.state``
    """
    settings = settings or ServerSettings.from_env()
    engine = engine or create_engine(settings)
    registry = SessionRegistry()
    event_store_factory = partial(InMemoryEventStore, settings.max_events_per_stream) if settings.resumable else None

    handle_factory = partial(
        TransportHandle,
        json_response=settings.json_response,
        event_store_factory=event_store_factory,
        close_timeout=settings.close_timeout,
    )
    router = McpRequestRouter(registry, engine, handle_factory=handle_factory)
    lifecycle = LifecycleController(registry, engine, close_timeout=settings.close_timeout)
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(_a):
        logger.info(f"{settings.name} {settings.version} ready, MCP endpoint at {MCP_PATH}")
        yield
        await lifecycle.shutdown("application shutdown")

    app = FastAPI(title=settings.name, version=settings.version, docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.engine = engine
    app.state.router = router
    app.state.lifecycle = lifecycle

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "Authorization",
            MCP_SESSION_ID_HEADER,
            MCP_PROTOCOL_VERSION_HEADER,
            LAST_EVENT_ID_HEADER,
        ],
        expose_headers=[MCP_SESSION_ID_HEADER],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # No method filter: the router answers unsupported methods itself
    app.router.add_route(MCP_PATH, router, include_in_schema=False)

    @app.get("/health")
    async def health():
        """Liveness probe. Always answers 200."""
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            return {
                "status": "ok",
                "timestamp": timestamp,
                "uptime": round(time.monotonic() - started_at, 3),
                "activeSessions": registry.active_count,
                "shuttingDown": lifecycle.shutting_down,
                "version": settings.version,
            }
        except Exception as e:
            logger.error(f"Health check degraded: {e}")
            return {"status": "ok", "timestamp": timestamp}

    @app.get("/")
    async def index():
        return {
            "name": settings.name,
            "version": settings.version,
            "description": "MCP server over streamable HTTP",
            "transport": "streamable-http",
            "endpoints": {
                "mcp": MCP_PATH,
                "health": "/health",
            },
            "tools": [tool.name for tool in engine.tools],
        }

    return app
