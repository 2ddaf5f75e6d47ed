"""streamable-mcp-server: MCP over streamable HTTP with session-keyed transports."""

from streamable_mcp_server.config import SERVER_VERSION, ServerSettings
from streamable_mcp_server.engine import McpEngine, ToolContext
from streamable_mcp_server.errors import EngineError, InvalidSessionIdError, McpServerError
from streamable_mcp_server.lifecycle import LifecycleController, ShutdownReport
from streamable_mcp_server.sessions import (
    InMemoryEventStore, McpRequestRouter, Session, SessionRegistry, TransportHandle,
)

__version__ = SERVER_VERSION

__all__ = [
    "ServerSettings",
    "McpEngine",
    "ToolContext",
    "McpServerError",
    "InvalidSessionIdError",
    "EngineError",
    "LifecycleController",
    "ShutdownReport",
    "InMemoryEventStore",
    "McpRequestRouter",
    "Session",
    "SessionRegistry",
    "TransportHandle",
    "create_app",
]


def __getattr__(name: str):
    if name == "create_app":
        from streamable_mcp_server.app import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
