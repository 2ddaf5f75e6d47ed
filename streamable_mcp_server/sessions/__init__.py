"""Session routing: registry, per-session transports, the /mcp router and resumability storage."""

from streamable_mcp_server.sessions.event_store import InMemoryEventStore
from streamable_mcp_server.sessions.registry import Session, SessionRegistry
from streamable_mcp_server.sessions.router import McpRequestRouter, is_initialize_request
from streamable_mcp_server.sessions.transport import ResponseTracker, TransportHandle

__all__ = [
    "InMemoryEventStore",
    "Session",
    "SessionRegistry",
    "McpRequestRouter",
    "is_initialize_request",
    "ResponseTracker",
    "TransportHandle",
]
