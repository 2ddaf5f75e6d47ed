"""Tools served by the MCP engine."""

from streamable_mcp_server.tools.greetings import register_greeting_tools

__all__ = [
    "register_greeting_tools",
]
