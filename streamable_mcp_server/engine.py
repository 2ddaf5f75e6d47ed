"""Protocol engine shared by all sessions.

Wraps the low-level ``mcp.server.Server``: tools are registered once on the
engine, and every session transport is connected to it by running the server
loop over that transport's streams in a background task.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from mcp.server import NotificationOptions, Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from mcp.types import LoggingLevel, TextContent, Tool

from streamable_mcp_server.errors import EngineError

logger = logging.getLogger(__name__)

# Ordered from least to most severe, as defined by MCP (RFC 5424 levels)
LOGGING_LEVELS: List[str] = ["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]

ToolResult = Union[str, List[TextContent]]


class ToolContext:
    """Per-call context handed to tool handlers."""

    def __init__(self, engine: "McpEngine", session: Any = None, request_id: Any = None):
        self.engine = engine
        self.session = session
        self.request_id = request_id

    async def notify(self, level: LoggingLevel, data: Any) -> None:
        """Send a ``notifications/message`` log notification to the client.

        The notification is not tied to the calling request, so it is routed to
        the session's standalone stream and recorded by the event store.
        """
        if not self.engine.is_level_enabled(level, self.session):
            return
        if self.session is None:
            logger.debug(f"[ENGINE] Dropping notification outside a session: {data}")
            return
        await self.session.send_log_message(level=level, data=data)


ToolHandler = Callable[[Dict[str, Any], ToolContext], Awaitable[ToolResult]]


@dataclass
class RegisteredTool:
    definition: Tool
    handler: ToolHandler


class McpEngine:
    """Shared MCP protocol engine.

    One instance serves every session; each connected transport gets its own
    server loop task, tracked so :meth:`close` can stop whatever is left.
    """

    def __init__(self, name: str, version: str, instructions: Optional[str] = None):
        self.name = name
        self.version = version
        self.server = Server(name, version=version, instructions=instructions)
        # Level used until a client sends logging/setLevel
        self.default_log_level: LoggingLevel = "debug"
        self._log_levels: "weakref.WeakKeyDictionary[Any, LoggingLevel]" = weakref.WeakKeyDictionary()
        self._tools: Dict[str, RegisteredTool] = {}
        self._connections: Set[asyncio.Task] = set()
        self._closed = False

        self.server.list_tools()(self._list_tools)
        self.server.call_tool()(self._call_tool)
        self.server.set_logging_level()(self._set_logging_level)

    # ── Tool registration ─────────────────────────────────────

    def tool(self, name: str, description: str, input_schema: Dict[str, Any]) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator registering ``handler(arguments, ctx)`` as an MCP tool."""
        def decorator(handler: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"Tool '{name}' is already registered")
            definition = Tool(name=name, description=description, inputSchema=input_schema)
            self._tools[name] = RegisteredTool(definition=definition, handler=handler)
            logger.debug(f"[ENGINE] Registered tool {name}")
            return handler
        return decorator

    @property
    def tools(self) -> List[Tool]:
        return [registered.definition for registered in self._tools.values()]

    async def call(self, name: str, arguments: Dict[str, Any], ctx: ToolContext) -> List[TextContent]:
        """Run a registered tool and normalize its result to MCP content blocks."""
        registered = self._tools.get(name)
        if registered is None:
            raise ValueError(f"Unknown tool: {name}")
        logger.info(f"[ENGINE] Tool called: {name}")
        result = await registered.handler(arguments or {}, ctx)
        if isinstance(result, str):
            return [TextContent(type="text", text=result)]
        return result

    # ── Logging level ─────────────────────────────────────────

    def session_log_level(self, session: Any) -> LoggingLevel:
        if session is None:
            return self.default_log_level
        return self._log_levels.get(session, self.default_log_level)

    def set_session_log_level(self, session: Any, level: LoggingLevel) -> None:
        """Set the minimum notification level for one client session.

        Entries are weakly keyed, so they go away with the server session.
        """
        self._log_levels[session] = level

    def is_level_enabled(self, level: str, session: Any = None) -> bool:
        return LOGGING_LEVELS.index(level) >= LOGGING_LEVELS.index(self.session_log_level(session))

    # ── Low-level server handlers ─────────────────────────────

    async def _list_tools(self) -> List[Tool]:
        return self.tools

    async def _call_tool(self, name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        request_context = self.server.request_context
        ctx = ToolContext(self, session=request_context.session, request_id=request_context.request_id)
        return await self.call(name, arguments, ctx)

    async def _set_logging_level(self, level: LoggingLevel) -> None:
        logger.info(f"[ENGINE] Client set logging level to {level}")
        self.set_session_log_level(self.server.request_context.session, level)

    # ── Connections ───────────────────────────────────────────

    async def connect(self, transport: StreamableHTTPServerTransport, *, stateless: bool = False) -> asyncio.Task:
        """Start the server loop for a transport.

        Returns once the transport's streams are open, so messages the server
        originates already have a route back to the client.

        Args:
            transport: The session transport to serve
            stateless: Serve without requiring an initialize handshake first

        Returns:
            The task running the server loop; it finishes when the transport is terminated

        Raises:
            EngineError: If the engine is closed or the loop exits before the transport is ready
        """
        if self._closed:
            raise EngineError("Engine is closed")

        ready = asyncio.Event()
        initialization_options = self.server.create_initialization_options(
            notification_options=NotificationOptions(tools_changed=False),
        )

        async def run_server() -> None:
            async with transport.connect() as (read_stream, write_stream):
                ready.set()
                await self.server.run(
                    read_stream,
                    write_stream,
                    initialization_options,
                    stateless=stateless,
                )

        task = asyncio.create_task(run_server(), name=f"mcp-session-{transport.mcp_session_id}")
        self._connections.add(task)
        task.add_done_callback(self._connections.discard)

        ready_waiter = asyncio.create_task(ready.wait())
        try:
            await asyncio.wait({task, ready_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready_waiter.cancel()

        if not ready.is_set():
            if not task.cancelled() and task.exception() is not None:
                raise EngineError(f"Server loop failed to start: {task.exception()}") from task.exception()
            raise EngineError("Server loop exited before the transport was ready")
        return task

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def close(self) -> None:
        """Stop all remaining server loops. Safe to call more than once."""
        self._closed = True
        pending = [task for task in self._connections if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"[ENGINE] Cancelled {len(pending)} remaining server loop(s)")
        logger.info("[ENGINE] Engine closed")
