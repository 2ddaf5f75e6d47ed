"""Per-session transport handle.

A :class:`TransportHandle` bundles one SDK ``StreamableHTTPServerTransport``,
the engine task serving it, and the callbacks the router uses to register and
unregister the session. Wire framing, SSE and resumption stay inside the SDK.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, MutableMapping, Optional

from mcp.server.streamable_http import EventStore, StreamableHTTPServerTransport
from starlette.types import Message, Receive, Scope, Send

from streamable_mcp_server.errors import InvalidSessionIdError

if TYPE_CHECKING:
    from streamable_mcp_server.engine import McpEngine

logger = logging.getLogger(__name__)

HandleCallback = Callable[["TransportHandle"], None]
EventStoreFactory = Callable[[], EventStore]


class ResponseTracker:
    """ASGI ``send`` wrapper that records whether the response head went out.

    Once ``started`` is True the status line is committed and an error can no
    longer be reported through this response.
    """

    def __init__(self, send: Send, on_start: Optional[Callable[[MutableMapping[str, Any]], None]] = None):
        self._send = send
        self._on_start = on_start
        self.started = False
        self.status: Optional[int] = None

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start" and not self.started:
            self.status = message["status"]
            if self._on_start is not None:
                self._on_start(message)
            self.started = True
        await self._send(message)


def replay_body(body: bytes, receive: Receive) -> Receive:
    """Return a ``receive`` that yields an already-read body first, then defers to the original."""
    delivered = False

    async def receive_with_body() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return receive_with_body


class TransportHandle:
    """One session's transport plus its engine connection.

    Lifecycle::

        created ──connect()──▶ pending ──mark_initialized()──▶ live ──close / DELETE──▶ closed

    ``on_initialized`` fires exactly once, when the session becomes live.
    ``on_close`` fires exactly once, whichever teardown path gets there first.
    """

    def __init__(
        self,
        session_id: str,
        *,
        adopted: bool = False,
        json_response: bool = True,
        event_store_factory: Optional[EventStoreFactory] = None,
        close_timeout: float = 5.0,
        on_initialized: Optional[HandleCallback] = None,
        on_close: Optional[HandleCallback] = None,
    ):
        """Create the handle and its SDK transport.

        Args:
            session_id: Id of the session, either generated or supplied by the client
            adopted: True for sessions created from an unseen client-supplied id; these skip the handshake
            json_response: Answer POST requests with JSON bodies instead of SSE streams
            event_store_factory: Builds this session's store for Last-Event-ID resumption; stream ids
                repeat across sessions, so every session gets its own store
            close_timeout: Seconds to wait for the engine loop to finish on close
            on_initialized: Called once when the session becomes live
            on_close: Called once when the transport is torn down

        Raises:
            InvalidSessionIdError: If the SDK refuses the session id
        """
        self.event_store: Optional[EventStore] = event_store_factory() if event_store_factory else None
        try:
            self.transport = StreamableHTTPServerTransport(
                mcp_session_id=session_id,
                is_json_response_enabled=json_response,
                event_store=self.event_store,
            )
        except ValueError as exc:
            raise InvalidSessionIdError(session_id) from exc

        self.session_id = session_id
        self.adopted = adopted
        self.close_timeout = close_timeout
        self.initialized: asyncio.Future = asyncio.get_running_loop().create_future()
        self._on_initialized = on_initialized
        self._on_close = on_close
        self._engine_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live(self) -> bool:
        """True once initialized and until closed."""
        return self.initialized.done() and not self.initialized.cancelled() and not self._closed

    async def connect(self, engine: "McpEngine") -> None:
        """Attach this transport to the shared engine. Must precede the first request."""
        if self._engine_task is not None:
            return
        logger.debug(f"[SESSION] Connecting transport for session {self.session_id} to the engine")
        self._engine_task = await engine.connect(self.transport, stateless=self.adopted)
        self._engine_task.add_done_callback(self._on_engine_done)
        logger.debug(f"[SESSION] Transport for session {self.session_id} connected")

    async def handle_request(self, scope: Scope, receive: Receive, send: Send, body: Optional[bytes] = None) -> None:
        """Let the SDK transport answer one HTTP request.

        Args:
            scope: ASGI scope of the request
            receive: ASGI receive callable
            send: ASGI send callable
            body: Request body already consumed by the caller, replayed to the transport
        """
        if body is not None:
            receive = replay_body(body, receive)
        if not self.initialized.done():
            send = ResponseTracker(send, on_start=self._on_response_start)

        await self.transport.handle_request(scope, receive, send)

        # DELETE (or a protocol error) may have terminated the transport
        if self.transport.is_terminated:
            self._notify_closed()

    def mark_initialized(self) -> None:
        """Make the session live. Later calls are ignored."""
        if self.initialized.done() or self._closed:
            return
        self.initialized.set_result(self.session_id)
        logger.info(f"[SESSION] Session initialized: {self.session_id}")
        if self._on_initialized is not None:
            self._on_initialized(self)

    def _on_response_start(self, message: MutableMapping[str, Any]) -> None:
        # Register before the session id reaches the client, so a follow-up
        # request carrying it can never miss the registry.
        if message["status"] < 400:
            self.mark_initialized()

    async def close(self) -> None:
        """Terminate the transport and wait for the engine loop to finish. Idempotent."""
        if not self.transport.is_terminated:
            await self.transport.terminate()

        task = self._engine_task
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=self.close_timeout)
            if not done:
                logger.warning(f"[SESSION] Engine loop for session {self.session_id} did not stop "
                               f"within {self.close_timeout}s, cancelling")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        self._notify_closed()

    def _on_engine_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            logger.warning(f"[SESSION] Engine loop for session {self.session_id} failed: "
                           f"{type(exc).__name__}: {exc}")
        self._notify_closed()

    def _notify_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self.initialized.done():
            self.initialized.cancel()
        logger.info(f"[SESSION] Transport closed for session {self.session_id}")
        if self._on_close is not None:
            try:
                self._on_close(self)
            except Exception as e:
                logger.error(f"[SESSION] Close callback failed for session {self.session_id}: {e}")
