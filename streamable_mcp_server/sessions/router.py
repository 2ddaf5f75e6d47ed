"""Request router for the ``/mcp`` endpoint.

Decides for every request whether it resumes a registered session, starts a
new one, or is rejected. POST carries client-to-server messages, GET opens the
server-to-client stream, DELETE ends the session.

POST precedence:

1. token present, registry hit     → reuse the session's handle
2. no token, initialize request    → new session with a generated id, registered
                                     when the handshake response is committed
3. token present, registry miss    → new session adopting the client's id verbatim
4. no token, anything else         → 400, JSON-RPC -32000
"""
import json
import logging
import time
from typing import Any, Callable
from uuid import uuid4

from mcp.server.streamable_http import LAST_EVENT_ID_HEADER, MCP_SESSION_ID_HEADER
from mcp.types import JSONRPCRequest
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.types import Receive, Scope, Send

from streamable_mcp_server.engine import McpEngine
from streamable_mcp_server.errors import (
    INTERNAL_ERROR_MESSAGE,
    TERMINATION_ERROR_MESSAGE,
    InvalidSessionIdError,
    internal_error_response,
    invalid_session_response,
    no_valid_session_response,
)
from streamable_mcp_server.sessions.registry import Session, SessionRegistry
from streamable_mcp_server.sessions.transport import ResponseTracker, TransportHandle

logger = logging.getLogger(__name__)

# (session_id, adopted=..., on_initialized=..., on_close=...) → TransportHandle
HandleFactory = Callable[..., TransportHandle]

ALLOWED_METHODS = "GET, POST, DELETE"


def is_initialize_request(payload: Any) -> bool:
    """Check whether a decoded body is a single JSON-RPC ``initialize`` request."""
    if not isinstance(payload, dict):
        return False
    try:
        request = JSONRPCRequest.model_validate(payload)
    except ValidationError:
        return False
    return request.method == "initialize"


def _decode_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None


class McpRequestRouter:
    """ASGI endpoint routing ``/mcp`` requests to per-session transports."""

    def __init__(
        self,
        registry: SessionRegistry,
        engine: McpEngine,
        handle_factory: HandleFactory = TransportHandle,
    ):
        self.registry = registry
        self.engine = engine
        self.handle_factory = handle_factory

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        method = scope["method"]
        if method == "POST":
            await self.handle_post(scope, receive, send)
        elif method == "GET":
            await self.handle_get(scope, receive, send)
        elif method == "DELETE":
            await self.handle_delete(scope, receive, send)
        else:
            response = PlainTextResponse("Method Not Allowed", status_code=405, headers={"Allow": ALLOWED_METHODS})
            await response(scope, receive, send)

    # ── Session bookkeeping ───────────────────────────────────

    def _create_handle(self, session_id: str, *, adopted: bool) -> TransportHandle:
        return self.handle_factory(
            session_id,
            adopted=adopted,
            on_initialized=self._register,
            on_close=self._unregister,
        )

    def _register(self, handle: TransportHandle) -> None:
        self.registry.put(Session(id=handle.session_id, handle=handle))

    def _unregister(self, handle: TransportHandle) -> None:
        if self.registry.remove(handle.session_id, handle) is not None:
            logger.info(f"[ROUTER] Transport closed for session {handle.session_id}, removed from registry")

    # ── POST ──────────────────────────────────────────────────

    async def handle_post(self, scope: Scope, receive: Receive, send: Send) -> None:
        tracker = ResponseTracker(send)
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        logger.debug(f"[ROUTER] POST received (session: {session_id or '-'})")

        try:
            body = await request.body()
            payload = _decode_json(body)
            session = self.registry.get(session_id) if session_id else None

            if session is not None:
                logger.debug(f"[ROUTER] Reusing session {session_id}")
                handle = session.handle
            elif not session_id and is_initialize_request(payload):
                await self._start_session(scope, receive, tracker, body)
                return
            elif session_id:
                handle = await self._adopt_session(session_id)
            else:
                logger.warning("[ROUTER] Invalid request: no valid session ID or initialization request")
                await no_valid_session_response()(scope, receive, tracker)
                return

            started = time.monotonic()
            await handle.handle_request(scope, receive, tracker, body=body)
            logger.debug(f"[ROUTER] Request handled in {(time.monotonic() - started) * 1000:.0f}ms "
                         f"for session {handle.session_id}")
        except InvalidSessionIdError as e:
            logger.warning(f"[ROUTER] Rejected session token: {e}")
            if not tracker.started:
                await no_valid_session_response()(scope, receive, tracker)
        except Exception:
            logger.exception("[ROUTER] Error handling MCP request")
            if not tracker.started:
                await internal_error_response()(scope, receive, tracker)

    async def _start_session(self, scope: Scope, receive: Receive, send: Send, body: bytes) -> None:
        """Case 2: fresh session; it is registered by the handle once the handshake response is committed."""
        handle = self._create_handle(uuid4().hex, adopted=False)
        logger.info(f"[ROUTER] New session request, pending session {handle.session_id}")
        try:
            await handle.connect(self.engine)
            await handle.handle_request(scope, receive, send, body=body)
        except Exception:
            await handle.close()
            raise

        if not handle.live:
            logger.warning(f"[ROUTER] Initialization of session {handle.session_id} did not complete, "
                           f"discarding transport")
            await handle.close()

    async def _adopt_session(self, session_id: str) -> TransportHandle:
        """Case 3: unseen client-supplied id; the id is already known, so register immediately."""
        logger.info(f"[ROUTER] Unknown session {session_id}, creating transport with the client-supplied id")
        handle = self._create_handle(session_id, adopted=True)
        try:
            await handle.connect(self.engine)
        except Exception:
            await handle.close()
            raise

        # Another request with the same token may have won the race while we were connecting
        existing = self.registry.get(session_id)
        if existing is not None:
            logger.info(f"[ROUTER] Session {session_id} was registered concurrently, reusing it")
            await handle.close()
            return existing.handle

        handle.mark_initialized()
        return handle

    # ── GET ───────────────────────────────────────────────────

    async def handle_get(self, scope: Scope, receive: Receive, send: Send) -> None:
        tracker = ResponseTracker(send)
        try:
            headers = Request(scope).headers
            session_id = headers.get(MCP_SESSION_ID_HEADER)
            session = self.registry.get(session_id) if session_id else None
            if session is None:
                logger.info(f"[ROUTER] Invalid session ID in GET request: {session_id}")
                await invalid_session_response()(scope, receive, tracker)
                return

            last_event_id = headers.get(LAST_EVENT_ID_HEADER)
            if last_event_id:
                logger.info(f"[ROUTER] Client reconnecting to session {session_id} with Last-Event-ID: {last_event_id}")
            else:
                logger.info(f"[ROUTER] Establishing new SSE stream for session {session_id}")

            started = time.monotonic()
            await session.handle.handle_request(scope, receive, tracker)
            logger.info(f"[ROUTER] SSE stream for session {session_id} ended after "
                        f"{time.monotonic() - started:.1f}s")
        except Exception:
            logger.exception("[ROUTER] Error handling GET request")
            if not tracker.started:
                await PlainTextResponse(INTERNAL_ERROR_MESSAGE, status_code=500)(scope, receive, tracker)

    # ── DELETE ────────────────────────────────────────────────

    async def handle_delete(self, scope: Scope, receive: Receive, send: Send) -> None:
        tracker = ResponseTracker(send)
        try:
            session_id = Request(scope).headers.get(MCP_SESSION_ID_HEADER)
            session = self.registry.get(session_id) if session_id else None
            if session is None:
                logger.info(f"[ROUTER] Invalid session ID in DELETE request: {session_id}")
                await invalid_session_response()(scope, receive, tracker)
                return

            logger.info(f"[ROUTER] Received session termination request for session {session_id}")
            # The handle's close callback removes the registry entry
            await session.handle.handle_request(scope, receive, tracker)

            if session_id in self.registry:
                logger.info(f"[ROUTER] Session {session_id} still registered after DELETE")
            else:
                logger.info(f"[ROUTER] Session {session_id} terminated")
        except Exception:
            logger.exception("[ROUTER] Error handling DELETE request")
            if not tracker.started:
                await PlainTextResponse(TERMINATION_ERROR_MESSAGE, status_code=500)(scope, receive, tracker)
