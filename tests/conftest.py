"""Test configuration and fixtures."""
import json
from typing import List, Optional

import pytest
from starlette.applications import Starlette
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from streamable_mcp_server.errors import InvalidSessionIdError
from streamable_mcp_server.sessions import McpRequestRouter, SessionRegistry, is_initialize_request

INITIALIZE_REQUEST = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-03-26",
        "capabilities": {},
        "clientInfo": {"name": "test-client", "version": "1.0.0"},
    },
}

INITIALIZED_NOTIFICATION = {"jsonrpc": "2.0", "method": "notifications/initialized"}

LIST_TOOLS_REQUEST = {"jsonrpc": "2.0", "id": 2, "method": "tools/list", "params": {}}

MCP_HEADERS = {"Accept": "application/json, text/event-stream"}


def asgi_scope(method: str, headers: Optional[dict] = None) -> dict:
    """Minimal HTTP scope for calling an ASGI app on /mcp directly."""
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": "/mcp",
        "raw_path": b"/mcp",
        "root_path": "",
        "query_string": b"",
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()],
        "server": ("testserver", 80),
        "client": ("testclient", 50000),
    }


def body_receiver(body: bytes = b""):
    """ASGI receive yielding ``body`` once, then a disconnect."""
    delivered = False

    async def receive():
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return {"type": "http.disconnect"}

    return receive


class RecordingSend:
    """ASGI send that keeps every message."""

    def __init__(self):
        self.messages: List[dict] = []

    async def __call__(self, message) -> None:
        self.messages.append(message)

    @property
    def statuses(self) -> List[int]:
        return [m["status"] for m in self.messages if m["type"] == "http.response.start"]

    @property
    def body(self) -> bytes:
        return b"".join(m.get("body", b"") for m in self.messages if m["type"] == "http.response.body")

    def header(self, name: str) -> Optional[str]:
        for m in self.messages:
            if m["type"] == "http.response.start":
                for key, value in m.get("headers", []):
                    if key.decode("latin-1").lower() == name:
                        return value.decode("latin-1")
        return None


class FakeHandle:
    """Stand-in for TransportHandle that answers requests without the MCP SDK."""

    def __init__(self, factory: "FakeHandleFactory", session_id: str, *, adopted: bool = False,
                 on_initialized=None, on_close=None):
        if not session_id.isprintable() or " " in session_id:
            raise InvalidSessionIdError(session_id)
        self.factory = factory
        self.session_id = session_id
        self.adopted = adopted
        self.on_initialized = on_initialized
        self.on_close = on_close
        self.engine = None
        self.requests: List[tuple] = []
        self.initialized = False
        self.closed = False
        self.close_calls = 0

    @property
    def live(self) -> bool:
        return self.initialized and not self.closed

    async def connect(self, engine) -> None:
        self.engine = engine
        if self.factory.on_connect is not None:
            self.factory.on_connect(self)

    def mark_initialized(self) -> None:
        if self.initialized or self.closed:
            return
        self.initialized = True
        if self.on_initialized is not None:
            self.on_initialized(self)

    async def handle_request(self, scope, receive, send, body: Optional[bytes] = None) -> None:
        self.requests.append((scope["method"], body))
        if self.factory.fail_before_response:
            raise RuntimeError("transport exploded")

        if scope["method"] == "DELETE":
            await PlainTextResponse("", status_code=200)(scope, receive, send)
            self._notify_closed()
            return

        if self.factory.fail_after_response:
            await send({"type": "http.response.start", "status": 200, "headers": []})
            await send({"type": "http.response.body", "body": b"partial", "more_body": True})
            raise RuntimeError("stream broke")

        status = 200
        if body is not None and is_initialize_request(json.loads(body)):
            status = self.factory.initialize_status
            if status < 400:
                self.mark_initialized()
        response = JSONResponse(
            {"handledBy": self.session_id, "handle": id(self)},
            status_code=status,
            headers={"mcp-session-id": self.session_id},
        )
        await response(scope, receive, send)

    async def close(self) -> None:
        self.close_calls += 1
        self._notify_closed()

    def _notify_closed(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.on_close is not None:
            self.on_close(self)


class FakeHandleFactory:
    """Creates FakeHandles and remembers them; behaviour switches are set per test."""

    def __init__(self):
        self.created: List[FakeHandle] = []
        self.fail_before_response = False
        self.fail_after_response = False
        self.initialize_status = 200
        self.on_connect = None

    def __call__(self, session_id: str, **kwargs) -> FakeHandle:
        handle = FakeHandle(self, session_id, **kwargs)
        self.created.append(handle)
        return handle


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def handle_factory() -> FakeHandleFactory:
    return FakeHandleFactory()


@pytest.fixture
def fake_engine() -> object:
    return object()


@pytest.fixture
def router(registry, fake_engine, handle_factory) -> McpRequestRouter:
    return McpRequestRouter(registry, fake_engine, handle_factory=handle_factory)


@pytest.fixture
def router_client(router) -> TestClient:
    """HTTP client talking to a bare app that only mounts the router."""
    app = Starlette(routes=[Route("/mcp", router)])
    return TestClient(app)
