"""Tests for the per-session transport handle and its ASGI helpers."""

import pytest

from streamable_mcp_server.engine import McpEngine
from streamable_mcp_server.errors import EngineError, InvalidSessionIdError
from streamable_mcp_server.sessions import ResponseTracker, TransportHandle
from streamable_mcp_server.sessions.transport import replay_body


class _Recorder:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)


class TestResponseTracker:
    """Tests for the send wrapper."""

    @pytest.mark.asyncio
    async def test_records_start_and_forwards(self):
        recorder = _Recorder()
        tracker = ResponseTracker(recorder)
        assert tracker.started is False

        await tracker({"type": "http.response.start", "status": 202, "headers": []})
        await tracker({"type": "http.response.body", "body": b""})

        assert tracker.started is True
        assert tracker.status == 202
        assert len(recorder.messages) == 2

    @pytest.mark.asyncio
    async def test_on_start_runs_once_before_forwarding(self):
        """The hook sees the head before the client does."""
        recorder = _Recorder()
        seen = []

        def on_start(message):
            seen.append((message["status"], len(recorder.messages)))

        tracker = ResponseTracker(recorder, on_start=on_start)
        await tracker({"type": "http.response.start", "status": 200, "headers": []})
        await tracker({"type": "http.response.body", "body": b"x", "more_body": True})
        await tracker({"type": "http.response.body", "body": b""})

        assert seen == [(200, 0)]


class TestReplayBody:

    @pytest.mark.asyncio
    async def test_body_first_then_original(self):
        async def original():
            return {"type": "http.disconnect"}

        receive = replay_body(b'{"a": 1}', original)

        first = await receive()
        second = await receive()

        assert first == {"type": "http.request", "body": b'{"a": 1}', "more_body": False}
        assert second == {"type": "http.disconnect"}


class TestTransportHandle:
    """Tests for TransportHandle state transitions."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id", ["has space", "line\nbreak", "café"])
    async def test_rejects_unusable_session_id(self, session_id):
        with pytest.raises(InvalidSessionIdError):
            TransportHandle(session_id)

    @pytest.mark.asyncio
    async def test_mark_initialized_fires_once(self):
        registered = []
        handle = TransportHandle("session-1", on_initialized=registered.append)

        assert handle.live is False
        handle.mark_initialized()
        handle.mark_initialized()

        assert registered == [handle]
        assert handle.live is True
        assert handle.initialized.result() == "session-1"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test that on_close fires exactly once however often close is called."""
        closed = []
        handle = TransportHandle("session-1", on_close=closed.append)
        handle.mark_initialized()

        await handle.close()
        await handle.close()

        assert closed == [handle]
        assert handle.closed is True
        assert handle.live is False
        assert handle.transport.is_terminated

    @pytest.mark.asyncio
    async def test_close_before_initialization_cancels_pending(self):
        registered = []
        handle = TransportHandle("session-1", on_initialized=registered.append)

        await handle.close()
        handle.mark_initialized()

        assert handle.initialized.cancelled()
        assert registered == []
        assert handle.live is False

    @pytest.mark.asyncio
    async def test_failing_close_callback_is_contained(self):
        def explode(_handle):
            raise RuntimeError("callback failed")

        handle = TransportHandle("session-1", on_close=explode)

        await handle.close()

        assert handle.closed is True

    @pytest.mark.asyncio
    async def test_connect_and_close_stop_engine_loop(self):
        """Test that closing a connected handle finishes its engine task."""
        engine = McpEngine("test-server", "0.0.1")
        closed = []
        handle = TransportHandle("session-1", close_timeout=1.0, on_close=closed.append)

        await handle.connect(engine)
        task = handle._engine_task
        assert task is not None
        assert not task.done()

        await handle.close()

        assert task.done()
        assert closed == [handle]
        await engine.close()

    @pytest.mark.asyncio
    async def test_connect_to_closed_engine_fails(self):
        engine = McpEngine("test-server", "0.0.1")
        await engine.close()
        handle = TransportHandle("session-1")

        with pytest.raises(EngineError):
            await handle.connect(engine)

        await handle.close()
        assert handle.closed is True
