"""Graceful shutdown of the server.

On a termination signal or application shutdown the controller closes every
registered session, stops the HTTP listener, then closes the shared engine.
A session that fails or hangs while closing is logged and skipped, so the
registry always ends up empty.
"""
import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import Any, List, Optional

from streamable_mcp_server.engine import McpEngine
from streamable_mcp_server.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class ShutdownReport:
    """Outcome of draining the registry."""
    closed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class LifecycleController:
    """Orchestrates shutdown for one server instance."""

    def __init__(self, registry: SessionRegistry, engine: McpEngine, *, close_timeout: float = 5.0):
        self.registry = registry
        self.engine = engine
        self.close_timeout = close_timeout
        self.exit_code = 0
        self.report: Optional[ShutdownReport] = None
        self._listener: Any = None
        self._shutdown_task: Optional[asyncio.Task] = None

    def attach_listener(self, listener: Any) -> None:
        """Attach the HTTP listener (a ``uvicorn.Server``) to stop after sessions are drained."""
        self._listener = listener

    @property
    def shutting_down(self) -> bool:
        return self._shutdown_task is not None

    def handle_signal(self, sig: int) -> None:
        """Start shutdown on SIGINT/SIGTERM/SIGHUP. A repeated signal forces the listener to exit."""
        name = signal.Signals(sig).name
        if self.shutting_down:
            logger.warning(f"[SHUTDOWN] Received {name} again, forcing exit")
            if self._listener is not None:
                self._listener.force_exit = True
            return
        logger.info(f"[SHUTDOWN] Received {name}")
        self._ensure_shutdown(name)

    def fail(self, reason: str) -> None:
        """Record a fatal fault; the process exits with failure status after shutdown."""
        logger.critical(f"[SHUTDOWN] Fatal: {reason}")
        self.exit_code = 1
        self._ensure_shutdown(reason)

    async def shutdown(self, reason: str = "application shutdown") -> ShutdownReport:
        """Run (or join) the shutdown sequence and return its report."""
        await asyncio.shield(self._ensure_shutdown(reason))
        return self.report

    def _ensure_shutdown(self, reason: str) -> asyncio.Task:
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.get_running_loop().create_task(self._shutdown(reason))
        return self._shutdown_task

    async def _shutdown(self, reason: str) -> None:
        logger.info(f"[SHUTDOWN] Shutting down server ({reason})")
        self.report = await self.drain_sessions()

        if self._listener is not None:
            logger.info("[SHUTDOWN] Closing HTTP listener")
            self._listener.should_exit = True

        try:
            await self.engine.close()
        except Exception as e:
            logger.error(f"[SHUTDOWN] Error closing engine: {type(e).__name__}: {e}")

        logger.info(f"[SHUTDOWN] Server shutdown complete ({len(self.report.closed)} session(s) closed, "
                    f"{len(self.report.failed)} failed)")

    async def drain_sessions(self) -> ShutdownReport:
        """Close and remove every registered session, isolating individual failures.

        Sessions registered while the drain is running (a client adopting an id
        that is being closed, for instance) are picked up by another pass.
        """
        report = ShutdownReport()
        while len(self.registry):
            await self._drain_pass(report)
        return report

    async def _drain_pass(self, report: ShutdownReport) -> None:
        for session_id in self.registry.snapshot():
            session = self.registry.get(session_id)
            if session is None:
                continue
            try:
                logger.info(f"[SHUTDOWN] Closing transport for session {session_id}")
                await asyncio.wait_for(session.handle.close(), timeout=self.close_timeout)
                report.closed.append(session_id)
            except Exception as e:
                logger.error(f"[SHUTDOWN] Error closing transport for session {session_id}: "
                             f"{type(e).__name__}: {e}")
                report.failed.append(session_id)
            finally:
                # Only drop the entry this pass closed; a successor stays for the next pass
                self.registry.remove(session_id, session.handle)
