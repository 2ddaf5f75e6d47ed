"""Standalone MCP streamable-HTTP server.

Usage::

    poetry run streamable-mcp-server

    # Custom port / log level:
    PORT=9000 LOG_LEVEL=debug poetry run streamable-mcp-server

See :mod:`streamable_mcp_server.config` for all environment variables.
Loads .env from the current working directory or any parent directory.

SIGINT, SIGTERM and SIGHUP close every session before the listener stops.
Exit status is 0 after a clean shutdown and 1 when startup fails or an
uncaught asynchronous fault occurred.
"""

import asyncio
import logging
import os
import platform
import signal
import sys
from typing import Any, Dict, Optional

import uvicorn
from pydantic import ValidationError

from streamable_mcp_server.config import ServerSettings
from streamable_mcp_server.lifecycle import LifecycleController
from streamable_mcp_server.logging_config import configure_logging

logger = logging.getLogger(__name__)


class McpHttpListener(uvicorn.Server):
    """uvicorn server whose exit signals go through the lifecycle controller.

    Sessions (including open SSE streams) are closed first; the controller
    then sets ``should_exit`` so uvicorn stops accepting and shuts down.
    """

    def __init__(self, config: uvicorn.Config, lifecycle: LifecycleController):
        super().__init__(config)
        self.lifecycle = lifecycle
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        lifecycle.attach_listener(self)

    async def serve(self, sockets=None) -> None:
        self._loop = asyncio.get_running_loop()
        self._loop.set_exception_handler(self._on_loop_exception)
        if sys.platform != "win32":
            # Supervisor restart signal, not handled by uvicorn itself
            self._loop.add_signal_handler(signal.SIGHUP, self.lifecycle.handle_signal, signal.SIGHUP)
        await super().serve(sockets=sockets)

    def handle_exit(self, sig: int, frame) -> None:
        # Runs as a plain signal handler; hop onto the loop before touching async state
        if self._loop is None:
            super().handle_exit(sig, frame)
            return
        self._loop.call_soon_threadsafe(self.lifecycle.handle_signal, sig)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        loop.default_exception_handler(context)
        exc = context.get("exception")
        reason = f"{type(exc).__name__}: {exc}" if exc else context.get("message", "unknown error")
        self.lifecycle.fail(f"uncaught asynchronous fault ({reason})")


def main() -> int:
    """Load settings, start the server and block until it has shut down.

    Returns:
        Process exit status
    """
    try:
        settings = ServerSettings.from_env()
    except ValidationError as e:
        configure_logging("info")
        logger.critical(f"Invalid configuration: {e}")
        return 1

    configure_logging(settings.log_level)
    logger.info(
        f"Initializing MCP Streamable-HTTP Server (python={platform.python_version()}, "
        f"platform={sys.platform}, arch={platform.machine()}, pid={os.getpid()}, port={settings.port})"
    )

    from streamable_mcp_server.app import create_app

    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        log_config=None,
        timeout_graceful_shutdown=int(settings.close_timeout) + 1,
    )
    listener = McpHttpListener(config, app.state.lifecycle)

    logger.info("Starting server...")
    try:
        asyncio.run(listener.serve())
    except SystemExit:
        # uvicorn exits this way when it cannot bind the listener
        if listener.started:
            raise
        logger.critical(f"Failed to start server on {settings.host}:{settings.port}")
        return 1

    if not listener.started:
        logger.critical(f"Failed to start server on {settings.host}:{settings.port}")
        return 1
    return app.state.lifecycle.exit_code


def cli() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
