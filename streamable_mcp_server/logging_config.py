"""Logging setup and request logging middleware."""
import logging
import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


def configure_logging(level: str = "info") -> None:
    """Configure root logging for the server process.

    uvicorn is started without its own log config, so its loggers propagate
    to the handler installed here.
    """
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )
    # The SDK logs every message at debug level
    if level.lower() != "debug":
        logging.getLogger("mcp").setLevel(logging.WARNING)


class RequestLoggingMiddleware:
    """Log method, path, status and duration of every HTTP request.

    Pure ASGI so long-lived SSE responses stream through untouched; the entry
    for a stream is written when it ends.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.monotonic()
        status = 500

        async def send_with_status(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        headers = dict(scope.get("headers") or [])
        user_agent = headers.get(b"user-agent", b"").decode("latin-1")
        client = scope.get("client")
        client_host = client[0] if client else "-"

        try:
            await self.app(scope, receive, send_with_status)
        except Exception:
            ms = (time.monotonic() - started) * 1000
            logger.exception(f"HTTP Request Error: {scope['method']} {scope['path']} {status} {ms:.0f}ms "
                             f"client={client_host}")
            raise
        ms = (time.monotonic() - started) * 1000
        logger.info(f"HTTP Request: {scope['method']} {scope['path']} {status} {ms:.0f}ms "
                    f"client={client_host} agent={user_agent!r}")
