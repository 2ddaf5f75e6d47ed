"""Errors and JSON-RPC error responses for the MCP HTTP endpoint."""
from typing import Optional

from mcp.types import INTERNAL_ERROR, ErrorData
from starlette.responses import JSONResponse, PlainTextResponse

# Server-defined JSON-RPC error used for requests without a usable session
BAD_REQUEST = -32000

NO_VALID_SESSION_MESSAGE = "Bad Request: No valid session ID provided"
INVALID_SESSION_MESSAGE = "Invalid or missing session ID"
INTERNAL_ERROR_MESSAGE = "Internal server error"
TERMINATION_ERROR_MESSAGE = "Error processing session termination"


class McpServerError(Exception):
    """Base class for errors raised by the MCP HTTP server."""
    pass


class InvalidSessionIdError(McpServerError):
    """The session id cannot be used by the transport (e.g. non-visible ASCII characters)."""

    def __init__(self, session_id: str):
        super().__init__(f"Invalid session ID: {session_id!r}")
        self.session_id = session_id


class EngineError(McpServerError):
    """The protocol engine failed to accept a transport."""
    pass


def jsonrpc_error_response(code: int, message: str, status_code: int, request_id: Optional[str] = None) -> JSONResponse:
    """Build a JSON-RPC 2.0 error response.

    ``id`` is null because the failing request was never dispatched to the
    engine, so no request id has been accepted.
    """
    error = ErrorData(code=code, message=message)
    return JSONResponse(
        {
            "jsonrpc": "2.0",
            "error": error.model_dump(exclude_none=True),
            "id": request_id,
        },
        status_code=status_code,
    )


def no_valid_session_response() -> JSONResponse:
    return jsonrpc_error_response(BAD_REQUEST, NO_VALID_SESSION_MESSAGE, 400)


def internal_error_response() -> JSONResponse:
    return jsonrpc_error_response(INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE, 500)


def invalid_session_response() -> PlainTextResponse:
    return PlainTextResponse(INVALID_SESSION_MESSAGE, status_code=400)
