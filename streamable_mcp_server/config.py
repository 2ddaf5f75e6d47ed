"""Server configuration loaded from the environment.

Environment variables:
    HOST                        Bind host (default: 0.0.0.0)
    PORT                        Listening port (default: 3000)
    LOG_LEVEL                   debug, info, warning, error, critical (default: info)
    MCP_SERVER_NAME             Name reported to MCP clients
    MCP_JSON_RESPONSE           Answer POSTs with JSON instead of SSE (default: true)
    MCP_RESUMABLE               Keep an event store for Last-Event-ID replay (default: true)
    MCP_EVENT_STORE_MAX_EVENTS  Events kept per stream (default: 1000)
    CORS_ORIGINS                Comma separated allowed origins (default: *)
    SHUTDOWN_CLOSE_TIMEOUT      Seconds to wait for each session to close (default: 5)

Loads .env from the current working directory or any parent directory.
"""
import os
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

SERVER_NAME = "streamable-mcp-server"
SERVER_VERSION = "1.0.0"

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

# Environment variable → settings field
ENV_FIELDS: Dict[str, str] = {
    "HOST": "host",
    "PORT": "port",
    "LOG_LEVEL": "log_level",
    "MCP_SERVER_NAME": "name",
    "MCP_JSON_RESPONSE": "json_response",
    "MCP_RESUMABLE": "resumable",
    "MCP_EVENT_STORE_MAX_EVENTS": "max_events_per_stream",
    "CORS_ORIGINS": "cors_origins",
    "SHUTDOWN_CLOSE_TIMEOUT": "close_timeout",
}


class ServerSettings(BaseModel):
    """Settings for one server instance."""
    host: str = Field("0.0.0.0", description="Interface the HTTP listener binds to")
    port: int = Field(3000, ge=1, le=65535, description="HTTP listener port")
    log_level: str = Field("info", description="Root log level")
    name: str = Field(SERVER_NAME, description="Server name announced during initialization")
    version: str = Field(SERVER_VERSION, description="Server version announced during initialization")
    json_response: bool = Field(True, description="Return JSON bodies for POST requests instead of SSE streams")
    resumable: bool = Field(True, description="Attach an in-memory event store for stream resumption")
    max_events_per_stream: int = Field(1000, ge=1, description="Events retained per stream for replay")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Origins allowed by CORS")
    close_timeout: float = Field(5.0, gt=0, description="Seconds allowed for each session to close during shutdown")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerSettings":
        """Build settings from environment variables.

        :param environ: Mapping to read instead of ``os.environ``; .env is only loaded when omitted
        :return: Validated settings
        :raises pydantic.ValidationError: If a variable holds an invalid value
        """
        if environ is None:
            from dotenv import load_dotenv, find_dotenv
            load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ

        values = {name: environ[var] for var, name in ENV_FIELDS.items() if var in environ}
        return cls(**values)
