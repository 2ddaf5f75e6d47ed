"""Tests for settings loading."""

import pytest
from pydantic import ValidationError

from streamable_mcp_server.config import SERVER_NAME, ServerSettings


class TestServerSettings:
    """Tests for ServerSettings.from_env."""

    def test_defaults(self):
        settings = ServerSettings.from_env({})

        assert settings.host == "0.0.0.0"
        assert settings.port == 3000
        assert settings.log_level == "info"
        assert settings.name == SERVER_NAME
        assert settings.json_response is True
        assert settings.resumable is True
        assert settings.max_events_per_stream == 1000
        assert settings.cors_origins == ["*"]
        assert settings.close_timeout == 5.0

    def test_values_from_environment(self):
        settings = ServerSettings.from_env({
            "HOST": "127.0.0.1",
            "PORT": "9000",
            "LOG_LEVEL": "DEBUG",
            "MCP_SERVER_NAME": "my-server",
            "MCP_JSON_RESPONSE": "false",
            "MCP_RESUMABLE": "0",
            "MCP_EVENT_STORE_MAX_EVENTS": "10",
            "CORS_ORIGINS": "https://a.example, https://b.example",
            "SHUTDOWN_CLOSE_TIMEOUT": "2.5",
        })

        assert settings.host == "127.0.0.1"
        assert settings.port == 9000
        assert settings.log_level == "debug"
        assert settings.name == "my-server"
        assert settings.json_response is False
        assert settings.resumable is False
        assert settings.max_events_per_stream == 10
        assert settings.cors_origins == ["https://a.example", "https://b.example"]
        assert settings.close_timeout == 2.5

    def test_unrelated_variables_are_ignored(self):
        settings = ServerSettings.from_env({"PATH": "/usr/bin", "PORT": "3001"})
        assert settings.port == 3001

    @pytest.mark.parametrize("env", [
        {"PORT": "not-a-number"},
        {"PORT": "0"},
        {"PORT": "70000"},
        {"LOG_LEVEL": "verbose"},
        {"SHUTDOWN_CLOSE_TIMEOUT": "0"},
        {"MCP_EVENT_STORE_MAX_EVENTS": "0"},
    ])
    def test_invalid_values(self, env):
        with pytest.raises(ValidationError):
            ServerSettings.from_env(env)
