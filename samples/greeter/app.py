#!/usr/bin/env python3
"""Standalone greeter server: MCP over streamable HTTP.

    cd samples/greeter
    poetry run python app.py

Starts on http://localhost:3000/mcp with the greet, multi-greet and
start-notification-stream tools.

Environment variables:
    PORT        Server port (default: 3000)
    HOST        Bind host (default: 0.0.0.0)
    LOG_LEVEL   Log level (default: info)
"""
import sys

from streamable_mcp_server.standalone import main

if __name__ == "__main__":
    sys.exit(main())
