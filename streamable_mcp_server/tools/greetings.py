"""Example greeting tools.

Provides:
- ``greet``: a plain request/response tool
- ``multi-greet``: sends log notifications with pauses before answering
- ``start-notification-stream``: periodic notifications for testing resumability
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from streamable_mcp_server.engine import McpEngine, ToolContext

logger = logging.getLogger(__name__)

# Pause between multi-greet notifications, in seconds
GREETING_DELAY = 1.0

NAME_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Name to greet"},
    },
    "required": ["name"],
}

NOTIFICATION_STREAM_SCHEMA = {
    "type": "object",
    "properties": {
        "interval": {
            "type": "number",
            "description": "Interval in milliseconds between notifications",
            "default": 100,
        },
        "count": {
            "type": "number",
            "description": "Number of notifications to send (0 for unlimited)",
            "default": 50,
        },
    },
    "required": [],
}


async def greet(arguments: Dict[str, Any], ctx: ToolContext) -> str:
    name = arguments["name"]
    logger.info(f"Tool called: greet (name={name})")
    return f"Hello, {name}!"


async def multi_greet(arguments: Dict[str, Any], ctx: ToolContext) -> str:
    """Greet after streaming a few log notifications to the client."""
    name = arguments["name"]
    logger.info(f"Tool called: multi-greet (name={name})")

    await ctx.notify("debug", f"Starting multi-greet for {name}")
    await asyncio.sleep(GREETING_DELAY)
    await ctx.notify("info", f"Sending first greeting to {name}")
    await asyncio.sleep(GREETING_DELAY)
    await ctx.notify("info", f"Sending second greeting to {name}")

    return f"Good morning, {name}!"


async def start_notification_stream(arguments: Dict[str, Any], ctx: ToolContext) -> str:
    """Send ``count`` notifications every ``interval`` ms (``count`` 0 runs until cancelled).

    A failed notification is logged and the stream continues.
    """
    interval = arguments.get("interval", 100)
    count = arguments.get("count", 50)

    counter = 0
    while count == 0 or counter < count:
        counter += 1
        try:
            await ctx.notify(
                "info",
                f"Periodic notification #{counter} at {datetime.now(timezone.utc).isoformat()}",
            )
        except Exception as e:
            logger.error(f"Error sending notification: {e}")
        await asyncio.sleep(interval / 1000)

    return f"Started sending periodic notifications every {interval}ms"


def register_greeting_tools(engine: McpEngine) -> None:
    """Register the greeting tools on an engine."""
    engine.tool("greet", "A simple greeting tool", NAME_SCHEMA)(greet)
    engine.tool(
        "multi-greet",
        "A tool that sends different greetings with delays between them",
        NAME_SCHEMA,
    )(multi_greet)
    engine.tool(
        "start-notification-stream",
        "Starts sending periodic notifications for testing resumability",
        NOTIFICATION_STREAM_SCHEMA,
    )(start_notification_stream)
