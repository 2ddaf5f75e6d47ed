"""Test package for streamable-mcp-server."""
import os

from dotenv import load_dotenv

# Settings-dependent tests pass their own values; a local .env is only picked up if present
dir = os.path.dirname(__file__)

max_step = 5
cur_step = 0
while not os.path.exists(os.path.join(dir, ".env")) and cur_step <= max_step and dir != "/":
    dir = os.path.dirname(dir)
    cur_step += 1

if os.path.exists(os.path.join(dir, ".env")):
    load_dotenv(os.path.join(dir, ".env"))
