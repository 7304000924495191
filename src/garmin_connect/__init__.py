"""Garmin Connect client and MCP server."""

import logging
import sys

from mcp.server.fastmcp import FastMCP

from garmin_connect.auth import create_client
from garmin_connect.client import GarminClient
from garmin_connect.config import load_config, load_credentials

mcp = FastMCP("garmin-connect")

_client: GarminClient | None = None


def get_client() -> GarminClient:
    """Get the authenticated Garmin client (lazy initialization).

    A client whose session was dropped by a 401 is rebuilt, so a session saved
    by a later ``garmin-connect login`` is picked up without a restart.
    """
    global _client
    if _client is None or _client.session is None:
        email, password = load_credentials()
        _client = create_client(load_config(), email=email, password=password)
    return _client


# Register all tools
from garmin_connect.tools import register_tools  # noqa: E402

register_tools(mcp)


def main():
    """Run the MCP server."""
    config = load_config()
    # stdout carries the MCP protocol; logs go to stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if config.debug_logging else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run(transport="stdio")
