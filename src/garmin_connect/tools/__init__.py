"""Register all MCP tools."""

from mcp.server.fastmcp import FastMCP


def register_tools(mcp: FastMCP):
    """Register all tool modules with the MCP server."""
    from garmin_connect.tools import (
        activities,
        gear,
        profile,
        uploads,
        wellness,
    )

    activities.register(mcp)
    wellness.register(mcp)
    gear.register(mcp)
    profile.register(mcp)
    uploads.register(mcp)
