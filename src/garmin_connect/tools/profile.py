"""Profile and daily summary tools."""

from typing import Any

from mcp.server.fastmcp import FastMCP

from garmin_connect.client import today_str
from garmin_connect.sanitize import strip_pii


def register(mcp: FastMCP):
    @mcp.tool()
    def get_profile() -> dict[str, Any]:
        """Get the display name of the authenticated account."""
        from garmin_connect import get_client

        profile = get_client().get_user_profile()
        return {"display_name": profile.display_name, "full_name": profile.full_name}

    @mcp.tool()
    def get_daily_stats(date: str = "") -> dict[str, Any]:
        """Get the daily summary: steps, distance, calories, resting heart rate.

        Args:
            date: Date (YYYY-MM-DD), defaults to today
        """
        from garmin_connect import get_client

        stats = get_client().get_user_stats(date or today_str())
        return strip_pii(stats)
