"""Wellness and recovery tools (sleep, stress, steps, HRV, body composition)."""

from typing import Any

from mcp.server.fastmcp import FastMCP

from garmin_connect.client import today_str
from garmin_connect.exceptions import APIError
from garmin_connect.sanitize import strip_pii


def register(mcp: FastMCP):
    @mcp.tool()
    def get_sleep_data(date: str = "") -> dict[str, Any]:
        """Get sleep data including duration, sleep stages (deep, light, REM),
        and sleep score.

        Args:
            date: Date (YYYY-MM-DD), defaults to today
        """
        from garmin_connect import get_client

        client = get_client()
        return strip_pii(client.get_sleep_data(date or today_str()))

    @mcp.tool()
    def get_daily_wellness(date: str = "") -> dict[str, Any]:
        """Get daily wellness data: stress, Body Battery, HRV and steps.
        Sections Garmin has no data for are returned as null.

        Args:
            date: Date (YYYY-MM-DD), defaults to today
        """
        from garmin_connect import get_client

        client = get_client()
        d = date or today_str()

        result: dict[str, Any] = {"date": d}
        sections = {
            "stress": client.get_stress_data,
            "body_battery": client.get_body_battery,
            "hrv": client.get_hrv_data,
            "steps": client.get_steps_data,
        }
        for name, fetch in sections.items():
            try:
                result[name] = strip_pii(fetch(d))
            except APIError as e:
                # Missing data for a day comes back as 404; anything else is a real failure.
                if e.status_code != 404:
                    raise
                result[name] = None
        return result

    @mcp.tool()
    def get_body_composition(start_date: str, end_date: str = "") -> dict[str, Any]:
        """Get weight and body composition measurements in a date range.

        Args:
            start_date: Start date (YYYY-MM-DD)
            end_date: End date (YYYY-MM-DD), defaults to start_date
        """
        from garmin_connect import get_client

        client = get_client()
        return strip_pii(client.get_body_composition(start_date, end_date or start_date))
