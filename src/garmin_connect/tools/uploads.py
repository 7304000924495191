"""FIT file creation and upload tools."""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from garmin_connect.fit import FitActivity, encode_activity


def register(mcp: FastMCP):
    @mcp.tool()
    def upload_fit_file(path: str) -> dict[str, Any]:
        """Upload a FIT activity file to Garmin Connect.

        Args:
            path: Path to the .fit file
        """
        from garmin_connect import get_client

        fit_path = Path(path).expanduser()
        result = get_client().upload_activity(fit_path.read_bytes(), filename=fit_path.name)
        return {
            "upload_id": result.upload_id,
            "activity_ids": result.activity_ids,
            "failures": result.failures,
        }

    @mcp.tool()
    def create_manual_activity(
        sport: str,
        start_time: str,
        duration_minutes: float,
        distance_km: float,
    ) -> dict[str, Any]:
        """Record a manual activity by building a FIT file and uploading it.

        Args:
            sport: running, cycling, swimming, walking, hiking or generic
            start_time: ISO-8601 start time, e.g. 2026-02-22T07:30:00+00:00
            duration_minutes: Elapsed time in minutes
            distance_km: Distance in kilometers
        """
        from garmin_connect import get_client

        activity = FitActivity(
            sport=sport,
            start_time=datetime.fromisoformat(start_time),
            duration=timedelta(minutes=duration_minutes),
            distance=distance_km * 1000,
        )
        result = get_client().upload_activity(encode_activity(activity), filename="manual.fit")
        return {"upload_id": result.upload_id, "activity_ids": result.activity_ids, "failures": result.failures}
