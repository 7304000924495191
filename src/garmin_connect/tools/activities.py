"""Activity tools."""

from typing import Any

from mcp.server.fastmcp import FastMCP

from garmin_connect.models import Activity
from garmin_connect.sanitize import strip_pii


def _format_pace(seconds_per_km: float | None) -> str | None:
    """Format pace from seconds/km to mm:ss string."""
    if seconds_per_km is None or seconds_per_km <= 0:
        return None
    minutes = int(seconds_per_km // 60)
    secs = int(seconds_per_km % 60)
    return f"{minutes}:{secs:02d}"


def _summarize_activity(activity: Activity) -> dict[str, Any]:
    avg_pace_s = (activity.duration / (activity.distance / 1000)) if activity.distance > 0 else None
    return {
        "activity_id": activity.activity_id,
        "name": activity.name,
        "date": activity.start_time_local,
        "type": activity.type_key,
        "distance_km": round(activity.distance / 1000, 2),
        "duration_seconds": round(activity.duration, 1),
        "avg_pace": _format_pace(avg_pace_s),
    }


def register(mcp: FastMCP):
    @mcp.tool()
    def get_recent_activities(count: int = 20, activity_type: str = "") -> list[dict[str, Any]]:
        """Get recent activities with distance, duration and pace.

        Args:
            count: Number of activities to return (default: 20, max: 100)
            activity_type: Only include this type key, e.g. "running" (default: all)
        """
        from garmin_connect import get_client

        client = get_client()
        count = min(count, 100)

        # Fetch extra when filtering, since other types are dropped
        limit = count * 3 if activity_type else count
        activities = Activity.list_from(client.get_activities(start=0, limit=limit))

        summaries = []
        for activity in activities:
            if activity_type and activity.type_key != activity_type:
                continue
            summaries.append(_summarize_activity(activity))
            if len(summaries) >= count:
                break
        return summaries

    @mcp.tool()
    def get_activity_detail(activity_id: int) -> dict[str, Any]:
        """Get the full detail record of one activity, without personal fields.

        Args:
            activity_id: The Garmin activity ID
        """
        from garmin_connect import get_client

        client = get_client()
        detail = client.get_activity(activity_id)
        result = strip_pii(detail)
        result["summary"] = _summarize_activity(Activity.from_dict(detail))
        return result
