"""Gear tools."""

from typing import Any

from mcp.server.fastmcp import FastMCP

from garmin_connect.exceptions import APIError


def register(mcp: FastMCP):
    @mcp.tool()
    def get_gear() -> list[dict[str, Any]]:
        """Get gear (shoes, bikes) with cumulative distance and activity count.
        Wear percentage is reported when a maximum distance is set on the gear.
        """
        from garmin_connect import get_client

        client = get_client()

        profile_id = client.get_profile_id()
        gear_list = client.get_gear(profile_id)

        results = []
        for gear in gear_list:
            gear_info: dict[str, Any] = {
                "uuid": gear.get("uuid"),
                "name": gear.get("displayName") or gear.get("gearMakeName", ""),
                "model": gear.get("gearModelName", ""),
                "type": gear.get("gearTypeName", ""),
                "status": gear.get("gearStatusName", ""),
            }

            # Max distance limit set by user (meters)
            max_meters = gear.get("maximumMeters")
            gear_info["max_distance_km"] = round(max_meters / 1000, 1) if max_meters and max_meters > 0 else None

            try:
                stats = client.get_gear_stats(gear.get("uuid", ""))
            except APIError:
                gear_info.update(total_distance_km=None, total_activities=None, wear_percentage=None)
            else:
                gear_info["total_distance_km"] = round(stats.total_distance / 1000, 2)
                gear_info["total_activities"] = stats.total_activities
                if max_meters and max_meters > 0:
                    gear_info["wear_percentage"] = round(stats.total_distance / max_meters * 100, 1)
                else:
                    gear_info["wear_percentage"] = None

            results.append(gear_info)

        return results

    @mcp.tool()
    def get_gear_activities(gear_uuid: str, limit: int = 20) -> list[dict[str, Any]]:
        """Get activities recorded with a piece of gear.

        Args:
            gear_uuid: The gear UUID (see get_gear)
            limit: Number of activities to return (default: 20, max: 100)
        """
        from garmin_connect import get_client

        client = get_client()
        activities = client.get_gear_activities(gear_uuid, start=0, limit=min(limit, 100))
        return [
            {
                "activity_id": a.get("activityId"),
                "name": a.get("activityName"),
                "date": a.get("startTimeLocal"),
                "distance_km": round((a.get("distance") or 0) / 1000, 2),
            }
            for a in activities
        ]
