"""Typed views of a few Garmin Connect payloads.

Each ``from_dict`` raises KeyError/TypeError/ValueError on an unexpected
shape; the client turns those into ResponseParsingError.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class UserProfile:
    profile_id: int
    display_name: str
    full_name: str
    location: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProfile":
        return cls(
            profile_id=int(data["profileId"]),
            display_name=data["displayName"],
            full_name=data.get("fullName") or "",
            location=data.get("location"),
        )


@dataclass
class Activity:
    activity_id: int
    name: str
    type_key: str
    start_time_local: str
    duration: float
    distance: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Activity":
        # List API uses "activityType", detail API uses "activityTypeDTO"
        activity_type = data.get("activityType") or data.get("activityTypeDTO") or {}
        summary = data.get("summaryDTO") or data
        return cls(
            activity_id=int(data["activityId"]),
            name=data.get("activityName") or "",
            type_key=activity_type.get("typeKey", ""),
            start_time_local=summary.get("startTimeLocal", ""),
            duration=float(summary.get("duration") or 0),
            distance=float(summary.get("distance") or 0),
        )

    @classmethod
    def list_from(cls, data: list[dict[str, Any]]) -> list["Activity"]:
        if not isinstance(data, list):
            raise TypeError(f"expected a list of activities, got {type(data).__name__}")
        return [cls.from_dict(item) for item in data]


@dataclass
class GearStats:
    uuid: str
    total_distance: float
    total_activities: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GearStats":
        return cls(
            uuid=data["uuid"],
            total_distance=float(data.get("totalDistance") or 0),
            total_activities=int(data.get("totalActivities") or 0),
        )


@dataclass
class UploadResult:
    upload_id: int | None
    activity_ids: list[int]
    failures: list[dict[str, Any]]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UploadResult":
        result = data["detailedImportResult"]
        return cls(
            upload_id=result.get("uploadId"),
            activity_ids=[int(s["internalId"]) for s in result.get("successes", []) if s.get("internalId")],
            failures=list(result.get("failures", [])),
        )
