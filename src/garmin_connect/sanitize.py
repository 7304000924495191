"""Remove personal identifiers from Garmin payloads before handing them out."""

from typing import Any, Iterable

PII_KEYS = frozenset({
    # owner / profile
    "ownerId",
    "ownerFullName",
    "ownerDisplayName",
    "userId",
    "userProfilePk",
    "userProfileId",
    "userProfileNumber",
    "profileId",
    "displayName",
    "fullName",
    "userName",
    "emailAddress",
    "birthDate",
    "location",
    "profileImageUrlLarge",
    "profileImageUrlMedium",
    "profileImageUrlSmall",
    # position
    "startLatitude",
    "startLongitude",
    "endLatitude",
    "endLongitude",
    "latitude",
    "longitude",
})


def strip_pii(data: Any, extra_keys: Iterable[str] = ()) -> Any:
    """Recursively drop PII keys from dicts and lists."""
    blocked = PII_KEYS | frozenset(extra_keys)

    def walk(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: walk(v) for k, v in value.items() if k not in blocked}
        if isinstance(value, list):
            return [walk(item) for item in value]
        return value

    return walk(data)
