"""Authenticated session record and its on-disk store."""

import json
import logging
import os
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from garmin_connect.exceptions import SessionStoreError

logger = logging.getLogger(__name__)

SESSION_FIELDS = ("oauth1_token", "oauth1_secret", "oauth2_token", "expires_at")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """One authenticated identity's credential set."""

    oauth1_token: str
    oauth1_secret: str
    oauth2_token: str
    expires_at: datetime

    def is_complete(self) -> bool:
        """True when every credential field is populated."""
        return bool(self.oauth1_token and self.oauth1_secret and self.oauth2_token)

    def to_dict(self) -> dict[str, str]:
        return {
            "oauth1_token": self.oauth1_token,
            "oauth1_secret": self.oauth1_secret,
            "oauth2_token": self.oauth2_token,
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        missing = [key for key in SESSION_FIELDS if key not in data]
        if missing:
            raise ValueError(f"session record missing fields: {', '.join(missing)}")
        raw = data["expires_at"]
        # RFC 3339 "Z" suffix; fromisoformat only accepts it from Python 3.11
        if isinstance(raw, str) and raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        expires_at = datetime.fromisoformat(raw)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            oauth1_token=str(data["oauth1_token"]),
            oauth1_secret=str(data["oauth1_secret"]),
            oauth2_token=str(data["oauth2_token"]),
            expires_at=expires_at,
        )


def is_expired(session: Session | None, now: Callable[[], datetime] = utcnow) -> bool:
    """Return True if the session must not be used for a request.

    A missing or partially populated session counts as expired.
    """
    if session is None or not session.is_complete():
        return True
    return now() >= session.expires_at


class SessionStore:
    """
    JSON file persistence for a Session.

    Directory: 0700 (rwx------)
    File:      0600 (rw-------)
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, session: Session) -> None:
        directory = self.path.parent
        directory.mkdir(mode=0o700, parents=True, exist_ok=True)

        # Write to a sibling file and rename so a crash never leaves a truncated record.
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        with os.fdopen(fd, "w") as f:
            json.dump(session.to_dict(), f, indent=2)
        os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
        os.replace(tmp_path, self.path)
        logger.debug("Session saved to %s", self.path)

    def load(self) -> Session:
        """
        Load the persisted session.

        Raises:
            SessionStoreError: if the file is missing or not a valid session record.
        """
        if not self.path.exists():
            raise SessionStoreError(f"No Garmin session found at {self.path}. Run 'garmin-connect login' first.")
        try:
            data = json.loads(self.path.read_text())
            return Session.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            raise SessionStoreError(f"Could not read session file {self.path}: {e}") from e

    def delete(self) -> bool:
        """Remove the session file. Returns False if there was nothing to remove."""
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.debug("Session file %s removed", self.path)
        return True
