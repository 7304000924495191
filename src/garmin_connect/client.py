"""Garmin Connect REST client with session refresh and error classification."""

import logging
import re
import threading
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable

import requests

from garmin_connect.config import Config
from garmin_connect.exceptions import (
    APIError,
    GarminError,
    ReauthenticationRequiredError,
    ResponseParsingError,
    TransportError,
)
from garmin_connect.fit import check as check_fit
from garmin_connect.models import GearStats, UploadResult, UserProfile
from garmin_connect.session import Session, SessionStore, is_expired, utcnow

if TYPE_CHECKING:
    from garmin_connect.auth import SessionRefresher

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "NK": "NT",
}


def validate_date(date_str: str) -> str:
    """Validate date string format (YYYY-MM-DD)."""
    if not DATE_PATTERN.match(date_str):
        raise ValueError(f"Invalid date format: '{date_str}'. Expected YYYY-MM-DD.")
    return date_str


def today_str() -> str:
    """Return today's date as YYYY-MM-DD string."""
    return date.today().isoformat()


def _api_error(response: requests.Response) -> APIError:
    """Build an APIError from the provider's error envelope, or the status line."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        code = body.get("code")
        message = body.get("message")
        if isinstance(code, int) and code != 0 and message:
            return APIError(response.status_code, str(message), code=code)
        if body.get("error"):
            return APIError(response.status_code, str(body["error"]))
        if message:
            return APIError(response.status_code, str(message))

    reason = response.reason or "Unknown error"
    return APIError(response.status_code, f"{response.status_code} {reason}")


class GarminClient:
    """Authenticated REST access to Garmin Connect.

    Holds one live Session. Before every call an expired session is refreshed
    through ``refresher`` (under a lock, so concurrent callers refresh once).
    A 401 from the server drops the session; the caller must log in again.
    """

    def __init__(
        self,
        session: Session | None,
        refresher: "SessionRefresher | None" = None,
        config: Config | None = None,
        store: SessionStore | None = None,
        http: requests.Session | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.config = config or Config()
        self.refresher = refresher
        self.store = store
        self.http = http or requests.Session()
        self.http.headers.update({**DEFAULT_HEADERS, "User-Agent": self.config.user_agent})
        self._session = session
        self._now = now
        self._lock = threading.Lock()

    @property
    def session(self) -> Session | None:
        return self._session

    def is_authenticated(self) -> bool:
        return not is_expired(self._session, self._now)

    # --- Session handling ---

    def _current_session(self) -> Session:
        with self._lock:
            session = self._session
            if not is_expired(session, self._now):
                return session
            if session is None:
                raise ReauthenticationRequiredError("No active Garmin session; log in again")
            if self.refresher is None:
                raise ReauthenticationRequiredError("Garmin session expired and no refresh is configured")

            logger.debug("Session expired at %s, refreshing", session.expires_at.isoformat())
            try:
                refreshed = self.refresher.refresh(session)
            except GarminError as e:
                raise ReauthenticationRequiredError(f"Garmin session expired and refresh failed: {e}") from e
            if is_expired(refreshed, self._now):
                raise ReauthenticationRequiredError("Refresh returned a session that is already expired")

            self._session = refreshed
            self._persist(refreshed)
            return refreshed

    def _persist(self, session: Session):
        if self.store is None:
            return
        try:
            self.store.save(session)
        except OSError as e:
            logger.warning("Session refreshed, but could not save it to %s: %s", self.store.path, e)

    def _invalidate(self, session: Session):
        with self._lock:
            if self._session is session:
                self._session = None

    # --- Requests ---

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.config.connect_api}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: Any = None,
        files: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """Send an authenticated request and classify the response status.

        ``timeout`` overrides ``Config.timeout`` for this call only.
        """
        session = self._current_session()
        request_headers = {"Authorization": f"Bearer {session.oauth2_token}"}
        request_headers.update(headers or {})

        try:
            response = self.http.request(
                method,
                self._url(path),
                params=params,
                json=json,
                data=data,
                files=files,
                headers=request_headers,
                timeout=self.config.timeout if timeout is None else timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        logger.debug("%s %s -> %s", method, path, response.status_code)

        if response.status_code == 401:
            self._invalidate(session)
            raise ReauthenticationRequiredError("Garmin rejected the session token (HTTP 401); log in again")
        if response.status_code >= 400:
            raise _api_error(response)
        return response

    @staticmethod
    def _decode(response: requests.Response, path: str, parse: Callable[[Any], Any] | None) -> Any:
        if response.status_code == 204 or not response.content:
            data = None
        else:
            try:
                data = response.json()
            except ValueError as e:
                raise ResponseParsingError(f"{path}: response is not valid JSON") from e
        if parse is None:
            return data
        try:
            return parse(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ResponseParsingError(f"{path}: unexpected response shape: {e}") from e

    def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        parse: Callable[[Any], Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        response = self.request("GET", path, params=params, timeout=timeout)
        return self._decode(response, path, parse)

    def post(
        self,
        path: str,
        body: Any = None,
        parse: Callable[[Any], Any] | None = None,
        files: Any = None,
        timeout: float | None = None,
    ) -> Any:
        response = self.request("POST", path, json=body, files=files, timeout=timeout)
        return self._decode(response, path, parse)

    def download(self, path: str, accept: str = "application/octet-stream", timeout: float | None = None) -> bytes:
        return self.request("GET", path, headers={"Accept": accept}, timeout=timeout).content

    # --- User ---

    def get_user_profile(self) -> UserProfile:
        return self.get("/userprofile-service/socialProfile", parse=UserProfile.from_dict)

    def get_profile_id(self) -> int:
        return self.get_user_profile().profile_id

    def get_user_stats(self, date_str: str) -> dict[str, Any]:
        validate_date(date_str)
        return self.get(f"/usersummary-service/usersummary/daily/{date_str}")

    # --- Activities ---

    def get_activities(self, start: int = 0, limit: int = 20) -> list[dict[str, Any]]:
        return self.get(
            "/activitylist-service/activities/search/activities",
            params={"start": start, "limit": limit},
        )

    def get_activity(self, activity_id: int) -> dict[str, Any]:
        return self.get(f"/activity-service/activity/{activity_id}")

    def upload_activity(self, fit_bytes: bytes, filename: str = "activity.fit") -> UploadResult:
        check_fit(fit_bytes)
        return self.post(
            "/upload-service/upload/.fit",
            files={"file": (filename, fit_bytes, "application/octet-stream")},
            parse=UploadResult.from_dict,
        )

    def download_activity(self, activity_id: int) -> bytes:
        """Download the original upload; Garmin wraps it in a zip archive."""
        return self.download(f"/download-service/files/activity/{activity_id}", accept="application/zip")

    # --- Wellness ---

    def get_sleep_data(self, date_str: str) -> dict[str, Any]:
        validate_date(date_str)
        return self.get("/wellness-service/wellness/dailySleepData", params={"date": date_str})

    def get_stress_data(self, date_str: str) -> dict[str, Any]:
        validate_date(date_str)
        return self.get(f"/wellness-service/wellness/dailyStress/{date_str}")

    def get_steps_data(self, date_str: str) -> list[dict[str, Any]]:
        validate_date(date_str)
        return self.get(f"/usersummary-service/stats/steps/daily/{date_str}/{date_str}")

    def get_hrv_data(self, date_str: str) -> dict[str, Any]:
        validate_date(date_str)
        return self.get(f"/hrv-service/hrv/{date_str}")

    def get_body_battery(self, start_date: str, end_date: str | None = None) -> list[dict[str, Any]]:
        validate_date(start_date)
        end_date = end_date or start_date
        validate_date(end_date)
        return self.get(
            "/wellness-service/wellness/bodyBattery/reports/daily",
            params={"startDate": start_date, "endDate": end_date},
        )

    def get_body_composition(self, start_date: str, end_date: str) -> dict[str, Any]:
        validate_date(start_date)
        validate_date(end_date)
        if start_date > end_date:
            raise ValueError(f"Invalid date range: start {start_date} is after end {end_date}")
        return self.get(
            "/weight-service/weight/dateRange",
            params={"startDate": start_date, "endDate": end_date},
        )

    # --- Gear ---

    def get_gear(self, user_profile_number: int) -> list[dict[str, Any]]:
        return self.get("/gear-service/gear/filterGear", params={"userProfilePk": user_profile_number})

    def get_gear_stats(self, gear_uuid: str) -> GearStats:
        return self.get(f"/gear-service/stats/{gear_uuid}", parse=GearStats.from_dict)

    def get_gear_activities(self, gear_uuid: str, start: int = 0, limit: int = 20) -> list[dict[str, Any]]:
        return self.get(
            f"/activitylist-service/activities/{gear_uuid}/gear",
            params={"start": start, "limit": limit},
        )
