"""Tests for GarminClient request handling and session refresh."""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FIXED_NOW, make_response
from garmin_connect.client import GarminClient, validate_date
from garmin_connect.exceptions import (
    APIError,
    AuthenticationDeniedError,
    FitFormatError,
    ReauthenticationRequiredError,
    ResponseParsingError,
    TransportError,
)
from garmin_connect.fit import encode
from garmin_connect.models import UserProfile
from garmin_connect.session import Session, SessionStore


def fresh_session(token="NEW"):
    return Session(
        oauth1_token="oauth1-token",
        oauth1_secret="oauth1-secret",
        oauth2_token=token,
        expires_at=FIXED_NOW + timedelta(hours=8),
    )


def ok(body=None):
    return make_response(200, json_body=body if body is not None else {})


def bearer(call):
    return call.kwargs["headers"]["Authorization"]


class TestSessionHandling:
    def test_valid_session_is_used_without_refresh(self, config, fake_http, clock, valid_session):
        fake_http.request.return_value = ok({"ok": True})
        refresher = MagicMock()
        client = GarminClient(valid_session, refresher=refresher, config=config, http=fake_http, now=clock)

        assert client.get("/usersummary-service/usersummary/daily/2026-02-22") == {"ok": True}

        refresher.refresh.assert_not_called()
        call = fake_http.request.call_args
        assert bearer(call) == "Bearer T"
        assert call.args[1] == f"{config.connect_api}/usersummary-service/usersummary/daily/2026-02-22"
        assert call.kwargs["timeout"] == config.timeout

    def test_default_headers(self, config, fake_http, valid_session):
        GarminClient(valid_session, config=config, http=fake_http)
        assert fake_http.headers["NK"] == "NT"
        assert fake_http.headers["User-Agent"] == config.user_agent

    def test_expired_session_refreshed_once(self, config, fake_http, clock, expired_session, tmp_path):
        fake_http.request.side_effect = lambda *a, **kw: ok()
        refresher = MagicMock()
        refresher.refresh.return_value = fresh_session()
        store = SessionStore(tmp_path / "session.json")
        client = GarminClient(
            expired_session, refresher=refresher, config=config, store=store, http=fake_http, now=clock
        )

        client.get("/a")
        client.get("/b")

        refresher.refresh.assert_called_once_with(expired_session)
        assert [bearer(c) for c in fake_http.request.call_args_list] == ["Bearer NEW", "Bearer NEW"]
        assert client.session.oauth2_token == "NEW"
        assert store.load() == fresh_session()

    def test_expiry_boundary(self, config, fake_http, clock, valid_session):
        fake_http.request.side_effect = lambda *a, **kw: ok()
        refresher = MagicMock()
        refresher.refresh.return_value = Session(
            oauth1_token="oauth1-token",
            oauth1_secret="oauth1-secret",
            oauth2_token="NEW",
            expires_at=valid_session.expires_at + timedelta(hours=8),
        )
        client = GarminClient(valid_session, refresher=refresher, config=config, http=fake_http, now=clock)

        clock.now = valid_session.expires_at - timedelta(microseconds=1)
        client.get("/a")
        refresher.refresh.assert_not_called()

        clock.now = valid_session.expires_at
        client.get("/b")
        refresher.refresh.assert_called_once()

    def test_refresh_failure_requires_reauthentication(self, config, fake_http, clock, expired_session):
        refresher = MagicMock()
        denied = AuthenticationDeniedError("token endpoint said no")
        refresher.refresh.side_effect = denied
        client = GarminClient(expired_session, refresher=refresher, config=config, http=fake_http, now=clock)

        with pytest.raises(ReauthenticationRequiredError) as exc_info:
            client.get("/a")

        assert exc_info.value.__cause__ is denied
        fake_http.request.assert_not_called()

    def test_refresh_returning_expired_session(self, config, fake_http, clock, expired_session):
        refresher = MagicMock()
        refresher.refresh.return_value = expired_session
        client = GarminClient(expired_session, refresher=refresher, config=config, http=fake_http, now=clock)

        with pytest.raises(ReauthenticationRequiredError):
            client.get("/a")
        fake_http.request.assert_not_called()

    def test_expired_without_refresher(self, config, fake_http, clock, expired_session):
        client = GarminClient(expired_session, config=config, http=fake_http, now=clock)
        with pytest.raises(ReauthenticationRequiredError):
            client.get("/a")
        fake_http.request.assert_not_called()

    def test_refresh_persist_failure_is_not_fatal(self, config, fake_http, clock, expired_session):
        fake_http.request.return_value = ok({"ok": True})
        refresher = MagicMock()
        refresher.refresh.return_value = fresh_session()
        store = MagicMock()
        store.save.side_effect = OSError("disk full")
        client = GarminClient(
            expired_session, refresher=refresher, config=config, store=store, http=fake_http, now=clock
        )

        assert client.get("/a") == {"ok": True}
        store.save.assert_called_once()

    def test_unauthorized_clears_session(self, config, fake_http, clock, valid_session):
        fake_http.request.return_value = make_response(401, "")
        refresher = MagicMock()
        client = GarminClient(valid_session, refresher=refresher, config=config, http=fake_http, now=clock)

        with pytest.raises(ReauthenticationRequiredError):
            client.get("/a")
        assert client.session is None
        assert not client.is_authenticated()

        with pytest.raises(ReauthenticationRequiredError):
            client.get("/b")
        assert fake_http.request.call_count == 1
        refresher.refresh.assert_not_called()

    def test_concurrent_callers_refresh_once(self, config, fake_http, clock, expired_session):
        fake_http.request.side_effect = lambda *a, **kw: ok()

        def slow_refresh(session):
            time.sleep(0.1)
            return fresh_session()

        refresher = MagicMock()
        refresher.refresh.side_effect = slow_refresh
        client = GarminClient(expired_session, refresher=refresher, config=config, http=fake_http, now=clock)

        errors = []

        def worker():
            try:
                client.get("/a")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert refresher.refresh.call_count == 1
        assert fake_http.request.call_count == 8
        assert {bearer(c) for c in fake_http.request.call_args_list} == {"Bearer NEW"}

    def test_post_sends_json_body(self, config, fake_http, clock, valid_session):
        fake_http.request.return_value = ok({"id": 7})
        client = GarminClient(valid_session, config=config, http=fake_http, now=clock)

        assert client.post("/workout-service/workout", {"workoutName": "Tempo"}) == {"id": 7}

        call = fake_http.request.call_args
        assert call.args[0] == "POST"
        assert call.args[1] == f"{config.connect_api}/workout-service/workout"
        assert call.kwargs["json"] == {"workoutName": "Tempo"}
        assert bearer(call) == "Bearer T"

    def test_post_refreshes_expired_session(self, config, fake_http, clock, expired_session):
        fake_http.request.return_value = ok()
        refresher = MagicMock()
        refresher.refresh.return_value = fresh_session()
        client = GarminClient(expired_session, refresher=refresher, config=config, http=fake_http, now=clock)

        client.post("/a", {"x": 1})

        refresher.refresh.assert_called_once_with(expired_session)
        assert bearer(fake_http.request.call_args) == "Bearer NEW"

    def test_per_call_timeout(self, config, fake_http, clock, valid_session):
        fake_http.request.side_effect = lambda *a, **kw: ok()
        client = GarminClient(valid_session, config=config, http=fake_http, now=clock)

        client.get("/a", timeout=2.5)
        client.post("/b", {}, timeout=60)
        client.download("/c", timeout=90)
        client.get("/d")

        timeouts = [c.kwargs["timeout"] for c in fake_http.request.call_args_list]
        assert timeouts == [2.5, 60, 90, config.timeout]


class TestErrorClassification:
    @pytest.fixture
    def client(self, config, fake_http, clock, valid_session):
        return GarminClient(valid_session, config=config, http=fake_http, now=clock)

    def test_error_envelope(self, client, fake_http):
        fake_http.request.return_value = make_response(400, json_body={"code": 1001, "message": "Invalid date"})

        with pytest.raises(APIError) as exc_info:
            client.get("/a")

        error = exc_info.value
        assert error.status_code == 400
        assert error.code == 1001
        assert error.message == "Invalid date"
        assert str(error) == "API error 1001: Invalid date"

    def test_error_field_envelope(self, client, fake_http):
        fake_http.request.return_value = make_response(403, json_body={"error": "NotAllowed"})

        with pytest.raises(APIError) as exc_info:
            client.get("/a")
        assert exc_info.value.message == "NotAllowed"
        assert exc_info.value.code is None

    def test_status_line_fallback(self, client, fake_http):
        fake_http.request.return_value = make_response(500, "<html>oops</html>")

        with pytest.raises(APIError) as exc_info:
            client.get("/a")
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "500 Internal Server Error"

    def test_not_found(self, client, fake_http):
        fake_http.request.return_value = make_response(404, "")
        with pytest.raises(APIError) as exc_info:
            client.get("/a")
        assert exc_info.value.status_code == 404

    def test_invalid_json(self, client, fake_http):
        fake_http.request.return_value = make_response(200, "<html>maintenance</html>")
        with pytest.raises(ResponseParsingError):
            client.get("/a")

    def test_unexpected_shape(self, client, fake_http):
        fake_http.request.return_value = ok({"displayName": "runner"})
        with pytest.raises(ResponseParsingError):
            client.get_user_profile()

    def test_empty_body(self, client, fake_http):
        fake_http.request.return_value = make_response(204, "")
        assert client.get("/a") is None

    def test_transport_failure(self, client, fake_http):
        fake_http.request.side_effect = requests.Timeout("read timed out")
        with pytest.raises(TransportError):
            client.get("/a")

    def test_post_invalid_json(self, client, fake_http):
        fake_http.request.return_value = make_response(200, "<html>maintenance</html>")
        with pytest.raises(ResponseParsingError):
            client.post("/a", {"x": 1})

    def test_post_unexpected_shape(self, client, fake_http):
        fake_http.request.return_value = ok({"displayName": "runner"})
        with pytest.raises(ResponseParsingError):
            client.post("/a", {"x": 1}, parse=UserProfile.from_dict)


class TestEndpoints:
    @pytest.fixture
    def client(self, config, fake_http, clock, valid_session):
        return GarminClient(valid_session, config=config, http=fake_http, now=clock)

    def test_user_profile(self, client, fake_http):
        fake_http.request.return_value = ok(
            {"profileId": "1234", "displayName": "runner", "fullName": "A Runner", "location": "Seoul"}
        )
        profile = client.get_user_profile()
        assert profile == UserProfile(profile_id=1234, display_name="runner", full_name="A Runner", location="Seoul")

    def test_activities_query(self, client, fake_http):
        fake_http.request.return_value = ok([{"activityId": 1}])
        assert client.get_activities(start=10, limit=5) == [{"activityId": 1}]
        assert fake_http.request.call_args.kwargs["params"] == {"start": 10, "limit": 5}

    def test_invalid_date(self, client, fake_http):
        with pytest.raises(ValueError):
            client.get_sleep_data("22-02-2026")
        fake_http.request.assert_not_called()

    def test_body_composition_inverted_range(self, client, fake_http):
        with pytest.raises(ValueError, match="range"):
            client.get_body_composition("2026-02-10", "2026-02-01")
        fake_http.request.assert_not_called()

    def test_upload_rejects_invalid_fit(self, client, fake_http):
        with pytest.raises(FitFormatError):
            client.upload_activity(b"not a fit file at all")
        fake_http.request.assert_not_called()

    def test_upload(self, client, fake_http):
        fake_http.request.return_value = make_response(
            201,
            json_body={
                "detailedImportResult": {
                    "uploadId": 77,
                    "successes": [{"internalId": 9001}],
                    "failures": [],
                }
            },
        )

        result = client.upload_activity(encode(b""), filename="run.fit")

        assert result.upload_id == 77
        assert result.activity_ids == [9001]
        call = fake_http.request.call_args
        assert call.args[0] == "POST"
        assert call.kwargs["files"]["file"][0] == "run.fit"

    def test_download_accept_header(self, client, fake_http):
        fake_http.request.return_value = make_response(200, "PK")
        assert client.download_activity(5) == b"PK"
        assert fake_http.request.call_args.kwargs["headers"]["Accept"] == "application/zip"

    def test_absolute_url_passthrough(self, client, fake_http):
        fake_http.request.return_value = ok()
        client.get("https://example.invalid/x")
        assert fake_http.request.call_args.args[1] == "https://example.invalid/x"


def test_validate_date():
    assert validate_date("2026-02-22") == "2026-02-22"
    with pytest.raises(ValueError):
        validate_date("2026/02/22")
