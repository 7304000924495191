import json
from http import HTTPStatus
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from garmin_connect.config import Config
from garmin_connect.session import Session


FIXED_NOW = datetime(2026, 2, 22, 12, 0, 0, tzinfo=timezone.utc)


def make_response(status: int = 200, text: str = "", json_body=None, reason: str = "") -> requests.Response:
    """Build a real requests.Response with canned content."""
    response = requests.Response()
    response.status_code = status
    if json_body is not None:
        text = json.dumps(json_body)
        response.headers["Content-Type"] = "application/json"
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    response.reason = reason or HTTPStatus(status).phrase
    return response


@pytest.fixture
def fake_http():
    """Stand-in for requests.Session; set .request.side_effect to a list of responses."""
    http = MagicMock()
    http.headers = {}
    return http


@pytest.fixture
def config(tmp_path):
    return Config(
        consumer_key="consumer-key",
        consumer_secret="consumer-secret",
        session_path=tmp_path / "tokens" / "session.json",
        mfa_timeout=5.0,
    )


@pytest.fixture
def clock():
    """Mutable clock: call it for the time, assign clock.now to move it."""

    class Clock:
        now = FIXED_NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def valid_session():
    return Session(
        oauth1_token="oauth1-token",
        oauth1_secret="oauth1-secret",
        oauth2_token="T",
        expires_at=FIXED_NOW + timedelta(hours=1),
    )


@pytest.fixture
def expired_session():
    return Session(
        oauth1_token="oauth1-token",
        oauth1_secret="oauth1-secret",
        oauth2_token="OLD",
        expires_at=FIXED_NOW - timedelta(hours=1),
    )
