"""Configuration for the Garmin Connect client.

Environment variables are only read here, at the edge. Everything else in the
package receives an explicit ``Config``.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

from garmin_connect.exceptions import ConfigError

DEFAULT_TOKEN_DIR = Path.home() / ".garminconnect"
SESSION_FILE_NAME = "session.json"

SSO_URL = "https://sso.garmin.com/sso"
CONNECT_API = "https://connectapi.garmin.com"
CONSUMER_URL = "https://thegarth.s3.amazonaws.com/oauth_consumer.json"
USER_AGENT = "com.garmin.android.apps.connectmobile"

# The provider does not report a lifetime for the exchanged bearer token.
# Eight hours is an observed value, not a documented one.
DEFAULT_TOKEN_LIFETIME = timedelta(hours=8)

EXCHANGE_STRATEGIES = ("ticket", "oauth1")


@dataclass(frozen=True)
class Config:
    sso_url: str = SSO_URL
    connect_api: str = CONNECT_API
    session_path: Path | None = field(default_factory=lambda: DEFAULT_TOKEN_DIR / SESSION_FILE_NAME)
    token_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME
    timeout: float = 30.0
    mfa_timeout: float = 300.0
    exchange_strategy: str = "ticket"
    consumer_key: str = ""
    consumer_secret: str = ""
    consumer_url: str = CONSUMER_URL
    user_agent: str = USER_AGENT
    debug_logging: bool = False

    def __post_init__(self):
        if self.exchange_strategy not in EXCHANGE_STRATEGIES:
            raise ConfigError(
                f"Unknown exchange strategy '{self.exchange_strategy}'. "
                f"Expected one of: {', '.join(EXCHANGE_STRATEGIES)}."
            )
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.token_lifetime <= timedelta(0):
            raise ConfigError("token_lifetime must be positive")

    def with_overrides(self, **changes) -> "Config":
        return replace(self, **changes)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{value}'") from None


def get_token_dir() -> Path:
    """Get the token storage directory path, creating it if needed."""
    token_dir = Path(os.environ.get("GARMIN_TOKEN_DIR", str(DEFAULT_TOKEN_DIR))).expanduser()
    token_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    return token_dir


def load_config(env_file: str | None = None) -> Config:
    """Build a Config from environment variables and an optional .env file.

    Real environment variables always win over values in the .env file.
    """
    load_dotenv(env_file, override=False)

    session_path = os.environ.get("GARMIN_SESSION_PATH")
    if session_path:
        path = Path(session_path).expanduser()
    else:
        path = get_token_dir() / SESSION_FILE_NAME

    hours = _env_float("GARMIN_TOKEN_LIFETIME_HOURS", DEFAULT_TOKEN_LIFETIME.total_seconds() / 3600)

    return Config(
        sso_url=os.environ.get("GARMIN_SSO_URL", SSO_URL),
        connect_api=os.environ.get("GARMIN_CONNECT_API", CONNECT_API),
        session_path=path,
        token_lifetime=timedelta(hours=hours),
        timeout=_env_float("GARMIN_TIMEOUT", 30.0),
        exchange_strategy=os.environ.get("GARMIN_EXCHANGE_STRATEGY", "ticket").lower(),
        consumer_key=os.environ.get("GARMIN_CONSUMER_KEY", ""),
        consumer_secret=os.environ.get("GARMIN_CONSUMER_SECRET", ""),
        debug_logging=os.environ.get("DEBUG_AUTH", "").lower() in ("1", "true", "yes"),
    )


def load_credentials() -> tuple[str, str]:
    """Return (email, password) from the environment; empty strings if unset."""
    email = os.environ.get("GARMIN_EMAIL") or os.environ.get("GARMIN_USERNAME", "")
    password = os.environ.get("GARMIN_PASSWORD", "")
    return email, password
