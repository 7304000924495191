"""Exception hierarchy for the Garmin Connect client."""


class GarminError(RuntimeError):
    """Base class for every error raised by this package."""


class ConfigError(GarminError):
    """Raised when configuration values are missing or malformed."""


class TransportError(GarminError):
    """Network, DNS or timeout failure. Safe for the caller to retry."""


class ProtocolError(GarminError):
    """A login step response did not have the expected shape.

    Usually means the provider changed its sign-in flow; retrying will not help.
    """

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class AuthenticationDeniedError(GarminError):
    """Credentials were rejected, or no MFA code could be obtained."""


class MFARejectedError(AuthenticationDeniedError):
    """The MFA code was rejected. The caller may prompt for a new code."""


class LoginCancelledError(GarminError):
    """Login was aborted while waiting for an MFA code."""


class ReauthenticationRequiredError(GarminError):
    """The session expired or was invalidated and could not be refreshed."""


class SessionStoreError(GarminError):
    """The persisted session is missing or unreadable."""


class APIError(GarminError):
    """A REST call returned a 4xx/5xx status."""

    def __init__(self, status_code: int, message: str, code: int | None = None):
        if code is not None:
            text = f"API error {code}: {message}"
        else:
            text = f"API error {status_code}: {message}"
        super().__init__(text)
        self.status_code = status_code
        self.code = code
        self.message = message


class ResponseParsingError(GarminError):
    """A 2xx response body could not be decoded into the expected shape."""


class FitEncoderError(GarminError):
    """The FIT encoder was used after it was closed."""


class FitFormatError(GarminError):
    """Bytes do not form a valid FIT container."""
