"""Authentication module for Garmin Connect.

Login runs as a strictly sequential state machine:

    START -> REQUEST_TOKEN_OBTAINED -> CREDENTIALS_SUBMITTED
          -> [MFA_REQUIRED -> MFA_SUBMITTED] -> TICKET_EXCHANGED
          -> SESSION_ESTABLISHED

Any failing step moves the authenticator to FAILED and raises. Nothing is
retried here; the SSO endpoint reacts badly to repeated submissions, so retry
policy belongs to the caller. Callers that log in the same account from
several threads must serialize those calls themselves.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol
from urllib.parse import parse_qs

import requests
from requests_oauthlib import OAuth1

from garmin_connect.client import GarminClient
from garmin_connect.config import Config
from garmin_connect.exceptions import (
    AuthenticationDeniedError,
    GarminError,
    LoginCancelledError,
    MFARejectedError,
    ProtocolError,
    ReauthenticationRequiredError,
    SessionStoreError,
    TransportError,
)
from garmin_connect.extractors import SSOExtractors
from garmin_connect.mfa import MFAPrompter
from garmin_connect.session import Session, SessionStore, is_expired, utcnow

logger = logging.getLogger(__name__)

SSO_BROWSER_AGENT = "GCM-iOS-5.7.2.1"


class LoginState(str, Enum):
    START = "start"
    REQUEST_TOKEN_OBTAINED = "request_token_obtained"
    CREDENTIALS_SUBMITTED = "credentials_submitted"
    MFA_REQUIRED = "mfa_required"
    MFA_SUBMITTED = "mfa_submitted"
    TICKET_EXCHANGED = "ticket_exchanged"
    SESSION_ESTABLISHED = "session_established"
    FAILED = "failed"


class ExchangeStrategy(str, Enum):
    """How the sign-in proof is turned into OAuth1 credentials.

    TICKET: sign-in returns a service ticket, traded at the preauthorized endpoint.
    OAUTH1: classic three-legged flow; request token, verifier, access token.
    """

    TICKET = "ticket"
    OAUTH1 = "oauth1"


class SessionRefresher(Protocol):
    def refresh(self, session: Session) -> Session:
        """Return a usable session to replace an expired one."""
        ...


@dataclass
class MFAChallenge:
    """A pending MFA step. Used for exactly one code submission."""

    context: str
    consumed: bool = False


@dataclass
class _LoginContext:
    strategy: ExchangeStrategy
    csrf: str | None = None
    request_token: str | None = None
    request_secret: str | None = None


class Authenticator:
    """Runs the SSO login flow and exchanges OAuth1 credentials for bearer tokens."""

    def __init__(
        self,
        config: Config | None = None,
        mfa_prompter: MFAPrompter | None = None,
        http: requests.Session | None = None,
        extractors: SSOExtractors | None = None,
        store: SessionStore | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.config = config or Config()
        self.mfa_prompter = mfa_prompter
        self.http = http or requests.Session()
        self.extractors = extractors or SSOExtractors()
        if store is None and self.config.session_path is not None:
            store = SessionStore(self.config.session_path)
        self.store = store
        self.now = now

        self.state = LoginState.START
        self.failure: GarminError | None = None
        self.last_persist_error: OSError | None = None
        self._consumer_pair: tuple[str, str] | None = None
        self._call_timeout: float | None = None

    # --- Login ---

    def login(
        self,
        username: str,
        password: str,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> Session:
        """Authenticate and return a fully populated Session.

        ``timeout`` bounds each network round-trip of this login, overriding
        ``Config.timeout``. The session is saved to the store when one is
        configured. A failed save is logged and kept in ``last_persist_error``;
        the session is still returned.
        """
        if not username or not password:
            raise ValueError("username and password are required")
        cancel = cancel or threading.Event()

        self.failure = None
        self._call_timeout = timeout
        self._transition(LoginState.START)
        try:
            session = self._run_login(username, password, cancel)
        except GarminError as e:
            self.failure = e
            self._transition(LoginState.FAILED)
            raise
        except BaseException:
            # Interrupts and extractor bugs end the login too
            self._transition(LoginState.FAILED)
            raise
        finally:
            self._call_timeout = None
        self._transition(LoginState.SESSION_ESTABLISHED)

        self._persist(session)
        return session

    def _run_login(self, username: str, password: str, cancel: threading.Event) -> Session:
        strategy = ExchangeStrategy(self.config.exchange_strategy)
        consumer = self._consumer()

        self._check_cancel(cancel)
        ctx = self._begin(strategy, consumer)
        self._transition(LoginState.REQUEST_TOKEN_OBTAINED)

        self._check_cancel(cancel)
        response = self._submit_credentials(ctx, username, password)
        self._transition(LoginState.CREDENTIALS_SUBMITTED)

        if response.status_code == 412 or self.extractors.mfa_required.extract(response.text):
            self._transition(LoginState.MFA_REQUIRED)
            challenge = self._challenge_from(response.text)
            code = self._prompt_mfa(cancel)
            response = self._submit_mfa(ctx, challenge, code)
            self._transition(LoginState.MFA_SUBMITTED)

        self._check_cancel(cancel)
        if strategy is ExchangeStrategy.OAUTH1:
            verifier = self._extract("extract verifier", self.extractors.verifier, response.text)
            oauth1_token, oauth1_secret = self._get_access_token(consumer, ctx, verifier)
        else:
            ticket = self._extract("extract ticket", self.extractors.ticket, response.text)
            oauth1_token, oauth1_secret = self._get_preauthorized_token(consumer, ticket)
        self._transition(LoginState.TICKET_EXCHANGED)

        self._check_cancel(cancel)
        oauth2_token = self._exchange_oauth2(consumer, oauth1_token, oauth1_secret)

        return Session(
            oauth1_token=oauth1_token,
            oauth1_secret=oauth1_secret,
            oauth2_token=oauth2_token,
            expires_at=self.now() + self.config.token_lifetime,
        )

    def _begin(self, strategy: ExchangeStrategy, consumer: tuple[str, str]) -> _LoginContext:
        ctx = _LoginContext(strategy=strategy)
        if strategy is ExchangeStrategy.OAUTH1:
            step = "request token"
            response = self._request(
                step,
                "POST",
                f"{self.config.connect_api}/oauth-service/oauth/request_token",
                auth=OAuth1(consumer[0], consumer[1], callback_uri="oob"),
            )
            self._expect_ok(step, response)
            ctx.request_token, ctx.request_secret = self._parse_oauth1_pair(step, response.text)
            return ctx

        # Ticket flow: load the embedded widget for cookies, then read the CSRF token.
        step = "load sign-in page"
        embed = self._request(
            step,
            "GET",
            f"{self.config.sso_url}/embed",
            params={"id": "gauth-widget", "embedWidget": "true", "gauthHost": self.config.sso_url},
        )
        self._expect_ok(step, embed)
        page = self._request(step, "GET", f"{self.config.sso_url}/signin", params=self._sso_params())
        self._expect_ok(step, page)
        ctx.csrf = self._extract(step, self.extractors.csrf, page.text)
        return ctx

    def _submit_credentials(self, ctx: _LoginContext, username: str, password: str) -> requests.Response:
        step = "submit credentials"
        params = self._sso_params()
        data = {"username": username, "password": password, "embed": "true"}
        if ctx.strategy is ExchangeStrategy.OAUTH1:
            params["oauth_token"] = ctx.request_token
            data["_eventId"] = "submit"
        else:
            data["_csrf"] = ctx.csrf

        response = self._request(
            step,
            "POST",
            f"{self.config.sso_url}/signin",
            params=params,
            data=data,
            headers={"Referer": f"{self.config.sso_url}/signin"},
        )
        if response.status_code in (401, 403) or self.extractors.credentials_rejected.extract(response.text):
            raise AuthenticationDeniedError("Garmin rejected the username or password")
        if response.status_code != 412:
            self._expect_ok(step, response)
        return response

    def _challenge_from(self, body: str) -> MFAChallenge:
        context = self.extractors.mfa_context.extract(body)
        if not context:
            raise ProtocolError("mfa challenge", "MFA required but no MFA context found in response")
        return MFAChallenge(context=context)

    def _prompt_mfa(self, cancel: threading.Event) -> str:
        if self.mfa_prompter is None:
            raise AuthenticationDeniedError("MFA required but no MFA prompter is configured")

        prompter = self.mfa_prompter
        outcome: dict = {}
        finished = threading.Event()
        # The caller's event is only read; the prompter is told to stop through this one.
        stop_prompt = threading.Event()

        def ask():
            try:
                outcome["code"] = prompter.get_mfa_code(stop_prompt)
            except Exception as e:
                outcome["error"] = e
            finally:
                finished.set()

        threading.Thread(target=ask, name="mfa-prompt", daemon=True).start()

        deadline = time.monotonic() + self.config.mfa_timeout
        while not finished.wait(0.05):
            if cancel.is_set():
                stop_prompt.set()
                raise LoginCancelledError("Login cancelled while waiting for the MFA code")
            if time.monotonic() >= deadline:
                stop_prompt.set()
                raise LoginCancelledError(f"No MFA code received within {self.config.mfa_timeout:.0f}s")

        if cancel.is_set():
            raise LoginCancelledError("Login cancelled while waiting for the MFA code")
        error = outcome.get("error")
        if isinstance(error, EOFError):
            raise LoginCancelledError("MFA prompt closed before a code was entered") from error
        if isinstance(error, GarminError):
            raise error
        if error is not None:
            raise AuthenticationDeniedError(f"MFA prompt failed: {error}") from error

        code = (outcome.get("code") or "").strip()
        if not code:
            raise AuthenticationDeniedError("MFA required but no code was provided")
        return code

    def _submit_mfa(self, ctx: _LoginContext, challenge: MFAChallenge, code: str) -> requests.Response:
        if challenge.consumed:
            raise ProtocolError("submit mfa code", "MFA challenge already used")
        challenge.consumed = True

        step = "submit mfa code"
        params = self._sso_params()
        if ctx.strategy is ExchangeStrategy.OAUTH1:
            url = f"{self.config.sso_url}/verifyMFA"
            params["oauth_token"] = ctx.request_token
            data = {"mfaContext": challenge.context, "code": code, "verify": "Verify", "embed": "false"}
        else:
            url = f"{self.config.sso_url}/verifyMFA/loginEnterMfaCode"
            data = {"mfa-code": code, "embed": "true", "_csrf": challenge.context, "fromPage": "setupEnterMfaCode"}

        response = self._request(step, "POST", url, params=params, data=data)
        if response.status_code in (401, 403) or self.extractors.mfa_rejected.extract(response.text):
            raise MFARejectedError("Garmin rejected the MFA code")
        self._expect_ok(step, response)
        return response

    def _get_access_token(self, consumer: tuple[str, str], ctx: _LoginContext, verifier: str) -> tuple[str, str]:
        step = "exchange verifier"
        response = self._request(
            step,
            "POST",
            f"{self.config.connect_api}/oauth-service/oauth/access_token",
            auth=OAuth1(
                consumer[0],
                consumer[1],
                resource_owner_key=ctx.request_token,
                resource_owner_secret=ctx.request_secret,
                verifier=verifier,
            ),
        )
        self._expect_token_ok(step, response)
        return self._parse_oauth1_pair(step, response.text)

    def _get_preauthorized_token(self, consumer: tuple[str, str], ticket: str) -> tuple[str, str]:
        step = "exchange ticket"
        response = self._request(
            step,
            "GET",
            f"{self.config.connect_api}/oauth-service/oauth/preauthorized",
            params={
                "ticket": ticket,
                "login-url": f"{self.config.sso_url}/embed",
                "accepts-mfa-tokens": "true",
            },
            auth=OAuth1(consumer[0], consumer[1]),
        )
        self._expect_token_ok(step, response)
        return self._parse_oauth1_pair(step, response.text)

    def _exchange_oauth2(self, consumer: tuple[str, str], oauth1_token: str, oauth1_secret: str) -> str:
        step = "exchange oauth2 token"
        response = self._request(
            step,
            "POST",
            f"{self.config.connect_api}/oauth-service/oauth/exchange/user/2.0",
            auth=OAuth1(
                consumer[0],
                consumer[1],
                resource_owner_key=oauth1_token,
                resource_owner_secret=oauth1_secret,
            ),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        self._expect_token_ok(step, response)
        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError):
            raise ProtocolError(step, "response is not a JSON object") from None
        if not token:
            raise ProtocolError(step, "no access_token in response")
        return token

    # --- Refresh ---

    def refresh(self, session: Session) -> Session:
        """Exchange the session's OAuth1 credentials for a fresh bearer token."""
        if not session.oauth1_token or not session.oauth1_secret:
            raise AuthenticationDeniedError("Session has no OAuth1 credentials to refresh with")
        consumer = self._consumer()
        token = self._exchange_oauth2(consumer, session.oauth1_token, session.oauth1_secret)
        logger.debug("OAuth2 token refreshed")
        return Session(
            oauth1_token=session.oauth1_token,
            oauth1_secret=session.oauth1_secret,
            oauth2_token=token,
            expires_at=self.now() + self.config.token_lifetime,
        )

    # --- Helpers ---

    def _consumer(self) -> tuple[str, str]:
        if self.config.consumer_key and self.config.consumer_secret:
            return self.config.consumer_key, self.config.consumer_secret
        if self._consumer_pair is None:
            step = "fetch oauth consumer"
            response = self._request(step, "GET", self.config.consumer_url)
            self._expect_ok(step, response)
            try:
                data = response.json()
                self._consumer_pair = (data["consumer_key"], data["consumer_secret"])
            except (ValueError, KeyError, TypeError):
                raise ProtocolError(step, "consumer document missing consumer_key/consumer_secret") from None
        return self._consumer_pair

    def _sso_params(self) -> dict[str, str]:
        embed = f"{self.config.sso_url}/embed"
        return {
            "id": "gauth-widget",
            "embedWidget": "true",
            "gauthHost": embed,
            "service": embed,
            "source": embed,
            "redirectAfterAccountLoginUrl": embed,
            "redirectAfterAccountCreationUrl": embed,
        }

    def _request(self, step: str, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self._call_timeout if self._call_timeout is not None else self.config.timeout)
        headers = {"User-Agent": SSO_BROWSER_AGENT}
        headers.update(kwargs.pop("headers", None) or {})
        try:
            response = self.http.request(method, url, headers=headers, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{step}: {e}") from e

        logger.debug("%s: %s %s -> %s", step, method, url, response.status_code)
        if self.config.debug_logging:
            logger.debug("%s response body: %s", step, response.text[:2000])

        if response.status_code == 429 or response.status_code >= 500:
            raise TransportError(f"{step}: HTTP {response.status_code}")
        return response

    @staticmethod
    def _expect_ok(step: str, response: requests.Response):
        if not 200 <= response.status_code < 300:
            raise ProtocolError(step, f"unexpected HTTP {response.status_code}")

    @staticmethod
    def _expect_token_ok(step: str, response: requests.Response):
        if response.status_code in (401, 403):
            raise AuthenticationDeniedError(f"{step}: Garmin rejected the OAuth credentials")
        Authenticator._expect_ok(step, response)

    @staticmethod
    def _extract(step: str, extractor, body: str) -> str:
        value = extractor.extract(body)
        if not value:
            raise ProtocolError(step, f"value not found using {extractor!r}")
        return value

    @staticmethod
    def _parse_oauth1_pair(step: str, body: str) -> tuple[str, str]:
        parsed = parse_qs(body)
        token = parsed.get("oauth_token", [""])[0]
        secret = parsed.get("oauth_token_secret", [""])[0]
        if not token or not secret:
            raise ProtocolError(step, "response missing oauth_token/oauth_token_secret")
        return token, secret

    def _check_cancel(self, cancel: threading.Event):
        if cancel.is_set():
            raise LoginCancelledError(f"Login cancelled in state {self.state.value}")

    def _transition(self, state: LoginState):
        logger.debug("Login state %s -> %s", self.state.value, state.value)
        self.state = state

    def _persist(self, session: Session):
        self.last_persist_error = None
        if self.store is None:
            return
        try:
            self.store.save(session)
        except OSError as e:
            self.last_persist_error = e
            logger.warning("Logged in, but could not save session to %s: %s", self.store.path, e)


class StoreReloadRefresher:
    """Refresh by re-reading the persisted session, e.g. one renewed by another process."""

    def __init__(self, store: SessionStore, now: Callable[[], datetime] = utcnow):
        self.store = store
        self.now = now

    def refresh(self, session: Session) -> Session:
        reloaded = self.store.load()
        if is_expired(reloaded, self.now):
            raise ReauthenticationRequiredError(f"Persisted session at {self.store.path} is expired too")
        return reloaded


def create_client(
    config: Config,
    email: str = "",
    password: str = "",
    mfa_prompter: MFAPrompter | None = None,
) -> GarminClient:
    """Create an authenticated Garmin client.

    Authentication priority:
    1. Saved session (refreshed through OAuth1 if its bearer token expired)
    2. Email/password login

    Raises ReauthenticationRequiredError if neither works.
    """
    authenticator = Authenticator(config, mfa_prompter=mfa_prompter)
    store = authenticator.store

    session = None
    if store is not None and store.exists():
        try:
            session = store.load()
        except SessionStoreError as e:
            logger.info("Ignoring unreadable saved session: %s", e)

    if session is None:
        if not email or not password:
            raise ReauthenticationRequiredError(
                "Garmin authentication failed. Run 'garmin-connect login' to authenticate first, "
                "or set GARMIN_EMAIL and GARMIN_PASSWORD environment variables."
            )
        session = authenticator.login(email, password)

    return GarminClient(session, refresher=authenticator, config=config, store=store)
