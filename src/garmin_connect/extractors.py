"""Pull values out of SSO response bodies.

The sign-in pages are scraped, and their markup changes without notice. Each
value the login flow needs is read through a small extractor so the patterns
can be replaced without touching the authenticator.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Protocol


class ResponseExtractor(Protocol):
    def extract(self, body: str) -> str | None:
        """Return the value found in ``body``, or None."""
        ...


class RegexExtractor:
    """First capture group of a regular expression."""

    def __init__(self, pattern: str, flags: int = 0):
        self.pattern = re.compile(pattern, flags)

    def extract(self, body: str) -> str | None:
        match = self.pattern.search(body)
        if not match:
            return None
        return match.group(1) if match.groups() else match.group(0)

    def __repr__(self) -> str:
        return f"RegexExtractor({self.pattern.pattern!r})"


class JSONFieldExtractor:
    """A top-level string field of a JSON object body."""

    def __init__(self, key: str):
        self.key = key

    def extract(self, body: str) -> str | None:
        try:
            data = json.loads(body)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        value = data.get(self.key)
        if value in (None, ""):
            return None
        return str(value)

    def __repr__(self) -> str:
        return f"JSONFieldExtractor({self.key!r})"


class FirstOf:
    """Try several extractors in order."""

    def __init__(self, *extractors: ResponseExtractor):
        self.extractors = extractors

    def extract(self, body: str) -> str | None:
        for extractor in self.extractors:
            value = extractor.extract(body)
            if value:
                return value
        return None

    def __repr__(self) -> str:
        return f"FirstOf{self.extractors!r}"


def _csrf() -> ResponseExtractor:
    return RegexExtractor(r'name="_csrf"\s+value="(.+?)"')


@dataclass
class SSOExtractors:
    """Everything the login flow reads from SSO pages."""

    csrf: ResponseExtractor = field(default_factory=_csrf)
    mfa_required: ResponseExtractor = field(
        default_factory=lambda: FirstOf(
            RegexExtractor(r"<title>([^<]*MFA[^<]*)</title>"),
            RegexExtractor(r"(mfa-required)"),
            RegexExtractor(r'name="(mfaContext)"'),
        )
    )
    mfa_context: ResponseExtractor = field(
        default_factory=lambda: FirstOf(
            RegexExtractor(r'name="mfaContext"\s+value="([^"]+)"'),
            _csrf(),
        )
    )
    mfa_rejected: ResponseExtractor = field(
        default_factory=lambda: RegexExtractor(r"(?i)(invalid (?:mfa |verification )?code|mfa-error)")
    )
    credentials_rejected: ResponseExtractor = field(
        default_factory=lambda: FirstOf(
            RegexExtractor(r"<title>(Locked)</title>"),
            RegexExtractor(r"(?i)(invalid sign in|incorrect (?:email|username|password))"),
        )
    )
    ticket: ResponseExtractor = field(
        default_factory=lambda: FirstOf(
            RegexExtractor(r'embed\?ticket=([^"&]+)'),
            RegexExtractor(r'name="ticket"\s+value="([^"]+)"'),
            JSONFieldExtractor("ticket"),
        )
    )
    verifier: ResponseExtractor = field(
        default_factory=lambda: FirstOf(
            RegexExtractor(r'name="oauth_verifier"\s+value="([^"]+)"'),
            RegexExtractor(r"oauth_verifier=([^&\"'\s]+)"),
            JSONFieldExtractor("oauth_verifier"),
        )
    )
