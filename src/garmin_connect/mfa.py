"""Sources of MFA codes for the login flow."""

import threading
from typing import Protocol


class MFAPrompter(Protocol):
    def get_mfa_code(self, cancel: threading.Event) -> str:
        """Return a code from an out-of-band channel.

        Implementations should give up and raise once ``cancel`` is set.
        """
        ...


class ConsolePrompter:
    """Ask for the code on the terminal."""

    def __init__(self, prompt: str = "Enter Garmin MFA code: "):
        self.prompt = prompt

    def get_mfa_code(self, cancel: threading.Event) -> str:
        if cancel.is_set():
            return ""
        # Blocking read; the authenticator bounds the wait and abandons it on cancel.
        return input(self.prompt).strip()


class StaticPrompter:
    """Return a fixed code, e.g. one passed on the command line."""

    def __init__(self, code: str):
        self.code = code
        self.calls = 0

    def get_mfa_code(self, cancel: threading.Event) -> str:
        self.calls += 1
        return self.code
