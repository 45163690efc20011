from __future__ import annotations

import base64
import binascii
import secrets
from collections.abc import Mapping
from dataclasses import dataclass

AUTH_HEADER = "Authorization"
AUTH_CHALLENGE = "WWW-Authenticate"
DEFAULT_REALM = "Gatehouse"


@dataclass
class AuthResult:
    allowed: bool
    reason: str
    username: str | None = None


class BasicAuthenticator:
    def __init__(self, users: Mapping[str, str], realm: str = DEFAULT_REALM) -> None:
        self._users = dict(users)
        self._realm = realm

    def check(self, auth_header: str | None) -> AuthResult:
        if not auth_header:
            return AuthResult(allowed=False, reason="Missing Authorization header")

        if not auth_header.startswith("Basic "):
            return AuthResult(allowed=False, reason="Invalid authorization scheme")

        try:
            decoded = base64.b64decode(auth_header[6:].strip(), validate=True).decode("utf-8")
            username, password = decoded.split(":", 1)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return AuthResult(allowed=False, reason="Malformed credentials")

        # Compare against every user so timing does not reveal which names exist.
        matched: str | None = None
        for name, expected in self._users.items():
            name_ok = secrets.compare_digest(username.encode(), name.encode())
            pass_ok = secrets.compare_digest(password.encode(), expected.encode())
            if name_ok and pass_ok:
                matched = name

        if matched is None:
            return AuthResult(allowed=False, reason="Invalid credentials")

        return AuthResult(allowed=True, reason="Authenticated", username=matched)

    def identify(self, auth_header: str | None) -> str | None:
        """Username for valid credentials, otherwise None."""
        return self.check(auth_header).username

    @property
    def challenge(self) -> str:
        return f'Basic realm="{self._realm}"'

    @property
    def usernames(self) -> list[str]:
        return list(self._users)


def create_basic_authenticator(users: Mapping[str, str]) -> BasicAuthenticator:
    return BasicAuthenticator(users=users)
