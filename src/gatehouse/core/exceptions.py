"""Error types raised by the gateway.

Every error carries a short machine-readable ``code`` alongside the human
readable ``message`` so the CLI and the HTTP layer can render it without
string matching.
"""

from __future__ import annotations


class GatehouseError(Exception):
    """Base class for all gateway errors."""

    code = "gatehouse_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class ConfigError(GatehouseError):
    """Invalid or unreadable configuration."""

    code = "config_error"


class PolicyDenied(GatehouseError):
    """Request rejected by an access policy (banned address, blocklist, session).

    Always surfaced to the client as 403 and never retried.
    """

    code = "policy_denied"

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class UpstreamUnavailable(GatehouseError):
    """Transport-level failure while fetching an asset from a mirror."""

    code = "upstream_unavailable"

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url


class MalformedBlocklistFile(GatehouseError):
    """The backing blocklist file could not be parsed."""

    code = "malformed_blocklist"

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path
