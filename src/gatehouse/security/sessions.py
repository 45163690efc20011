"""Single-session enforcement per authenticated identity.

Each identity is bound to the last client address it was seen from. A request
for a bound identity from any other address is refused and leaves the binding
untouched. Bindings never expire unless ``session_ttl`` is set.

Example:
    guard = SessionGuard()

    decision = guard.authorize("alice", client_address(request))
    if not decision.allowed:
        return 403  # Account already in use
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from gatehouse.observability.metrics import ACTIVE_SESSIONS

FORWARDED_FOR_HEADER = "X-Forwarded-For"


def client_address(headers: Mapping[str, str], peer: str | None) -> str:
    """Extract the authoritative client address.

    Only the first entry of a comma-separated ``X-Forwarded-For`` header
    counts; without the header the socket peer address is used.
    """
    forwarded = headers.get(FORWARDED_FOR_HEADER, "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return (peer or "").strip()


@dataclass(frozen=True)
class SessionDecision:
    """Result of a session authorization."""

    allowed: bool
    identity: str
    bound_address: str
    reason: str


@dataclass
class _Binding:
    address: str
    last_seen: float


class SessionGuard:
    """Tracks one active client address per identity.

    Last write wins between concurrent logins from different addresses; the
    guard does not try to order them.
    """

    def __init__(
        self,
        session_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_ttl = session_ttl
        self._clock = clock
        self._bindings: dict[str, _Binding] = {}
        self._lock = threading.Lock()

    def _is_expired(self, binding: _Binding, now: float) -> bool:
        return self.session_ttl is not None and now - binding.last_seen >= self.session_ttl

    def authorize(self, identity: str, address: str) -> SessionDecision:
        """Allow and record ``identity -> address``, or deny on an address conflict."""
        with self._lock:
            now = self._clock()
            binding = self._bindings.get(identity)

            if binding is not None and self._is_expired(binding, now):
                del self._bindings[identity]
                binding = None

            if binding is not None and binding.address != address:
                return SessionDecision(
                    allowed=False,
                    identity=identity,
                    bound_address=binding.address,
                    reason="Account already in use",
                )

            self._bindings[identity] = _Binding(address=address, last_seen=now)
            ACTIVE_SESSIONS.set(len(self._bindings))
            return SessionDecision(
                allowed=True,
                identity=identity,
                bound_address=address,
                reason="Session bound" if binding is None else "Session refreshed",
            )

    def bound_address(self, identity: str) -> str | None:
        """Address currently bound to ``identity``, if any."""
        with self._lock:
            binding = self._bindings.get(identity)
            if binding is None or self._is_expired(binding, self._clock()):
                return None
            return binding.address

    def release(self, identity: str) -> bool:
        """Forget the binding for ``identity``. Returns True if one existed."""
        with self._lock:
            removed = self._bindings.pop(identity, None) is not None
            ACTIVE_SESSIONS.set(len(self._bindings))
            return removed

    def clear(self) -> None:
        with self._lock:
            self._bindings.clear()
            ACTIVE_SESSIONS.set(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)
