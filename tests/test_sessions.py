"""Tests for the single-session guard."""

from __future__ import annotations

from gatehouse.security.sessions import SessionGuard, client_address


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestClientAddress:
    """Tests for client address extraction."""

    def test_forwarded_for_first_entry(self):
        headers = {"X-Forwarded-For": "198.51.100.7, 10.0.0.1"}
        assert client_address(headers, "127.0.0.1") == "198.51.100.7"

    def test_peer_without_header(self):
        assert client_address({}, "192.0.2.10") == "192.0.2.10"

    def test_empty_header_falls_back(self):
        assert client_address({"X-Forwarded-For": " "}, "192.0.2.10") == "192.0.2.10"

    def test_no_peer(self):
        assert client_address({}, None) == ""


class TestSessionGuard:
    """Tests for SessionGuard."""

    def test_first_request_binds(self):
        guard = SessionGuard()
        decision = guard.authorize("u1", "192.0.2.1")

        assert decision.allowed is True
        assert guard.bound_address("u1") == "192.0.2.1"
        assert len(guard) == 1

    def test_same_address_allowed(self):
        guard = SessionGuard()
        guard.authorize("u1", "192.0.2.1")
        decision = guard.authorize("u1", "192.0.2.1")

        assert decision.allowed is True
        assert decision.reason == "Session refreshed"

    def test_other_address_denied_and_binding_kept(self):
        """A denial never rebinds the identity."""
        guard = SessionGuard()
        guard.authorize("u1", "192.0.2.1")
        decision = guard.authorize("u1", "192.0.2.2")

        assert decision.allowed is False
        assert decision.bound_address == "192.0.2.1"
        assert decision.reason == "Account already in use"
        assert guard.bound_address("u1") == "192.0.2.1"

    def test_identities_independent(self):
        guard = SessionGuard()
        guard.authorize("u1", "192.0.2.1")
        assert guard.authorize("u2", "192.0.2.2").allowed is True

    def test_bindings_never_expire_by_default(self):
        clock = FakeClock()
        guard = SessionGuard(clock=clock)
        guard.authorize("u1", "192.0.2.1")

        clock.now = 10**9
        assert guard.authorize("u1", "192.0.2.2").allowed is False

    def test_session_ttl_expires_binding(self):
        clock = FakeClock()
        guard = SessionGuard(session_ttl=60, clock=clock)
        guard.authorize("u1", "192.0.2.1")

        clock.now = 30
        assert guard.authorize("u1", "192.0.2.2").allowed is False

        clock.now = 30 + 60
        decision = guard.authorize("u1", "192.0.2.2")
        assert decision.allowed is True
        assert guard.bound_address("u1") == "192.0.2.2"

    def test_activity_refreshes_ttl(self):
        clock = FakeClock()
        guard = SessionGuard(session_ttl=60, clock=clock)
        guard.authorize("u1", "192.0.2.1")

        clock.now = 50
        guard.authorize("u1", "192.0.2.1")
        clock.now = 100
        assert guard.authorize("u1", "192.0.2.2").allowed is False

    def test_release_and_clear(self):
        guard = SessionGuard()
        guard.authorize("u1", "192.0.2.1")
        guard.authorize("u2", "192.0.2.2")

        assert guard.release("u1") is True
        assert guard.release("u1") is False
        assert guard.authorize("u1", "192.0.2.9").allowed is True

        guard.clear()
        assert len(guard) == 0
