"""Static list of refused client addresses.

Entries are exact IPs or CIDR networks, parsed once with the standard
``ipaddress`` module. Addresses that do not parse as IPs (e.g. an empty peer
or a garbage ``X-Forwarded-For`` value) are compared verbatim against the raw
entries instead, so a literal entry still bans them.

Example:
    banned = BannedAddressList(["203.0.113.42", "198.51.100.0/24"])

    if banned.is_banned(client_address(request.headers, request.remote)):
        return 403  # Forbidden
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_address, ip_network


@dataclass(frozen=True)
class BanCheckResult:
    """Result of a banned-address check."""

    banned: bool
    matched_rule: str | None
    reason: str


@dataclass(frozen=True)
class BannedAddressList:
    """Immutable banned-address set with CIDR support."""

    addresses: Sequence[str] = field(default_factory=tuple)

    _networks: tuple[IPv4Network | IPv6Network, ...] = field(default=(), init=False)
    _exact: frozenset[IPv4Address | IPv6Address] = field(default=frozenset(), init=False)
    _literals: frozenset[str] = field(default=frozenset(), init=False)

    def __post_init__(self) -> None:
        networks: list[IPv4Network | IPv6Network] = []
        exact: set[IPv4Address | IPv6Address] = set()
        literals: set[str] = set()

        for rule in self.addresses:
            rule = rule.strip()
            if not rule:
                continue
            try:
                if "/" in rule:
                    networks.append(ip_network(rule, strict=False))
                else:
                    exact.add(ip_address(rule))
            except ValueError:
                literals.add(rule)

        object.__setattr__(self, "_networks", tuple(networks))
        object.__setattr__(self, "_exact", frozenset(exact))
        object.__setattr__(self, "_literals", frozenset(literals))

    def is_banned(self, address: str) -> bool:
        return self.check(address).banned

    def check(self, address: str) -> BanCheckResult:
        """Check an address with a detailed result."""
        address = address.strip()
        try:
            addr = ip_address(address)
        except ValueError:
            if address in self._literals:
                return BanCheckResult(banned=True, matched_rule=address, reason="Address in ban list")
            return BanCheckResult(banned=False, matched_rule=None, reason="Not an IP address")

        if addr in self._exact:
            return BanCheckResult(banned=True, matched_rule=str(addr), reason="Address in ban list")

        for network in self._networks:
            if addr in network:
                return BanCheckResult(
                    banned=True,
                    matched_rule=str(network),
                    reason="Address in banned network",
                )

        return BanCheckResult(banned=False, matched_rule=None, reason="Not banned")

    @property
    def rule_count(self) -> int:
        return len(self._networks) + len(self._exact) + len(self._literals)

    def __len__(self) -> int:
        return self.rule_count
