"""Access control for the gateway.

This module provides:
- Substring blocklist with hot reload
- Single-session enforcement per identity
- Static banned-address list (IPs and CIDR networks)
- HTTP Basic authentication against a user table
"""

from gatehouse.security.banned import BanCheckResult, BannedAddressList
from gatehouse.security.basicauth import (
    AUTH_CHALLENGE,
    AUTH_HEADER,
    AuthResult,
    BasicAuthenticator,
    create_basic_authenticator,
)
from gatehouse.security.blocklist import (
    BlocklistStore,
    normalize_entries,
    normalize_entry,
    parse_blocklist,
)
from gatehouse.security.sessions import (
    FORWARDED_FOR_HEADER,
    SessionDecision,
    SessionGuard,
    client_address,
)

__all__ = [
    # Banned addresses
    "BanCheckResult",
    "BannedAddressList",
    # Basic auth
    "AUTH_CHALLENGE",
    "AUTH_HEADER",
    "AuthResult",
    "BasicAuthenticator",
    "create_basic_authenticator",
    # Blocklist
    "BlocklistStore",
    "normalize_entries",
    "normalize_entry",
    "parse_blocklist",
    # Sessions
    "FORWARDED_FOR_HEADER",
    "SessionDecision",
    "SessionGuard",
    "client_address",
]
