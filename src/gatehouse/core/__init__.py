"""Core."""

from .config import (
    DEFAULT_ASSET_MIRRORS,
    DEFAULT_BANNED_ADDRESSES,
    GatewayConfig,
    RuntimeSettings,
    clear_settings,
    get_settings,
    load_config_from_file,
    load_gateway_config,
    parse_bind,
)
from .exceptions import (
    ConfigError,
    GatehouseError,
    MalformedBlocklistFile,
    PolicyDenied,
    UpstreamUnavailable,
)

__all__ = [
    # Config
    "DEFAULT_ASSET_MIRRORS",
    "DEFAULT_BANNED_ADDRESSES",
    "GatewayConfig",
    "RuntimeSettings",
    "clear_settings",
    "get_settings",
    "load_config_from_file",
    "load_gateway_config",
    "parse_bind",
    # Errors
    "ConfigError",
    "GatehouseError",
    "MalformedBlocklistFile",
    "PolicyDenied",
    "UpstreamUnavailable",
]
