"""Configuration types with file and environment variable support.

Settings are layered, later layers winning:

1. ``GatewayConfig`` defaults
2. a YAML or TOML file (``--config``)
3. ``GATEHOUSE_*`` environment variables
4. explicit overrides (CLI flags)

Example: GATEHOUSE_ASSET_FETCH_TIMEOUT=10 caps mirror fetches at ten seconds.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gatehouse.core.exceptions import ConfigError

THIRTY_DAYS = 30 * 24 * 60 * 60

DEFAULT_ASSET_MIRRORS: dict[str, str] = {
    "/e/1/": "https://raw.githubusercontent.com/qrs/x/fixy/",
    "/e/2/": "https://raw.githubusercontent.com/3v1/V5-Assets/main/",
    "/e/3/": "https://raw.githubusercontent.com/3v1/V5-Retro/master/",
}

DEFAULT_BANNED_ADDRESSES: list[str] = [
    "203.0.113.42",
    "124.150.162.86",
]


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is missing, unreadable, has invalid syntax
            or an unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ConfigError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def parse_bind(bind: str) -> tuple[str, int]:
    """Parse bind address into host and port."""
    if ":" in bind:
        host, port = bind.rsplit(":", 1)
        return host or "0.0.0.0", int(port)
    return "0.0.0.0", int(bind)


class GatewayConfig(BaseModel):
    """Gateway configuration."""

    bind: str = Field(
        default="0.0.0.0:8080",
        description="Listen address as host:port.",
    )
    blocklist_path: str = Field(
        default="blocklist.json",
        description="Path to the JSON array of blocked host/URL substrings.",
    )
    blocklist_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between blocklist modification checks.",
    )
    banned_addresses: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BANNED_ADDRESSES),
        description="Client IPs/CIDRs that are always refused.",
    )
    asset_mirrors: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_ASSET_MIRRORS),
        description="Ordered path prefix -> upstream base URL table. First match wins.",
    )
    asset_cache_ttl: float = Field(
        default=THIRTY_DAYS,
        gt=0,
        description="Seconds a cached asset stays fresh (30 days default).",
    )
    asset_fetch_timeout: float | None = Field(
        default=30.0,
        description="Deadline in seconds for a mirror fetch. None or 0 for indefinite.",
    )
    forced_binary_extensions: list[str] = Field(
        default_factory=lambda: [".unityweb"],
        description="Extensions always served as application/octet-stream.",
    )
    users: dict[str, str] = Field(
        default_factory=dict,
        repr=False,
        description="Basic auth credentials (username -> password). Empty disables auth.",
    )
    session_ttl: float | None = Field(
        default=None,
        description="Seconds of inactivity after which a session binding lapses. None keeps bindings forever.",
    )
    static_dir: str = Field(
        default="static",
        description="Directory holding the pre-built site pages.",
    )
    engine_url: str | None = Field(
        default=None,
        description="Base URL of the external tunneling engine. None disables tunnel routing.",
    )
    engine_mount: str = Field(
        default="/ca/",
        description="Path prefix claimed by the tunneling engine.",
    )
    metrics_enabled: bool = Field(
        default=False,
        description="Expose Prometheus metrics at /_gatehouse/metrics.",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )

    @field_validator("asset_mirrors")
    @classmethod
    def _check_mirror_prefixes(cls, value: dict[str, str]) -> dict[str, str]:
        for prefix in value:
            if not prefix.startswith("/"):
                raise ValueError(f"asset mirror prefix must start with '/': {prefix!r}")
        return value

    @field_validator("forced_binary_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]

    @field_validator("asset_fetch_timeout", "session_ttl")
    @classmethod
    def _zero_means_indefinite(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @property
    def auth_enabled(self) -> bool:
        return bool(self.users)

    @property
    def host(self) -> str:
        return parse_bind(self.bind)[0]

    @property
    def port(self) -> int:
        return parse_bind(self.bind)[1]


class RuntimeSettings(BaseSettings):
    """Environment overrides.

    Only scalar settings are read from the environment:
    - GATEHOUSE_BIND
    - GATEHOUSE_BLOCKLIST_PATH
    - GATEHOUSE_STATIC_DIR
    - GATEHOUSE_ENGINE_URL
    - GATEHOUSE_ASSET_FETCH_TIMEOUT
    - GATEHOUSE_SESSION_TTL
    - GATEHOUSE_METRICS_ENABLED
    - GATEHOUSE_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEHOUSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bind: str | None = None
    blocklist_path: str | None = None
    static_dir: str | None = None
    engine_url: str | None = None
    asset_fetch_timeout: float | None = None
    session_ttl: float | None = None
    metrics_enabled: bool | None = None
    log_level: str | None = None

    def overrides(self) -> dict[str, Any]:
        """Return only the settings that were actually provided."""
        return {k: v for k, v in self.model_dump().items() if v is not None}


_settings: RuntimeSettings | None = None


def get_settings() -> RuntimeSettings:
    """Get the cached environment settings.

    To re-read the environment (e.g., in tests), call clear_settings() first.
    """
    global _settings
    if _settings is None:
        _settings = RuntimeSettings()
    return _settings


def clear_settings() -> None:
    """Clear the cached environment settings."""
    global _settings
    _settings = None


def load_gateway_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> GatewayConfig:
    """Build a GatewayConfig from file, environment and explicit overrides.

    ``None`` values in ``overrides`` are ignored so unset CLI flags fall
    through to lower layers.
    """
    merged: dict[str, Any] = {}
    if path is not None:
        merged.update(load_config_from_file(path))
    merged.update(get_settings().overrides())
    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return GatewayConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
