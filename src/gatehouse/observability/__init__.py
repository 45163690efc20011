from gatehouse.observability.metrics import (
    ACTIVE_SESSIONS,
    ASSET_CACHE_EVENTS,
    BLOCKLIST_ENTRIES,
    BLOCKLIST_RELOADS,
    GATEWAY_REQUESTS,
    POLICY_DENIALS,
    UPSTREAM_FETCH_DURATION,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "ACTIVE_SESSIONS",
    "ASSET_CACHE_EVENTS",
    "BLOCKLIST_ENTRIES",
    "BLOCKLIST_RELOADS",
    "GATEWAY_REQUESTS",
    "POLICY_DENIALS",
    "UPSTREAM_FETCH_DURATION",
    "generate_metrics",
    "get_content_type",
]
