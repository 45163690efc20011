from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

GATEWAY_REQUESTS = Counter(
    "gatehouse_requests_total",
    "Total requests dispatched",
    ["route"],  # tunnel, asset_proxy, application, drop
)

POLICY_DENIALS = Counter(
    "gatehouse_policy_denials_total",
    "Requests refused by an access policy",
    ["reason"],  # banned_address, blocklist, session_conflict
)

ASSET_CACHE_EVENTS = Counter(
    "gatehouse_asset_cache_total",
    "Asset cache lookups and outcomes",
    ["result"],  # hit, miss, evict, not_found, upstream_error
)

BLOCKLIST_RELOADS = Counter(
    "gatehouse_blocklist_reloads_total",
    "Blocklist reload attempts",
    ["status"],  # ok, failed
)

BLOCKLIST_ENTRIES = Gauge(
    "gatehouse_blocklist_entries",
    "Entries in the active blocklist snapshot",
)

ACTIVE_SESSIONS = Gauge(
    "gatehouse_active_sessions",
    "Identities currently bound to a client address",
)

UPSTREAM_FETCH_DURATION = Histogram(
    "gatehouse_upstream_fetch_duration_seconds",
    "Asset mirror fetch latency",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
