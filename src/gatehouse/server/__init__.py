"""Gateway HTTP server and the static site fallback."""

from gatehouse.server.application import HEALTH_PATH, METRICS_PATH, PAGE_ROUTES, SiteApplication
from gatehouse.server.gateway import GatewayServer, create_gateway

__all__ = [
    "GatewayServer",
    "HEALTH_PATH",
    "METRICS_PATH",
    "PAGE_ROUTES",
    "SiteApplication",
    "create_gateway",
]
