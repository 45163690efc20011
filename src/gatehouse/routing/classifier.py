"""Routing decision for every inbound connection.

Priority:
1. Tunnel, if the engine's own predicate claims the request
2. Drop, for an upgrade request the engine did not claim
3. Asset proxy, for a GET or HEAD under a mirror prefix
4. Application, for everything else
"""

from __future__ import annotations

from enum import Enum

from aiohttp import web

from gatehouse.assets.cache import MirrorTable
from gatehouse.engine.base import TunnelEngine


class Route(Enum):
    """Where a request goes after the policy checks."""

    TUNNEL = "tunnel"
    ASSET_PROXY = "asset_proxy"
    APPLICATION = "application"
    DROP = "drop"


def raw_request_path(request: web.BaseRequest) -> str:
    """Request path exactly as sent, without the query string."""
    return request.raw_path.split("?", 1)[0]


def is_upgrade_request(request: web.BaseRequest) -> bool:
    """Whether the request asks to switch protocols (e.g. WebSocket)."""
    if not request.headers.get("Upgrade"):
        return False
    tokens = {t.strip().lower() for t in request.headers.get("Connection", "").split(",")}
    return "upgrade" in tokens


class RequestClassifier:
    """Decides Tunnel / AssetProxy / Application / Drop for a request."""

    def __init__(self, engine: TunnelEngine, mirrors: MirrorTable) -> None:
        self.engine = engine
        self.mirrors = mirrors

    def classify(self, request: web.BaseRequest) -> Route:
        if self.engine.should_route(request):
            return Route.TUNNEL

        # Upgrades never reach the application layer.
        if is_upgrade_request(request):
            return Route.DROP

        if request.method in ("GET", "HEAD") and self.mirrors.match_prefix(raw_request_path(request)) is not None:
            return Route.ASSET_PROXY

        return Route.APPLICATION
