"""Boundary to the external tunneling engine.

The gateway never inspects the engine's protocol. It only asks whether the
engine claims a request and, if so, hands the request over.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from aiohttp import web


@runtime_checkable
class TunnelEngine(Protocol):
    """What the gateway needs from a tunneling engine."""

    def should_route(self, request: web.BaseRequest) -> bool:
        """Whether the engine claims this request."""
        ...

    async def route_request(self, request: web.BaseRequest) -> web.StreamResponse:
        """Serve a plain HTTP request."""
        ...

    async def route_upgrade(self, request: web.BaseRequest) -> web.StreamResponse:
        """Serve a protocol-upgrade (WebSocket) request."""
        ...

    async def start(self) -> None: ...

    async def close(self) -> None: ...


class NullTunnelEngine:
    """Engine stand-in used when no engine is configured. Claims nothing."""

    def should_route(self, request: web.BaseRequest) -> bool:
        return False

    async def route_request(self, request: web.BaseRequest) -> web.StreamResponse:
        return web.Response(text="No tunnel engine configured", status=502, content_type="text/plain")

    async def route_upgrade(self, request: web.BaseRequest) -> web.StreamResponse:
        return await self.route_request(request)

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass
