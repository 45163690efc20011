"""Forward engine-bound traffic to an external tunneling engine over HTTP.

The engine runs as its own process (for example a bare server listening on
127.0.0.1:8081). Requests under the mount prefix are relayed verbatim,
WebSocket upgrades are bridged frame by frame.
"""

from __future__ import annotations

import asyncio
import contextlib

import aiohttp
import structlog
from aiohttp import WSMsgType, web
from multidict import CIMultiDict

logger = structlog.get_logger()

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Stripped from upstream responses: the body is re-framed and already decoded.
_RESPONSE_SKIP_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}

_WS_HANDSHAKE_HEADERS = frozenset(
    {
        "sec-websocket-key",
        "sec-websocket-version",
        "sec-websocket-extensions",
        "sec-websocket-protocol",
    }
)

STREAM_CHUNK_SIZE = 64 * 1024


def _forward_headers(request: web.BaseRequest, skip: frozenset[str] = frozenset()) -> CIMultiDict[str]:
    headers: CIMultiDict[str] = CIMultiDict()
    for key, value in request.headers.items():
        key_lower = key.lower()
        if key_lower in HOP_BY_HOP_HEADERS or key_lower in skip or key_lower in ("host", "content-length"):
            continue
        headers.add(key, value)

    peer = request.remote or ""
    prior = request.headers.get("X-Forwarded-For")
    headers["X-Forwarded-For"] = f"{prior}, {peer}" if prior else peer
    headers["X-Forwarded-Host"] = request.host
    headers["X-Forwarded-Proto"] = request.scheme
    return headers


def _apply_cors(request: web.BaseRequest, response: web.StreamResponse) -> None:
    """Reflect the request origin, the way a permissive CORS layer would."""
    origin = request.headers.get("Origin")
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers.add("Vary", "Origin")


class HttpTunnelEngine:
    """Relay requests under ``mount`` to the engine at ``engine_url``."""

    def __init__(
        self,
        engine_url: str,
        mount: str = "/ca/",
        session: aiohttp.ClientSession | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self.engine_url = engine_url.rstrip("/")
        self.mount = mount
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    def should_route(self, request: web.BaseRequest) -> bool:
        return request.path.startswith(self.mount)

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                auto_decompress=True,
            )

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self.start()
        assert self._session is not None
        return self._session

    def _target_url(self, request: web.BaseRequest, websocket: bool = False) -> str:
        base = self.engine_url
        if websocket:
            if base.startswith("https://"):
                base = "wss://" + base[len("https://") :]
            elif base.startswith("http://"):
                base = "ws://" + base[len("http://") :]
        return f"{base}{request.rel_url}"

    async def route_request(self, request: web.BaseRequest) -> web.StreamResponse:
        session = await self._get_session()
        url = self._target_url(request)
        body = await request.read() if request.body_exists else None
        response: web.StreamResponse | None = None

        try:
            async with session.request(
                request.method,
                url,
                headers=_forward_headers(request),
                data=body,
                allow_redirects=False,
            ) as upstream:
                response = web.StreamResponse(status=upstream.status, reason=upstream.reason)
                for key, value in upstream.headers.items():
                    if key.lower() not in _RESPONSE_SKIP_HEADERS:
                        response.headers.add(key, value)
                _apply_cors(request, response)

                await response.prepare(request)
                async for chunk in upstream.content.iter_chunked(STREAM_CHUNK_SIZE):
                    await response.write(chunk)
                await response.write_eof()
                return response
        except (aiohttp.ClientError, TimeoutError) as e:
            if response is not None and response.prepared:
                # Headers are already out; the client can only see a cut-off body.
                logger.error("Tunnel engine stream interrupted", path=request.path, error=str(e))
                response.force_close()
                if request.transport is not None:
                    request.transport.close()
                return response
            logger.error("Tunnel engine request failed", path=request.path, error=str(e))
            return web.Response(text="Tunnel engine unavailable", status=502, content_type="text/plain")

    async def route_upgrade(self, request: web.BaseRequest) -> web.StreamResponse:
        session = await self._get_session()
        url = self._target_url(request, websocket=True)

        protocols: list[str] = []
        if "Sec-WebSocket-Protocol" in request.headers:
            protocols = [p.strip() for p in request.headers["Sec-WebSocket-Protocol"].split(",")]

        try:
            upstream = await session.ws_connect(
                url,
                headers=_forward_headers(request, skip=_WS_HANDSHAKE_HEADERS),
                protocols=protocols,
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error("Tunnel engine upgrade failed", path=request.path, error=str(e))
            return web.Response(text="Tunnel engine unavailable", status=502, content_type="text/plain")

        ws = web.WebSocketResponse(protocols=protocols)
        try:
            await ws.prepare(request)
            logger.debug("WS bridge open", path=request.path)

            client_to_engine = asyncio.create_task(self._pump(ws, upstream))
            engine_to_client = asyncio.create_task(self._pump(upstream, ws))
            done, pending = await asyncio.wait(
                {client_to_engine, engine_to_client},
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        finally:
            if not upstream.closed:
                await upstream.close()
            if not ws.closed:
                await ws.close()
            logger.debug("WS bridge closed", path=request.path)

        return ws

    @staticmethod
    async def _pump(
        source: web.WebSocketResponse | aiohttp.ClientWebSocketResponse,
        sink: web.WebSocketResponse | aiohttp.ClientWebSocketResponse,
    ) -> None:
        async for msg in source:
            if msg.type == WSMsgType.TEXT:
                await sink.send_str(msg.data)
            elif msg.type == WSMsgType.BINARY:
                await sink.send_bytes(msg.data)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("WS bridge error", error=str(source.exception()))
                break
