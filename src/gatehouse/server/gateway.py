"""Gateway dispatcher: policy checks in front of the engine, asset proxy and site."""

from __future__ import annotations

import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from aiohttp import web

from gatehouse.assets.cache import AssetCache
from gatehouse.core.config import GatewayConfig
from gatehouse.core.exceptions import PolicyDenied, UpstreamUnavailable
from gatehouse.engine.base import NullTunnelEngine, TunnelEngine
from gatehouse.engine.http import HttpTunnelEngine
from gatehouse.observability.metrics import GATEWAY_REQUESTS, POLICY_DENIALS
from gatehouse.routing.classifier import RequestClassifier, Route, is_upgrade_request, raw_request_path
from gatehouse.security.banned import BannedAddressList
from gatehouse.security.basicauth import (
    AUTH_CHALLENGE,
    AUTH_HEADER,
    BasicAuthenticator,
    create_basic_authenticator,
)
from gatehouse.security.blocklist import BlocklistStore
from gatehouse.security.sessions import SessionGuard, client_address
from gatehouse.server.application import SiteApplication

logger = structlog.get_logger()

Handler = Callable[[web.BaseRequest], Awaitable[web.StreamResponse]]

BLOCKED_SITE_MESSAGE = "This site is blocked."
BANNED_MESSAGE = "Access denied."
SESSION_CONFLICT_MESSAGE = "Access denied: Account already in use."
ASSET_ERROR_MESSAGE = "Error fetching the asset"

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_JSON_CONTENT_TYPE = "application/json"


def _deny(error: PolicyDenied) -> web.Response:
    POLICY_DENIALS.labels(reason=error.reason).inc()
    return web.Response(text=error.message, status=403, content_type="text/plain")


class GatewayServer:
    """Composition point for the gateway.

    Every request passes, in order: banned address, early blocklist (url
    parameter or path), session guard (authenticated requests the engine
    does not claim), full blocklist (url + host + referer), classification,
    then dispatch to the tunnel engine, asset cache or application fallback.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        blocklist: BlocklistStore | None = None,
        sessions: SessionGuard | None = None,
        banned: BannedAddressList | None = None,
        assets: AssetCache | None = None,
        engine: TunnelEngine | None = None,
        application: Handler | None = None,
        authenticator: BasicAuthenticator | None = None,
    ) -> None:
        self.config = config
        if blocklist is None:
            blocklist = BlocklistStore(config.blocklist_path, poll_interval=config.blocklist_poll_interval)
        self.blocklist = blocklist
        self.sessions = sessions if sessions is not None else SessionGuard(session_ttl=config.session_ttl)
        self.banned = banned if banned is not None else BannedAddressList(config.banned_addresses)
        if assets is None:
            assets = AssetCache(
                config.asset_mirrors,
                ttl=config.asset_cache_ttl,
                fetch_timeout=config.asset_fetch_timeout,
                forced_binary_extensions=config.forced_binary_extensions,
            )
        self.assets = assets
        if engine is None:
            engine = (
                HttpTunnelEngine(config.engine_url, mount=config.engine_mount)
                if config.engine_url
                else NullTunnelEngine()
            )
        self.engine = engine
        if application is None:
            site = SiteApplication(
                config.static_dir,
                status_provider=self.status,
                metrics_enabled=config.metrics_enabled,
            )
            application = site.handle
        self.application = application
        if authenticator is None and config.auth_enabled:
            authenticator = create_basic_authenticator(config.users)
        self.authenticator = authenticator

        self.classifier = RequestClassifier(self.engine, self.assets.mirrors)
        self._runner: web.AppRunner | None = None

    def status(self) -> dict[str, Any]:
        return {
            "blocklist_entries": len(self.blocklist),
            "banned_addresses": len(self.banned),
            "active_sessions": len(self.sessions),
            "asset_cache": self.assets.stats(),
        }

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{path:.*}", self.handle_request)
        return app

    async def start(self) -> None:
        """Start watching the blocklist, open the engine and listen."""
        await self.blocklist.start()
        await self.engine.start()

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info(
            "Gateway started",
            host=self.config.host,
            port=self.config.port,
            blocklist_entries=len(self.blocklist),
            mirrors=self.assets.mirrors.prefixes,
            auth=self.authenticator is not None,
        )

    async def stop(self) -> None:
        logger.info("Stopping gateway...")
        await self.blocklist.stop()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        await self.engine.close()
        await self.assets.close()
        logger.info("Gateway stopped")

    async def handle_request(self, request: web.BaseRequest) -> web.StreamResponse:
        address = client_address(request.headers, request.remote)

        try:
            self._check_banned(address)
            self._check_blocklist_early(await self._early_target(request))

            identity = None
            if self.authenticator is not None:
                identity = self.authenticator.identify(request.headers.get(AUTH_HEADER))
            if identity is not None and not self.engine.should_route(request):
                self._check_session(identity, address)

            self._check_blocklist_full(request)
        except PolicyDenied as e:
            return _deny(e)

        route = self.classifier.classify(request)
        GATEWAY_REQUESTS.labels(route=route.value).inc()

        if route is Route.TUNNEL:
            if is_upgrade_request(request):
                return await self.engine.route_upgrade(request)
            return await self.engine.route_request(request)

        if route is Route.DROP:
            return self._drop_connection(request)

        if self.authenticator is not None and identity is None:
            return web.Response(
                text="Unauthorized",
                status=401,
                content_type="text/plain",
                headers={AUTH_CHALLENGE: self.authenticator.challenge},
            )

        if route is Route.ASSET_PROXY:
            response = await self._serve_asset(request)
            if response is not None:
                return response

        return await self.application(request)

    def _check_banned(self, address: str) -> None:
        result = self.banned.check(address)
        if result.banned:
            logger.warning("Blocked IP", ip=address, rule=result.matched_rule)
            raise PolicyDenied(BANNED_MESSAGE, reason="banned_address")

    async def _early_target(self, request: web.BaseRequest) -> str:
        """The ``url`` query or body parameter, else the undecoded path and query."""
        target = request.query.get("url")
        if target:
            return target

        if request.body_exists and request.content_type in (_FORM_CONTENT_TYPE, _JSON_CONTENT_TYPE):
            target = await self._body_url(request)
            if target:
                return target

        return request.raw_path

    @staticmethod
    async def _body_url(request: web.BaseRequest) -> str | None:
        if request.content_type == _FORM_CONTENT_TYPE:
            form = await request.post()
            value = form.get("url")
            return value if isinstance(value, str) else None

        with contextlib.suppress(ValueError):
            data = await request.json()
            if isinstance(data, dict) and isinstance(data.get("url"), str):
                return data["url"]
        return None

    def _check_blocklist_early(self, target: str) -> None:
        entry = self.blocklist.match(target)
        if entry is not None:
            logger.warning("Blocked attempt", target=target.lower(), entry=entry)
            raise PolicyDenied(BLOCKED_SITE_MESSAGE, reason="blocklist")

    def _check_session(self, identity: str, address: str) -> None:
        decision = self.sessions.authorize(identity, address)
        if not decision.allowed:
            logger.warning(
                "Account already logged in elsewhere",
                user=identity,
                bound_ip=decision.bound_address,
                blocked_ip=address,
            )
            raise PolicyDenied(SESSION_CONFLICT_MESSAGE, reason="session_conflict")

    def _check_blocklist_full(self, request: web.BaseRequest) -> None:
        host = request.headers.get("Host", "").lower()
        referer = request.headers.get("Referer", "").lower()
        full_target = f"{request.raw_path} {host} {referer}"
        entry = self.blocklist.match(full_target)
        if entry is not None:
            logger.warning("Blocked attempt", target=full_target, entry=entry)
            raise PolicyDenied(BLOCKED_SITE_MESSAGE, reason="blocklist")

    def _drop_connection(self, request: web.BaseRequest) -> web.StreamResponse:
        """Terminate an upgrade nobody claimed without answering it."""
        logger.info("Unclaimed upgrade dropped", path=request.path, upgrade=request.headers.get("Upgrade"))
        transport = request.transport
        if transport is not None:
            transport.close()
        response = web.Response(status=400)
        response.force_close()
        return response

    async def _serve_asset(self, request: web.BaseRequest) -> web.Response | None:
        path = raw_request_path(request)
        try:
            asset = await self.assets.fetch_asset(path)
        except UpstreamUnavailable as e:
            logger.error("Error fetching asset", path=path, url=e.url, error=e.message)
            return web.Response(text=ASSET_ERROR_MESSAGE, status=500, content_type="text/html")

        if asset is None:
            return None
        return web.Response(body=asset.payload, status=200, content_type=asset.content_type)


def create_gateway(config: GatewayConfig) -> GatewayServer:
    """Build a gateway from config, loading the blocklist up front.

    Raises:
        MalformedBlocklistFile: If the blocklist file exists but cannot be parsed
    """
    blocklist = BlocklistStore(config.blocklist_path, poll_interval=config.blocklist_poll_interval)
    count = blocklist.load()
    logger.info("Blocklist loaded", path=config.blocklist_path, entries=count)
    return GatewayServer(config, blocklist=blocklist)

