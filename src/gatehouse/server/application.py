"""Fallback application layer: the pre-built static site.

Serves files from ``static_dir`` directly, then a handful of page aliases,
and the site's own 404 page for anything else.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import structlog
from aiohttp import web

from gatehouse.observability.metrics import generate_metrics, get_content_type

logger = structlog.get_logger()

HEALTH_PATH = "/_gatehouse/health"
METRICS_PATH = "/_gatehouse/metrics"

PAGE_ROUTES: dict[str, str] = {
    "/b": "apps.html",
    "/a": "games.html",
    "/play.html": "games.html",
    "/c": "settings.html",
    "/d": "tabs.html",
    "/": "index.html",
}

NOT_FOUND_PAGE = "404.html"


class SiteApplication:
    """Static site handler used for every request nothing else claimed."""

    def __init__(
        self,
        static_dir: str | Path,
        page_routes: Mapping[str, str] | None = None,
        status_provider: Callable[[], dict[str, Any]] | None = None,
        metrics_enabled: bool = False,
    ) -> None:
        self.static_dir = Path(static_dir).resolve()
        self.page_routes = dict(PAGE_ROUTES if page_routes is None else page_routes)
        self.status_provider = status_provider
        self.metrics_enabled = metrics_enabled

    async def handle(self, request: web.BaseRequest) -> web.StreamResponse:
        if request.path == HEALTH_PATH:
            status = self.status_provider() if self.status_provider else {}
            return web.json_response({"status": "healthy", **status})

        if self.metrics_enabled and request.path == METRICS_PATH:
            return web.Response(body=generate_metrics(), headers={"Content-Type": get_content_type()})

        try:
            return self._serve(request)
        except Exception as e:
            logger.error("Application error", path=request.path, error=str(e))
            return self._error_page(status=500)

    def _serve(self, request: web.BaseRequest) -> web.StreamResponse:
        if request.method not in ("GET", "HEAD"):
            return self._error_page(status=404)

        static_file = self._resolve_static(request.path)
        if static_file is not None:
            return web.FileResponse(static_file)

        page = self.page_routes.get(request.path)
        if page is not None:
            page_file = self.static_dir / page
            if page_file.is_file():
                return web.FileResponse(page_file)

        return self._error_page(status=404)

    def _resolve_static(self, path: str) -> Path | None:
        """File under ``static_dir`` for a request path, refusing traversal."""
        candidate = (self.static_dir / path.lstrip("/")).resolve()
        if not candidate.is_relative_to(self.static_dir):
            return None
        if candidate.is_dir():
            candidate = candidate / "index.html"
        return candidate if candidate.is_file() else None

    def _error_page(self, status: int) -> web.StreamResponse:
        page = self.static_dir / NOT_FOUND_PAGE
        if page.is_file():
            return web.FileResponse(page, status=status)
        text = "Not Found" if status == 404 else "Internal Server Error"
        return web.Response(text=text, status=status, content_type="text/plain")
