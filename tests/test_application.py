"""Tests for the static site application layer."""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from gatehouse.server.application import HEALTH_PATH, METRICS_PATH, SiteApplication


@pytest.fixture
def static_dir(tmp_path):
    for name, body in {
        "index.html": "home",
        "apps.html": "apps",
        "games.html": "games",
        "settings.html": "settings",
        "tabs.html": "tabs",
        "404.html": "not here",
    }.items():
        (tmp_path / name).write_text(body, encoding="utf-8")
    (tmp_path / "css").mkdir()
    (tmp_path / "css" / "site.css").write_text("body{}", encoding="utf-8")
    return tmp_path


def client_for(site: SiteApplication) -> TestClient:
    app = web.Application()
    app.router.add_route("*", "/{path:.*}", site.handle)
    return TestClient(TestServer(app))


class TestPages:
    """Tests for page aliases and static files."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path,body",
        [
            ("/", "home"),
            ("/b", "apps"),
            ("/a", "games"),
            ("/play.html", "games"),
            ("/c", "settings"),
            ("/d", "tabs"),
        ],
    )
    async def test_page_routes(self, static_dir, path, body):
        async with client_for(SiteApplication(static_dir)) as client:
            resp = await client.get(path)
            assert resp.status == 200
            assert await resp.text() == body

    @pytest.mark.asyncio
    async def test_static_file(self, static_dir):
        async with client_for(SiteApplication(static_dir)) as client:
            resp = await client.get("/css/site.css")
            assert resp.status == 200
            assert await resp.text() == "body{}"

    @pytest.mark.asyncio
    async def test_unknown_path_gets_404_page(self, static_dir):
        async with client_for(SiteApplication(static_dir)) as client:
            resp = await client.get("/nowhere")
            assert resp.status == 404
            assert await resp.text() == "not here"

    @pytest.mark.asyncio
    async def test_post_gets_404(self, static_dir):
        async with client_for(SiteApplication(static_dir)) as client:
            resp = await client.post("/b")
            assert resp.status == 404

    def test_traversal_refused(self, static_dir, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside") / "secret.txt"
        outside.write_text("secret", encoding="utf-8")
        site = SiteApplication(static_dir)

        assert site._resolve_static(f"/../{outside.parent.name}/secret.txt") is None

    @pytest.mark.asyncio
    async def test_missing_404_page(self, tmp_path):
        async with client_for(SiteApplication(tmp_path)) as client:
            resp = await client.get("/nowhere")
            assert resp.status == 404
            assert await resp.text() == "Not Found"

    @pytest.mark.asyncio
    async def test_handler_error_renders_500(self, static_dir, monkeypatch):
        site = SiteApplication(static_dir)

        def boom(request):
            raise RuntimeError("broken")

        monkeypatch.setattr(site, "_serve", boom)
        async with client_for(site) as client:
            resp = await client.get("/b")
            assert resp.status == 500
            assert await resp.text() == "not here"


class TestOperationalEndpoints:
    """Tests for health and metrics."""

    @pytest.mark.asyncio
    async def test_health(self, static_dir):
        site = SiteApplication(static_dir, status_provider=lambda: {"blocklist_entries": 3})
        async with client_for(site) as client:
            resp = await client.get(HEALTH_PATH)
            assert await resp.json() == {"status": "healthy", "blocklist_entries": 3}

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, static_dir):
        async with client_for(SiteApplication(static_dir)) as client:
            resp = await client.get(METRICS_PATH)
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_metrics_enabled(self, static_dir):
        async with client_for(SiteApplication(static_dir, metrics_enabled=True)) as client:
            resp = await client.get(METRICS_PATH)
            assert resp.status == 200
            assert "gatehouse_requests_total" in await resp.text()
