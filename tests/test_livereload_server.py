"""Tests for the development server and live-reload hub."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from watchdog.events import FileModifiedEvent, FileMovedEvent

from asset_pipeline.config import BuildSettings
from asset_pipeline.constants import LIVERELOAD_PATH
from asset_pipeline.livereload import LiveReloadHub, OutputWatcher, create_app, inject_client
from asset_pipeline.livereload.server import CLIENT_SCRIPT, _OutputHandler


@pytest.fixture
def settings(tmp_path: Path) -> BuildSettings:
    dist = tmp_path / "dist"
    (dist / "assets" / "css").mkdir(parents=True)
    (dist / "blog").mkdir()
    (dist / "index.html").write_text("<html><body><h1>Home</h1></body></html>\n")
    (dist / "blog" / "index.html").write_text("<p>Blog</p>\n")
    (dist / "assets" / "css" / "main.css").write_text("a { color: red; }\n")
    (tmp_path / "secret.txt").write_text("nope")
    return BuildSettings(project_dir=tmp_path)


@pytest.fixture
def hub() -> LiveReloadHub:
    return LiveReloadHub()


@pytest.fixture
def client(settings: BuildSettings, hub: LiveReloadHub):
    app = create_app(settings, hub=hub, watch_outputs=False)
    with TestClient(app) as test_client:
        yield test_client


class TestInjectClient:
    def test_before_closing_body(self):
        html = inject_client("<html><body><p>x</p></body></html>")
        assert html.index(CLIENT_SCRIPT) < html.index("</body>")
        assert html.endswith("</body></html>")

    def test_last_body_tag_wins(self):
        html = inject_client("<body><pre>&lt;/body&gt;</pre></BODY>")
        assert html.endswith(CLIENT_SCRIPT + "</BODY>")

    def test_appended_without_body(self):
        assert inject_client("<p>fragment</p>") == "<p>fragment</p>" + CLIENT_SCRIPT

    def test_script_connects_to_livereload_path(self):
        assert LIVERELOAD_PATH in CLIENT_SCRIPT


class TestStaticFiles:
    def test_index_page_gets_client(self, client: TestClient):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "<h1>Home</h1>" in resp.text
        assert LIVERELOAD_PATH in resp.text
        assert resp.headers["cache-control"] == "no-cache"

    def test_directory_index(self, client: TestClient):
        resp = client.get("/blog/")
        assert resp.status_code == 200
        assert "<p>Blog</p>" in resp.text

    def test_stylesheet_served_as_is(self, client: TestClient):
        resp = client.get("/assets/css/main.css")
        assert resp.status_code == 200
        assert resp.text == "a { color: red; }\n"
        assert "text/css" in resp.headers["content-type"]

    def test_missing_file(self, client: TestClient):
        assert client.get("/nope.html").status_code == 404

    def test_no_escape_from_root(self, client: TestClient):
        assert client.get("/..%2fsecret.txt").status_code == 404


class TestLiveReloadSocket:
    def test_hello_and_ping(self, client: TestClient, hub: LiveReloadHub):
        with client.websocket_connect(LIVERELOAD_PATH) as ws:
            assert ws.receive_json() == {"type": "hello"}
            assert hub.client_count == 1
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_published_events_reach_clients(self, client: TestClient, hub: LiveReloadHub):
        with client.websocket_connect(LIVERELOAD_PATH) as ws:
            ws.receive_json()
            hub.publish_sync({"type": "css", "path": "assets/css/main.css"})
            event = ws.receive_json()
        assert event == {"type": "css", "path": "assets/css/main.css", "seq": 1}

    def test_unknown_event_type(self, hub: LiveReloadHub):
        with pytest.raises(ValueError, match="Unknown live-reload event type"):
            asyncio.run(hub.publish({"type": "explode"}))

    def test_publish_without_server_is_dropped(self, hub: LiveReloadHub):
        hub.publish_sync({"type": "reload", "path": "index.html"})
        assert hub.client_count == 0


class TestOutputWatching:
    def test_subscriptions(self, settings: BuildSettings, hub: LiveReloadHub):
        subs = OutputWatcher(settings, hub).subscriptions()
        root = settings.project_dir
        assert subs == [
            (root / "dist" / "assets" / "css", ".css", "css"),
            (root / "dist", ".html", "reload"),
        ]

    def test_stylesheet_change_is_published(self, settings: BuildSettings):
        hub = MagicMock()
        root = settings.project_dir / "dist"
        handler = _OutputHandler(hub, root, ".css", "css")
        handler.on_any_event(FileModifiedEvent(str(root / "assets" / "css" / "main.css")))
        hub.publish_sync.assert_called_once_with({"type": "css", "path": "assets/css/main.css"})

    def test_other_suffixes_ignored(self, settings: BuildSettings):
        hub = MagicMock()
        root = settings.project_dir / "dist"
        handler = _OutputHandler(hub, root, ".css", "css")
        handler.on_any_event(FileModifiedEvent(str(root / "assets" / "css" / "main.css.map")))
        hub.publish_sync.assert_not_called()

    def test_moved_page_uses_destination(self, settings: BuildSettings):
        hub = MagicMock()
        root = settings.project_dir / "dist"
        handler = _OutputHandler(hub, root, ".html", "reload")
        handler.on_any_event(FileMovedEvent(str(root / ".index.html.tmp"), str(root / "index.html")))
        hub.publish_sync.assert_called_once_with({"type": "reload", "path": "index.html"})
