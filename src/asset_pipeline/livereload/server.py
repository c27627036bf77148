"""Development server: static files from the output root plus live reload.

HTML pages are served with a small client script injected before
``</body>``. The script keeps a WebSocket open to ``/__livereload``; a
``css`` event re-fetches stylesheets in place, a ``reload`` event reloads
the page. Events come from watchdog observers on the compiled-style and
rendered-page output directories (and, with ``--watch``, straight from the
style task's ``reload`` step).
"""

from __future__ import annotations

import asyncio
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.responses import FileResponse, HTMLResponse
from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import BuildSettings
from ..constants import LIVERELOAD_PATH
from .hub import LiveReloadHub

CLIENT_SCRIPT = """<script>
(function () {
  var proto = location.protocol === "https:" ? "wss://" : "ws://";
  function connect() {
    var ws = new WebSocket(proto + location.host + "%(path)s");
    ws.onmessage = function (msg) {
      var event = JSON.parse(msg.data);
      if (event.type === "css") {
        var links = document.querySelectorAll('link[rel="stylesheet"]');
        for (var i = 0; i < links.length; i++) {
          var href = links[i].href.replace(/[?&]_lr=\\d+/, "");
          links[i].href = href + (href.indexOf("?") < 0 ? "?" : "&") + "_lr=" + Date.now();
        }
      } else if (event.type === "reload") {
        location.reload();
      }
    };
    ws.onclose = function () { setTimeout(connect, 1000); };
  }
  connect();
})();
</script>
""" % {"path": LIVERELOAD_PATH}

_BODY_CLOSE_RE = re.compile(r"</body\s*>", re.I)


def inject_client(html: str) -> str:
    """Insert the live-reload client before the last ``</body>``."""
    matches = list(_BODY_CLOSE_RE.finditer(html))
    if not matches:
        return html + CLIENT_SCRIPT
    pos = matches[-1].start()
    return html[:pos] + CLIENT_SCRIPT + html[pos:]


# ---------------------------------------------------------------------------
# Output watchers
# ---------------------------------------------------------------------------

class _OutputHandler(FileSystemEventHandler):
    def __init__(self, hub: LiveReloadHub, root: Path, suffix: str, kind: str) -> None:
        super().__init__()
        self.hub = hub
        self.root = root
        self.suffix = suffix
        self.kind = kind

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("created", "modified", "moved"):
            return
        raw = event.dest_path if event.event_type == "moved" else event.src_path
        path = Path(os.fsdecode(raw))
        if path.suffix != self.suffix:
            return
        try:
            rel = path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            rel = path.name
        logger.debug("Output changed: {} -> {}", rel, self.kind)
        self.hub.publish_sync({"type": self.kind, "path": rel})


class OutputWatcher:
    """Watch the style output (``*.css``) and page output (``*.html``) dirs."""

    def __init__(self, settings: BuildSettings, hub: LiveReloadHub) -> None:
        self.settings = settings
        self.hub = hub
        self._observer: Optional[Observer] = None

    def subscriptions(self) -> list[tuple[Path, str, str]]:
        paths = self.settings.paths
        return [
            (self.settings.resolve(paths.styles.dest), ".css", "css"),
            (self.settings.resolve(paths.templates.dest), ".html", "reload"),
        ]

    def start(self) -> None:
        root = self.settings.resolve(self.settings.server.root)
        observer = Observer()
        for directory, suffix, kind in self.subscriptions():
            directory.mkdir(parents=True, exist_ok=True)
            observer.schedule(_OutputHandler(self.hub, root, suffix, kind), str(directory), recursive=True)
            logger.debug("Watching {} for {} changes", directory, suffix)
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(
    settings: BuildSettings,
    hub: Optional[LiveReloadHub] = None,
    watch_outputs: bool = True,
) -> FastAPI:
    """Create the development server app.

    Args:
        settings: Build settings; ``server.root`` is the directory served.
        hub: Live-reload hub shared with build tasks (a new one by default).
        watch_outputs: Start the output directory watchers with the app.

    Returns:
        Configured FastAPI app.
    """
    hub = hub or LiveReloadHub()
    root = settings.resolve(settings.server.root)
    watcher = OutputWatcher(settings, hub) if watch_outputs else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub.attach_loop(asyncio.get_running_loop())
        if watcher is not None:
            watcher.start()
        logger.info("Serving {} (live reload at {})", root, LIVERELOAD_PATH)
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()

    app = FastAPI(title="Asset Pipeline Dev Server", lifespan=lifespan)
    app.state.hub = hub
    app.state.root = root

    @app.websocket(LIVERELOAD_PATH)
    async def livereload(websocket: WebSocket):
        await hub.handle_connection(websocket)

    @app.get("/{path:path}")
    async def serve(path: str):
        """Serve a file below the output root; pages get the client script."""
        target = (root / path).resolve()
        try:
            target.relative_to(root)
        except ValueError:
            raise HTTPException(status_code=404, detail="Not found")
        if target.is_dir():
            target = target / "index.html"
        if not target.is_file():
            raise HTTPException(status_code=404, detail="Not found")

        if target.suffix in (".html", ".htm"):
            html = target.read_text(encoding="utf-8", errors="replace")
            return HTMLResponse(inject_client(html), headers={"Cache-Control": "no-cache"})
        return FileResponse(target, headers={"Cache-Control": "no-cache"})

    return app
