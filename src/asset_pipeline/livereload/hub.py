from __future__ import annotations

import asyncio
import json
import threading
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger

RELOAD_TYPES = {"css", "reload"}


class LiveReloadHub:
    """Fan out change events to every connected browser.

    Events are ``{"type": "css" | "reload", "path": ...}``. Build steps and
    file watchers run on other threads and call :meth:`publish_sync`, which
    schedules the broadcast on the server's event loop.
    """

    def __init__(self) -> None:
        self._clients: dict[int, WebSocket] = {}
        self._counter = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop

    async def handle_connection(self, websocket: WebSocket) -> None:
        # Remember the server loop so background threads can publish safely.
        self.attach_loop(asyncio.get_running_loop())
        await websocket.accept()
        cid = id(websocket)
        self._clients[cid] = websocket
        logger.debug("Live-reload client connected ({} total)", len(self._clients))
        try:
            await websocket.send_text(json.dumps({"type": "hello"}))
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
        except WebSocketDisconnect:
            pass
        finally:
            self._clients.pop(cid, None)
            logger.debug("Live-reload client disconnected ({} left)", len(self._clients))

    async def publish(self, event: dict[str, Any]) -> None:
        if event.get("type") not in RELOAD_TYPES:
            raise ValueError(f"Unknown live-reload event type {event.get('type')!r}")
        self._counter += 1
        payload = json.dumps({**event, "seq": self._counter})
        stale: list[int] = []
        for cid, ws in list(self._clients.items()):
            try:
                await ws.send_text(payload)
            except (WebSocketDisconnect, RuntimeError):
                stale.append(cid)
        for cid in stale:
            self._clients.pop(cid, None)

    def publish_sync(self, event: dict[str, Any]) -> None:
        with self._lock:
            loop = self._loop
        if loop and loop.is_running():
            asyncio.run_coroutine_threadsafe(self.publish(event), loop)
            return
        # no server loop yet, so nobody is connected
        logger.debug("No live-reload loop attached, dropping {}", event)
