"""Live-reload development server."""

from .hub import LiveReloadHub
from .server import OutputWatcher, create_app, inject_client

__all__ = ["LiveReloadHub", "OutputWatcher", "create_app", "inject_client"]
