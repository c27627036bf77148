"""Provide utility helpers for timestamps and path display."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def _iso_from_epoch(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def _display_path(path: Path, root: Path) -> str:
    """Render *path* relative to *root* when possible, posix-style."""
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()
