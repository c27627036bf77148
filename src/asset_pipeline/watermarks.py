"""Per-task "last successful run" watermarks for incremental tasks.

A watermark is the start time (epoch seconds) of the last run of a task that
finished without errors. Incremental tasks only read sources modified after
it. The store lives in memory and, when given a path, is mirrored to JSON so
incremental skips survive between invocations.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .io_utils import _atomic_write_json, _load_data
from .utils import _iso_from_epoch

_VERSION = 1


class WatermarkStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._marks: dict[str, float] = {}
        if path is not None:
            self._load(path)

    def _load(self, path: Path) -> None:
        data = _load_data(path, {})
        tasks = data.get("tasks") if isinstance(data.get("tasks"), dict) else {}
        for task, entry in tasks.items():
            if isinstance(entry, dict) and isinstance(entry.get("started_at"), (int, float)):
                self._marks[task] = float(entry["started_at"])
        if tasks and not self._marks:
            logger.warning("Ignoring unreadable watermarks in {}", path)

    def get(self, task: str) -> Optional[float]:
        with self._lock:
            return self._marks.get(task)

    def record(self, task: str, started_at: float) -> None:
        with self._lock:
            self._marks[task] = started_at
            self._save()

    def clear(self, task: Optional[str] = None) -> None:
        with self._lock:
            if task is None:
                self._marks.clear()
            else:
                self._marks.pop(task, None)
            self._save()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": _VERSION,
            "tasks": {
                task: {"started_at": ts, "started_at_iso": _iso_from_epoch(ts)}
                for task, ts in sorted(self._marks.items())
            },
        }

    def _save(self) -> None:
        if self.path is None:
            return
        _atomic_write_json(self.path, self.to_dict())
