"""Watch source globs and rerun the task each one feeds.

A static table maps every source glob of the path registry to one task. A
filesystem event is matched against all globs, and each matched task is
triggered once. Every task has its own worker thread, so a slow task (image
optimization, say) never holds up the others; events that arrive while a
task is running coalesce into a single rerun after a short debounce.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import BuildSettings
from .globbing import glob_base, is_negated, matches_any

# (category, glob set, task)
WATCH_TABLE: tuple[tuple[str, str, str], ...] = (
    ("templates", "src", "templates"),
    ("styles", "src", "styles"),
    ("styles", "aux", "styles"),
    ("scripts", "src", "scripts"),
    ("scripts", "aux", "vendor"),
    ("images", "src", "images"),
    ("images", "aux", "sprites"),
)


def dispatch_table(settings: BuildSettings) -> list[tuple[tuple[str, ...], str]]:
    table = []
    for category, which, task in WATCH_TABLE:
        patterns = settings.paths.globs(category, which)
        if patterns:
            table.append((patterns, task))
    return table


def tasks_for_path(table: list[tuple[tuple[str, ...], str]], relative_path: str) -> list[str]:
    """Tasks whose globs match *relative_path*, each listed once."""
    tasks: list[str] = []
    for patterns, task in table:
        if task not in tasks and matches_any(relative_path, patterns):
            tasks.append(task)
    return tasks


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

class TaskWorker(threading.Thread):
    """Runs one task whenever it has been triggered, one run at a time."""

    def __init__(self, task: str, run_task: Callable[[str], Any], debounce: float) -> None:
        super().__init__(name=f"watch-{task}", daemon=True)
        self.task = task
        self.run_task = run_task
        self.debounce = debounce
        self.runs = 0
        self._pending = threading.Event()
        self._stopping = threading.Event()
        self._idle = threading.Event()
        self._idle.set()

    def trigger(self) -> None:
        self._pending.set()

    def stop(self) -> None:
        self._stopping.set()
        self._pending.set()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is pending or in progress."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._pending.is_set() or not self._idle.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def run(self) -> None:
        while not self._stopping.is_set():
            self._pending.wait()
            if self._stopping.is_set():
                break
            self._idle.clear()
            # let a burst of saves settle into one run
            time.sleep(self.debounce)
            self._pending.clear()
            try:
                self.run_task(self.task)
            except Exception:
                logger.exception("Task '{}' crashed; still watching", self.task)
            finally:
                self.runs += 1
                self._idle.set()


class _SourceHandler(FileSystemEventHandler):
    def __init__(self, dispatcher: "WatchDispatcher") -> None:
        super().__init__()
        self.dispatcher = dispatcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("created", "modified", "deleted", "moved"):
            return
        paths = [event.src_path]
        if event.event_type == "moved":
            paths.append(event.dest_path)
        for raw in paths:
            self.dispatcher.dispatch_path(Path(os.fsdecode(raw)))


def _outermost(dirs: set[Path]) -> list[Path]:
    top: list[Path] = []
    for d in sorted(dirs, key=lambda p: len(p.parts)):
        if not any(d == t or t in d.parents for t in top):
            top.append(d)
    return top


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class WatchDispatcher:
    """Route source changes to per-task workers."""

    def __init__(
        self,
        settings: BuildSettings,
        run_task: Callable[[str], Any],
        debounce: Optional[float] = None,
    ) -> None:
        self.settings = settings
        self.table = dispatch_table(settings)
        self.debounce = settings.watch.debounce_seconds if debounce is None else debounce
        self.workers: dict[str, TaskWorker] = {}
        for _, task in self.table:
            if task not in self.workers:
                self.workers[task] = TaskWorker(task, run_task, self.debounce)
        self._observer: Optional[Observer] = None

    def watched_dirs(self) -> list[Path]:
        """Base directories of all globs, without nested duplicates."""
        dirs: set[Path] = set()
        for patterns, _ in self.table:
            for pattern in patterns:
                if is_negated(pattern):
                    continue
                base = glob_base(pattern)
                dirs.add(self.settings.resolve(base) if base else self.settings.project_dir)
        return _outermost(dirs)

    def observed_dirs(self) -> list[Path]:
        """Directories handed to the observer.

        A glob base that does not exist yet is replaced by its nearest
        existing parent, so files created under it later are still seen.
        """
        dirs: set[Path] = set()
        for directory in self.watched_dirs():
            target = directory
            while not target.is_dir() and target != self.settings.project_dir and target.parent != target:
                target = target.parent
            if not target.is_dir():
                logger.warning("Not watching missing directory {}", directory)
                continue
            if target != directory:
                logger.debug("{} does not exist yet; watching {}", directory, target)
            dirs.add(target)
        return _outermost(dirs)

    def dispatch(self, relative_path: str) -> list[str]:
        """Trigger every task fed by *relative_path*; return their names."""
        tasks = tasks_for_path(self.table, relative_path)
        for task in tasks:
            logger.info("{} changed -> {}", relative_path, task)
            self.workers[task].trigger()
        return tasks

    def dispatch_path(self, path: Path) -> list[str]:
        try:
            rel = path.resolve().relative_to(self.settings.project_dir).as_posix()
        except ValueError:
            return []
        return self.dispatch(rel)

    def start(self, observe: bool = True) -> None:
        for worker in self.workers.values():
            worker.start()
        if not observe:
            return
        observer = Observer()
        handler = _SourceHandler(self)
        for directory in self.observed_dirs():
            observer.schedule(handler, str(directory), recursive=True)
            logger.debug("Watching {}", directory)
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        for worker in self.workers.values():
            worker.stop()
        for worker in self.workers.values():
            if worker.is_alive():
                worker.join(timeout=5)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        return all(w.wait_idle(timeout) for w in self.workers.values())

    def run_forever(self) -> None:
        """Watch until interrupted."""
        self.start()
        logger.info("Watching {} tasks; press Ctrl+C to stop", len(self.workers))
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Stopping watch")
        finally:
            self.stop()
