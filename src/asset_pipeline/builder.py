"""Run named build tasks.

The :class:`Builder` owns everything a task invocation needs: the settings,
the pipeline registry (built-ins plus the project's YAML pipelines), the
watermark store and the optional notifier and live-reload hub. Each call to
:meth:`Builder.run` builds a fresh step context, so tasks share nothing but
the filesystem.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Iterable, Optional

from loguru import logger

from .config import BuildSettings
from .notifications import NotificationManager
from .pipelines.engine import PipelineEngine, TaskRun
from .pipelines.registry import PipelineRegistry
from .pipelines.steps.base import StepContext
from .watermarks import WatermarkStore

# Order used by `build`
BUILD_TASKS = ("templates", "styles", "vendor", "scripts", "images", "sprites")


def load_registry(settings: BuildSettings) -> PipelineRegistry:
    """Built-in pipelines plus any defined in the project's pipelines dir."""
    registry = PipelineRegistry()
    registry.load_from_yaml(settings.pipelines_dir)
    return registry


class Builder:
    def __init__(
        self,
        settings: BuildSettings,
        *,
        registry: Optional[PipelineRegistry] = None,
        watermarks: Optional[WatermarkStore] = None,
        notifier: Optional[NotificationManager] = None,
        live_reload: Optional[Any] = None,
        force: bool = False,
    ) -> None:
        self.settings = settings
        self.registry = registry or load_registry(settings)
        self.watermarks = watermarks if watermarks is not None else WatermarkStore(settings.watermarks_path)
        self.notifier = notifier
        self.live_reload = live_reload
        self.force = force
        self.engine = PipelineEngine(self.registry, on_event=self._on_event)

    def _on_event(self, event_type: str, data: dict[str, Any]) -> None:
        logger.debug("Pipeline event {}: {}", event_type, data)

    def tasks(self) -> list[str]:
        return sorted(t.id for t in self.registry.list_templates())

    def run(self, name: str) -> TaskRun:
        """Run one task to completion in a private event loop."""
        return asyncio.run(self.run_async(name))

    async def run_async(self, name: str) -> TaskRun:
        template = self.registry.get(name)
        started_at = time.time()

        since = None
        if template.incremental and not self.force:
            since = self.watermarks.get(template.id)

        ctx = StepContext(
            task=template.id,
            settings=self.settings,
            since=since,
            live_reload=self.live_reload,
            notifier=self.notifier,
        )
        run = self.engine.create_run(template.id, template)
        logger.info("Starting '{}'{}", template.id, " (incremental)" if since is not None else "")
        run = await self.engine.execute(run, ctx)

        if run.status == "failed":
            logger.error("Task '{}' failed at step '{}': {}", run.task, run.failed_step, run.error)
            if self.notifier is not None:
                self.notifier.notify_task_failed(run.task, run.error or "failed")
        elif run.file_errors:
            for err in run.file_errors:
                logger.error("Task '{}': {} failed in {}: {}", run.task, err.path, err.step, err.error)
            if self.notifier is not None:
                self.notifier.notify_task_failed(run.task, f"{len(run.file_errors)} file(s) failed")
        else:
            self.watermarks.record(template.id, started_at)
            logger.info(
                "Finished '{}' in {:.2f}s ({} files written)",
                run.task, run.duration_seconds, len(run.written),
            )
        return run

    def run_many(self, names: Iterable[str], stop_on_failure: bool = True) -> list[TaskRun]:
        """Run tasks one after another; stops after the first failed run."""
        runs: list[TaskRun] = []
        for name in names:
            run = self.run(name)
            runs.append(run)
            if stop_on_failure and run.status == "failed":
                break
        return runs

    def build(self) -> list[TaskRun]:
        return self.run_many(BUILD_TASKS)
