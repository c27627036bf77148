"""Pipeline execution engine: runs a task's assets through its template steps.

The engine resolves each step of a template from the step registry and drives
it to completion. The first failing step stops the run; there are no retries.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

from .registry import PipelineRegistry, PipelineTemplate
from .steps.base import (
    FileError,
    StepContext,
    StepOutcome,
    StepResult,
    StepRegistry,
    step_registry,
)

# Ensure standard steps are registered on import
from .steps import files as _files  # noqa: F401
from .steps import images as _images  # noqa: F401
from .steps import scripts as _scripts  # noqa: F401
from .steps import sourcemaps as _sourcemaps  # noqa: F401
from .steps import styles as _styles  # noqa: F401
from .steps import templates as _templates  # noqa: F401


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------

@dataclass
class StepState:
    """Tracks execution state for one step within a running pipeline."""
    name: str
    display_name: str
    status: str = "pending"    # pending | running | completed | failed | skipped
    result: Optional[StepResult] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at or time.time()
        return end - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "status": self.status,
            "duration_seconds": round(self.duration_seconds, 3),
            "result_message": self.result.message if self.result else None,
            "error": self.result.error if self.result else None,
        }


@dataclass
class TaskRun:
    """Full execution state for one invocation of a task."""
    task: str
    template_id: str
    steps: list[StepState] = field(default_factory=list)
    current_step_index: int = 0
    status: str = "pending"    # pending | running | completed | failed
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_step: Optional[str] = None
    file_errors: list[FileError] = field(default_factory=list)
    written: list[str] = field(default_factory=list)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "completed" and not self.file_errors

    @property
    def progress(self) -> float:
        if not self.steps:
            return 0.0
        done = sum(1 for s in self.steps if s.status in ("completed", "skipped"))
        return done / len(self.steps)

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at or time.time()
        return end - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "template_id": self.template_id,
            "status": self.status,
            "progress": round(self.progress, 3),
            "error": self.error,
            "error_type": self.error_type,
            "failed_step": self.failed_step,
            "file_errors": [e.to_dict() for e in self.file_errors],
            "written": list(self.written),
            "duration_seconds": round(self.duration_seconds, 3),
            "steps": [s.to_dict() for s in self.steps],
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class PipelineEngine:
    """Executes pipeline templates over an asset batch.

    The engine:
    1. Creates run state for each step of the template
    2. Iterates through steps in order, letting steps self-skip on empty batches
    3. Invokes each step implementation from the step registry
    4. Stops at the first failure and records it on the run

    The ``execute()`` method is async so steps can do IO-bound work.
    """

    def __init__(
        self,
        pipeline_registry: Optional[PipelineRegistry] = None,
        steps: Optional[StepRegistry] = None,
        on_event: Optional[Callable[[str, dict[str, Any]], None]] = None,
    ) -> None:
        self.pipelines = pipeline_registry or PipelineRegistry()
        self.steps = steps or step_registry
        self._on_event = on_event  # callback(event_type: str, data: dict)

    def create_run(self, task: str, template: PipelineTemplate) -> TaskRun:
        step_states = [
            StepState(name=sd.name, display_name=sd.display_name or sd.name.replace("_", " ").title())
            for sd in template.steps
        ]
        return TaskRun(task=task, template_id=template.id, steps=step_states)

    async def execute(self, run: TaskRun, ctx: StepContext) -> TaskRun:
        """Run all steps of the template from the current index onward.

        Returns the updated run state.
        """
        run.status = "running"
        run.started_at = run.started_at or time.time()
        self._notify("task_started", {"task": run.task, "template_id": run.template_id})

        template = self.pipelines.get(run.template_id)

        while run.current_step_index < len(run.steps):
            index = run.current_step_index
            step_state = run.steps[index]
            step_def = template.steps[index]

            if not self.steps.has(step_state.name):
                self._fail(run, step_state, StepResult(
                    outcome=StepOutcome.FAILED,
                    error=f"Step '{step_state.name}' is not registered",
                    error_type="KeyError",
                ))
                break

            step_impl = self.steps.get(step_state.name)
            ctx.step_config = dict(step_def.config)

            if step_impl.can_skip(ctx):
                step_state.status = "skipped"
                step_state.result = StepResult(outcome=StepOutcome.SKIPPED, message="Nothing to process")
                run.current_step_index += 1
                continue

            step_state.status = "running"
            step_state.started_at = time.time()
            logger.debug("[{}] step {}:{} starting ({} assets)", run.task, index, step_state.name, len(ctx.assets))

            try:
                result = await step_impl.execute(ctx)
            except Exception as exc:
                logger.debug("[{}] step {} raised {}: {}", run.task, step_state.name, type(exc).__name__, exc)
                result = StepResult(
                    outcome=StepOutcome.FAILED,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

            step_state.finished_at = time.time()
            result.duration_seconds = step_state.duration_seconds
            step_state.result = result

            # Store result for downstream steps
            ctx.previous_results[f"{index}:{step_state.name}"] = result

            if result.outcome == StepOutcome.SUCCESS:
                step_state.status = "completed"
                run.current_step_index += 1
            elif result.outcome == StepOutcome.SKIPPED:
                step_state.status = "skipped"
                run.current_step_index += 1
            else:
                self._fail(run, step_state, result)
                break

        run.file_errors = list(ctx.file_errors)
        run.written = [str(p) for p in ctx.written]

        if run.current_step_index >= len(run.steps):
            run.status = "completed"
            self._notify("task_completed", {
                "task": run.task,
                "template_id": run.template_id,
                "written": len(run.written),
                "file_errors": len(run.file_errors),
            })

        run.finished_at = time.time()
        return run

    def _fail(self, run: TaskRun, step_state: StepState, result: StepResult) -> None:
        step_state.status = "failed"
        step_state.result = result
        run.status = "failed"
        run.failed_step = step_state.name
        run.error = result.error or result.message or "Step failed"
        run.error_type = result.error_type
        self._notify("task_failed", {
            "task": run.task,
            "step": step_state.name,
            "error": run.error,
        })

    def _notify(self, event_type: str, data: dict[str, Any]) -> None:
        """Fire an event notification if a callback is registered."""
        if self._on_event:
            try:
                self._on_event(event_type, data)
            except Exception:
                logger.exception("Error in pipeline event callback")
