"""Base class and registry for pluggable pipeline steps.

Each step is a class that knows how to apply one transform to the batch of
assets flowing through a task. Steps receive a context object with the
assets, the build settings, and any step-specific configuration from the
pipeline template.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ...config import BuildSettings
from ...sourcemap import SourceMap


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

@dataclass
class Asset:
    """One in-memory file moving through a pipeline.

    ``relpath`` is the output path relative to whichever destination the
    ``dest`` step writes to; it starts as the source path relative to its
    glob base and changes with ``rename`` and compilers.
    """
    source: Path
    base: Path
    relpath: str
    contents: bytes
    sourcemap: Optional[SourceMap] = None
    sourcemaps_enabled: bool = False
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.contents.decode("utf-8")

    @text.setter
    def text(self, value: str) -> None:
        self.contents = value.encode("utf-8")

    @property
    def name(self) -> str:
        return self.relpath.rsplit("/", 1)[-1]

    @property
    def dirname(self) -> str:
        return self.relpath.rsplit("/", 1)[0] if "/" in self.relpath else ""

    def with_suffix(self, suffix: str) -> None:
        stem = self.name.rsplit(".", 1)[0] if "." in self.name else self.name
        self.relpath = f"{self.dirname}/{stem}{suffix}" if self.dirname else f"{stem}{suffix}"


@dataclass
class FileError:
    """A failure confined to one source file."""
    path: Path
    step: str
    error: str
    error_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "step": self.step,
            "error": self.error,
            "error_type": self.error_type,
        }


# ---------------------------------------------------------------------------
# Step result
# ---------------------------------------------------------------------------

class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """Outcome of executing a single pipeline step."""
    outcome: StepOutcome
    message: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None
    artifacts: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome == StepOutcome.SUCCESS

    @property
    def failed(self) -> bool:
        return self.outcome == StepOutcome.FAILED


# ---------------------------------------------------------------------------
# Step context
# ---------------------------------------------------------------------------

@dataclass
class StepContext:
    """Everything a step needs to execute."""
    task: str
    settings: BuildSettings
    assets: list[Asset] = field(default_factory=list)
    step_config: dict[str, Any] = field(default_factory=dict)

    # Watermark for incremental tasks (epoch seconds), None = read everything
    since: Optional[float] = None

    # Optional collaborators attached by the runner
    live_reload: Optional[Any] = None   # LiveReloadHub
    notifier: Optional[Any] = None      # NotificationManager

    # Populated by the pipeline engine during execution
    previous_results: dict[str, StepResult] = field(default_factory=dict)
    written: list[Path] = field(default_factory=list)
    file_errors: list[FileError] = field(default_factory=list)

    @property
    def project_dir(self) -> Path:
        return self.settings.project_dir

    def record_file_error(self, path: Path, step: str, exc: BaseException) -> None:
        self.file_errors.append(FileError(path=path, step=step, error=str(exc), error_type=type(exc).__name__))


# ---------------------------------------------------------------------------
# Base step class
# ---------------------------------------------------------------------------

class PipelineStep(ABC):
    """Abstract base for pipeline step implementations."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique step identifier (matches StepDef.name in templates)."""
        ...

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ").title()

    @abstractmethod
    async def execute(self, ctx: StepContext) -> StepResult:
        """Run the step. Returns a StepResult."""
        ...

    def can_skip(self, ctx: StepContext) -> bool:
        """Steps that transform assets have nothing to do on an empty batch."""
        return not ctx.assets


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class StepRegistry:
    """Global registry of step implementations.

    Steps register themselves on import via ``register()``.  The pipeline engine
    looks up steps by name when executing a template.
    """

    def __init__(self) -> None:
        self._steps: dict[str, type[PipelineStep]] = {}

    def register(self, step_cls: type[PipelineStep]) -> type[PipelineStep]:
        """Register a step class. Can be used as a decorator."""
        instance = step_cls()
        self._steps[instance.name] = step_cls
        return step_cls

    def get(self, name: str) -> PipelineStep:
        if name not in self._steps:
            available = ", ".join(sorted(self._steps.keys()))
            raise KeyError(f"Unknown step '{name}' (registered: {available})")
        return self._steps[name]()

    def has(self, name: str) -> bool:
        return name in self._steps

    def list_steps(self) -> list[str]:
        return sorted(self._steps.keys())


# Singleton registry; steps register here on import
step_registry = StepRegistry()
