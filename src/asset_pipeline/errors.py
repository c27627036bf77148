"""Exception types raised by the asset pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class AssetPipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(AssetPipelineError):
    """Raised when the build configuration cannot be loaded or validated."""


class SourceNotFoundError(AssetPipelineError):
    """Raised when the base directory of a source glob does not exist."""

    def __init__(self, pattern: str, base: Path):
        self.pattern = pattern
        self.base = base
        super().__init__(f"Source directory {base} for glob '{pattern}' does not exist")


class CompileError(AssetPipelineError):
    """A source file failed to compile (styles, templates)."""

    def __init__(self, path: Path, message: str, line: Optional[int] = None):
        self.path = path
        self.line = line
        self.message = message
        where = f"{path}:{line}" if line else str(path)
        super().__init__(f"{where}: {message}")


class StepError(AssetPipelineError):
    """A pipeline step was misconfigured or could not run."""
