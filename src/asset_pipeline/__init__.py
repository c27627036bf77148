"""Provide the public `asset_pipeline` package exports."""

from __future__ import annotations

from .builder import Builder
from .config import BuildSettings, load_settings

__all__ = ["BuildSettings", "Builder", "load_settings"]
