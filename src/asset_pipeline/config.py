"""Load the build configuration from `.asset_pipeline/config.yaml`.

The result is a frozen :class:`BuildSettings` value. It is built once per
process and handed to every task run; nothing reads paths from module
globals.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    CONFIG_FILE,
    DEFAULT_DEBUG_DIR,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_WATCH_DEBOUNCE_SECONDS,
    PIPELINES_DIR,
    STATE_DIR_NAME,
    WATERMARKS_FILE,
)
from .errors import ConfigError
from .io_utils import _load_data_with_error


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Path registry
# ---------------------------------------------------------------------------

class PathEntry(_Frozen):
    """Source globs and destination directory for one asset category."""

    src: tuple[str, ...]
    dest: str
    aux: tuple[str, ...] = ()  # partials / vendor scripts / vector images

    @field_validator("src", "aux", mode="before")
    @classmethod
    def _coerce_globs(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        return value


class PathRegistry(_Frozen):
    styles: PathEntry = PathEntry(
        src=("src/scss/*.scss",),
        dest="dist/assets/css",
        aux=("src/scss/**/*.scss",),
    )
    scripts: PathEntry = PathEntry(
        src=("src/scripts/*.js",),
        dest="dist/assets/scripts",
        aux=("src/scripts/vendor/*.js",),
    )
    templates: PathEntry = PathEntry(
        src=("src/views/**/*.{html,j2}", "!src/views/_**/*.*"),
        dest="dist",
    )
    images: PathEntry = PathEntry(
        src=("src/images/**/*.{jpg,jpeg,png}",),
        dest="dist/assets/images",
        aux=("src/images/**/*.svg",),
    )

    def get(self, category: str) -> PathEntry:
        entry = getattr(self, category, None)
        if not isinstance(entry, PathEntry):
            raise KeyError(f"Unknown path category '{category}'")
        return entry

    def globs(self, category: str, which: str = "src") -> tuple[str, ...]:
        entry = self.get(category)
        if which == "src":
            return entry.src
        if which == "aux":
            return entry.aux
        raise KeyError(f"Unknown glob set '{which}' (expected 'src' or 'aux')")


# ---------------------------------------------------------------------------
# Plugin options
# ---------------------------------------------------------------------------

class StyleOptions(_Frozen):
    output_style: Literal["nested", "expanded", "compact", "compressed"] = "expanded"
    precision: int = 10
    include_paths: tuple[str, ...] = ()
    browsers: tuple[str, ...] = ("last 10 versions", "IE 8", "IE 9", "IE 10")
    cascade: bool = False
    sort_media_queries: bool = True


class TemplateOptions(_Frozen):
    pretty: bool = True
    indent: str = "\t"
    strict_undefined: bool = False
    context: dict[str, Any] = Field(default_factory=dict)


class ScriptOptions(_Frozen):
    keep_bang_comments: bool = False


class ImageOptions(_Frozen):
    optimization_level: int = Field(5, ge=0, le=7)
    jpeg_quality: int = Field(85, ge=1, le=95)
    progressive: bool = True


class SpriteOptions(_Frozen):
    filename: str = "sprite.svg"
    id_prefix: str = ""


class ServerOptions(_Frozen):
    root: str = "dist"
    host: str = DEFAULT_SERVER_HOST
    port: int = DEFAULT_SERVER_PORT


class WatchOptions(_Frozen):
    debounce_seconds: float = Field(DEFAULT_WATCH_DEBOUNCE_SECONDS, ge=0)


class IncrementalOptions(_Frozen):
    persist: bool = True


class NotificationOptions(_Frozen):
    console: bool = True
    desktop: bool = False


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class BuildSettings(_Frozen):
    """Everything a task needs to know about the project layout and plugins."""

    project_dir: Path
    debug_dir: str = DEFAULT_DEBUG_DIR
    paths: PathRegistry = PathRegistry()
    styles: StyleOptions = StyleOptions()
    templates: TemplateOptions = TemplateOptions()
    scripts: ScriptOptions = ScriptOptions()
    images: ImageOptions = ImageOptions()
    sprites: SpriteOptions = SpriteOptions()
    server: ServerOptions = ServerOptions()
    watch: WatchOptions = WatchOptions()
    incremental: IncrementalOptions = IncrementalOptions()
    notifications: NotificationOptions = NotificationOptions()

    @field_validator("project_dir")
    @classmethod
    def _absolute_project_dir(cls, value: Path) -> Path:
        return value.expanduser().resolve()

    @property
    def state_dir(self) -> Path:
        return self.project_dir / STATE_DIR_NAME

    @property
    def pipelines_dir(self) -> Path:
        return self.state_dir / PIPELINES_DIR

    @property
    def watermarks_path(self) -> Optional[Path]:
        if not self.incremental.persist:
            return None
        return self.state_dir / WATERMARKS_FILE

    def resolve(self, relative: str) -> Path:
        """Resolve a project-relative path from the configuration."""
        return (self.project_dir / relative).resolve()


def load_settings(project_dir: Path, config_path: Optional[Path] = None) -> BuildSettings:
    """Load and validate the build configuration.

    Args:
        project_dir: Project root; all configured paths are relative to it.
        config_path: Explicit config file. Defaults to
            `<project_dir>/.asset_pipeline/config.yaml`, which may be absent.

    Returns:
        The frozen settings value.

    Raises:
        ConfigError: If an explicit file is missing, or any file fails to
            parse or validate.
    """
    project_dir = project_dir.resolve()
    path = config_path or project_dir / STATE_DIR_NAME / CONFIG_FILE
    if config_path is not None and not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    data, err = _load_data_with_error(path, {})
    if err:
        raise ConfigError(err)

    data = dict(data)
    data.pop("project_dir", None)
    try:
        return BuildSettings(project_dir=project_dir, **data)
    except ValidationError as exc:
        raise ConfigError(f"{path.name}: {exc}") from exc
