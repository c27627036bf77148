"""Pipeline template registry: defines the step sequence of every build task.

A *PipelineTemplate* describes the ordered steps a task's assets go through,
along with per-step configuration. Templates are immutable; the same step
name may appear several times (``dest`` usually does).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger


# ---------------------------------------------------------------------------
# Step definition within a template
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepDef:
    """One step in a pipeline template."""
    name: str                                      # references StepRegistry key
    display_name: str = ""                         # human-readable label
    config: dict[str, Any] = field(default_factory=dict)  # step-specific config


# ---------------------------------------------------------------------------
# Pipeline Template
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PipelineTemplate:
    """Immutable template defining how one task transforms its assets."""
    id: str
    display_name: str
    description: str
    steps: tuple[StepDef, ...]
    aliases: tuple[str, ...] = ()
    incremental: bool = False            # reads only files changed since the last run
    metadata: dict[str, Any] = field(default_factory=dict)

    def step_names(self) -> list[str]:
        return [s.name for s in self.steps]


# ---------------------------------------------------------------------------
# Built-in templates
# ---------------------------------------------------------------------------

STYLES_PIPELINE = PipelineTemplate(
    id="styles",
    display_name="Styles",
    description="Compile Sass, prefix and pack media queries, write expanded and minified CSS.",
    steps=(
        StepDef(name="src", display_name="Read Sources", config={"category": "styles"}),
        StepDef(name="sourcemaps_init", display_name="Start Source Maps"),
        StepDef(name="sass", display_name="Compile Sass"),
        StepDef(name="sourcemaps_write", display_name="Inline Source Map", config={"include_content": False}),
        StepDef(name="sourcemaps_init", display_name="Load Source Map", config={"load_maps": True}),
        StepDef(name="postcss", display_name="Prefix And Pack", config={"plugins": ["autoprefixer", "mqpacker"]}),
        StepDef(name="dest", display_name="Write Debug Copy", config={"debug": "css"}),
        StepDef(name="reload", display_name="Inject Styles"),
        StepDef(name="rename", display_name="Rename", config={"suffix": ".min"}),
        StepDef(name="cssnano", display_name="Minify"),
        StepDef(name="sourcemaps_write", display_name="Write Source Map", config={"path": "."}),
        StepDef(name="dest", display_name="Write Build Copy", config={"category": "styles"}),
        StepDef(name="notify", display_name="Notify", config={"message": "Styles task complete"}),
    ),
)

TEMPLATES_PIPELINE = PipelineTemplate(
    id="templates",
    display_name="Templates",
    description="Render page templates (partials excluded) to HTML.",
    aliases=("runpug",),
    steps=(
        StepDef(name="src", display_name="Read Sources", config={"category": "templates"}),
        StepDef(name="render_templates", display_name="Render"),
        StepDef(name="dest", display_name="Write Pages", config={"category": "templates"}),
        StepDef(name="notify", display_name="Notify", config={"message": "Templates task completed"}),
    ),
)

VENDOR_PIPELINE = PipelineTemplate(
    id="vendor",
    display_name="Vendor Scripts",
    description="Concatenate and minify third-party scripts.",
    steps=(
        StepDef(name="src", display_name="Read Sources", config={"category": "scripts", "globs": "aux"}),
        StepDef(name="concat", display_name="Concatenate", config={"filename": "vendor.js"}),
        StepDef(name="rename", display_name="Rename", config={"basename": "vendor", "suffix": ".min"}),
        StepDef(name="uglify", display_name="Minify"),
        StepDef(name="dest", display_name="Write Build Copy", config={"category": "scripts"}),
        StepDef(name="notify", display_name="Notify", config={"message": "Vendor scripts task complete"}),
    ),
)

SCRIPTS_PIPELINE = PipelineTemplate(
    id="scripts",
    display_name="Project Scripts",
    description="Concatenate project scripts, write a debug copy and a minified copy with a source map.",
    steps=(
        StepDef(name="src", display_name="Read Sources", config={"category": "scripts"}),
        StepDef(name="sourcemaps_init", display_name="Load Source Maps", config={"load_maps": True}),
        StepDef(name="concat", display_name="Concatenate", config={"filename": "main.js"}),
        StepDef(name="dest", display_name="Write Debug Copy", config={"debug": "scripts"}),
        StepDef(name="rename", display_name="Rename", config={"basename": "main", "suffix": ".min"}),
        StepDef(name="uglify", display_name="Minify"),
        StepDef(name="sourcemaps_write", display_name="Write Source Map", config={"path": "."}),
        StepDef(name="dest", display_name="Write Build Copy", config={"category": "scripts"}),
        StepDef(name="notify", display_name="Notify", config={"message": "Project scripts task complete"}),
    ),
)

IMAGES_PIPELINE = PipelineTemplate(
    id="images",
    display_name="Images",
    description="Recompress raster images changed since the last run.",
    incremental=True,
    steps=(
        StepDef(name="src", display_name="Read Changed Images",
                config={"category": "images", "since": "files"}),
        StepDef(name="imagemin", display_name="Optimize"),
        StepDef(name="dest", display_name="Write Images", config={"category": "images"}),
        StepDef(name="notify", display_name="Notify", config={"message": "Images task complete"}),
    ),
)

SPRITES_PIPELINE = PipelineTemplate(
    id="sprites",
    display_name="SVG Sprites",
    description="Assemble SVG images into a symbol sprite when any of them changed.",
    incremental=True,
    steps=(
        StepDef(name="src", display_name="Read SVG Images",
                config={"category": "images", "globs": "aux", "since": "any"}),
        StepDef(name="svg_sprite", display_name="Assemble Sprite"),
        StepDef(name="dest", display_name="Write Sprite", config={"category": "images"}),
        StepDef(name="notify", display_name="Notify", config={"message": "Sprites task complete"}),
    ),
)


BUILTIN_TEMPLATES: dict[str, PipelineTemplate] = {
    t.id: t
    for t in [
        STYLES_PIPELINE,
        TEMPLATES_PIPELINE,
        VENDOR_PIPELINE,
        SCRIPTS_PIPELINE,
        IMAGES_PIPELINE,
        SPRITES_PIPELINE,
    ]
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class PipelineRegistry:
    """Registry of pipeline templates.

    Starts with built-in templates and allows registration of custom templates
    (e.g. loaded from a project's .asset_pipeline/pipelines/ YAML files).
    """

    def __init__(self) -> None:
        self._templates: dict[str, PipelineTemplate] = dict(BUILTIN_TEMPLATES)
        self._aliases: dict[str, str] = {}
        self._rebuild_aliases()

    def _rebuild_aliases(self) -> None:
        self._aliases = {}
        for tmpl in self._templates.values():
            for alias in tmpl.aliases:
                self._aliases[alias] = tmpl.id

    # -- query ---------------------------------------------------------------

    def get(self, name: str) -> PipelineTemplate:
        template_id = self._aliases.get(name, name) if name not in self._templates else name
        if template_id not in self._templates:
            available = ", ".join(sorted(self._templates.keys()))
            raise KeyError(f"Unknown pipeline '{name}' (available: {available})")
        return self._templates[template_id]

    def has(self, name: str) -> bool:
        return name in self._templates or name in self._aliases

    def list_templates(self) -> list[PipelineTemplate]:
        return list(self._templates.values())

    # -- mutation ------------------------------------------------------------

    def register(self, template: PipelineTemplate) -> None:
        self._templates[template.id] = template
        self._rebuild_aliases()

    def unregister(self, template_id: str) -> None:
        self._templates.pop(template_id, None)
        self._rebuild_aliases()

    # -- YAML loading --------------------------------------------------------

    def load_from_yaml(self, path: Path) -> None:
        """Load pipeline templates from YAML files.

        *path* may be either:
        - A single ``.yaml`` / ``.yml`` file defining one template, or
        - A directory containing multiple YAML files (one template each).

        Each YAML file must be a mapping with at least ``id`` and ``steps``
        (a list of step definitions). A template whose ``id`` matches a
        built-in replaces it.
        """
        if path.is_dir():
            for child in sorted(path.iterdir()):
                if child.suffix in (".yaml", ".yml") and child.is_file():
                    self._load_single_yaml(child)
        elif path.is_file():
            self._load_single_yaml(path)
        else:
            logger.debug("Pipeline YAML path does not exist: {}", path)

    def _load_single_yaml(self, path: Path) -> None:
        """Parse one YAML file into a ``PipelineTemplate`` and register it."""
        try:
            with open(path, "r") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError):
            logger.opt(exception=True).warning("Failed to parse pipeline YAML: {}", path)
            return

        if not isinstance(data, dict):
            logger.warning("Pipeline YAML root is not a mapping: {}", path)
            return

        template_id = data.get("id")
        if not template_id:
            logger.warning("Pipeline YAML missing 'id': {}", path)
            return

        raw_steps = data.get("steps", [])
        if not isinstance(raw_steps, list):
            logger.warning("Pipeline YAML 'steps' is not a list: {}", path)
            return

        step_defs: list[StepDef] = []
        for raw_step in raw_steps:
            if isinstance(raw_step, str):
                step_defs.append(StepDef(name=raw_step))
                continue
            if not isinstance(raw_step, dict) or "name" not in raw_step:
                logger.warning("Skipping step entry without 'name' in {}", path)
                continue
            config = raw_step.get("config") if isinstance(raw_step.get("config"), dict) else {}
            step_defs.append(StepDef(
                name=raw_step["name"],
                display_name=raw_step.get("display_name", ""),
                config=config,
            ))

        aliases = data.get("aliases", ())
        if isinstance(aliases, str):
            aliases = (aliases,)

        _KNOWN = {"id", "display_name", "description", "steps", "aliases", "incremental"}
        metadata = {k: v for k, v in data.items() if k not in _KNOWN}

        template = PipelineTemplate(
            id=template_id,
            display_name=data.get("display_name", template_id.replace("_", " ").title()),
            description=data.get("description", ""),
            steps=tuple(step_defs),
            aliases=tuple(aliases),
            incremental=bool(data.get("incremental", False)),
            metadata=metadata,
        )

        self.register(template)
        logger.debug("Registered pipeline '{}' from {}", template_id, path)
