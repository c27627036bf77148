"""Stylesheet steps: Sass compilation, CSS post-processing and minification."""

from __future__ import annotations

import re
from pathlib import Path

import rcssmin
import sass
from loguru import logger

from ...css import Prefixer, pack, parse, serialize
from ...errors import CompileError
from ...sourcemap import SourceMap, remap_deletions
from ...utils import _display_path
from .base import PipelineStep, StepContext, StepOutcome, StepResult, step_registry

_LINE_RE = re.compile(r"on line (\d+)")


def _project_sources(smap: SourceMap, map_file: Path, project_dir: Path) -> SourceMap:
    """Rewrite the ``sources`` libsass reports (relative to the map file)
    as project-relative paths."""
    renamed: dict[str, str] = {}
    for source in smap.sources:
        if Path(source).is_absolute():
            candidates = [Path(source)]
        else:
            candidates = [map_file.parent / source, map_file / source, project_dir / source]
        found = next((c for c in candidates if c.resolve().is_file()), candidates[0])
        renamed[source] = _display_path(found, project_dir)

    data = smap.to_dict(include_content=True)
    data["sources"] = [renamed[s] for s in smap.sources]
    data.pop("sourceRoot", None)
    return SourceMap.from_dict(data)


@step_registry.register
class SassStep(PipelineStep):
    """Compile ``.scss`` files with libsass.

    Partials (names starting with ``_``) are dropped from the batch; they are
    only ever pulled in through ``@import``.
    """

    @property
    def name(self) -> str:
        return "sass"

    async def execute(self, ctx: StepContext) -> StepResult:
        opts = ctx.settings.styles
        include = [str(ctx.settings.resolve(p)) for p in opts.include_paths]

        compiled = []
        for asset in ctx.assets:
            if asset.name.startswith("_"):
                continue
            map_file = ctx.project_dir / (asset.source.stem + ".css.map")
            try:
                css, map_json = sass.compile(
                    filename=str(asset.source),
                    output_style=opts.output_style,
                    precision=opts.precision,
                    include_paths=[str(asset.source.parent), *include],
                    source_map_filename=str(map_file),
                    output_filename_hint=str(ctx.project_dir / (asset.source.stem + ".css")),
                    omit_source_map_url=True,
                )
            except sass.CompileError as exc:
                message = str(exc)
                line_match = _LINE_RE.search(message)
                logger.error("Sass error in {}:\n{}", _display_path(asset.source, ctx.project_dir), message)
                raise CompileError(
                    asset.source,
                    message.strip().splitlines()[0] if message.strip() else "compile error",
                    int(line_match.group(1)) if line_match else None,
                ) from exc

            asset.text = css
            asset.with_suffix(".css")
            if asset.sourcemaps_enabled:
                smap = _project_sources(SourceMap.from_json(map_json), map_file, ctx.project_dir)
                asset.sourcemap = smap.with_file(asset.name)
            compiled.append(asset)

        skipped = len(ctx.assets) - len(compiled)
        ctx.assets = compiled
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Compiled {len(compiled)} stylesheets",
            artifacts={"compiled": len(compiled), "partials": skipped},
        )


@step_registry.register
class PostcssStep(PipelineStep):
    """Run the configured post-processors (``autoprefixer``, ``mqpacker``)."""

    @property
    def name(self) -> str:
        return "postcss"

    async def execute(self, ctx: StepContext) -> StepResult:
        opts = ctx.settings.styles
        plugins = list(ctx.step_config.get("plugins", ["autoprefixer", "mqpacker"]))
        unknown = [p for p in plugins if p not in ("autoprefixer", "mqpacker")]
        if unknown:
            raise ValueError(f"Unknown postcss plugins: {', '.join(unknown)}")

        prefixer = Prefixer(opts.browsers, cascade=opts.cascade) if "autoprefixer" in plugins else None
        for asset in ctx.assets:
            nodes = parse(asset.text)
            if prefixer is not None:
                prefixer.process(nodes)
            if "mqpacker" in plugins:
                nodes = pack(nodes, sort=opts.sort_media_queries)
            out = serialize(nodes)
            if asset.sourcemaps_enabled:
                asset.sourcemap = out.to_sourcemap(
                    asset.sourcemap,
                    source=_display_path(asset.source, ctx.project_dir),
                    file=asset.name,
                )
            asset.text = out.text
        return StepResult(outcome=StepOutcome.SUCCESS, message=f"Processed {len(ctx.assets)} stylesheets")


@step_registry.register
class CssnanoStep(PipelineStep):
    """Minify stylesheets with rcssmin, carrying the source map across."""

    @property
    def name(self) -> str:
        return "cssnano"

    async def execute(self, ctx: StepContext) -> StepResult:
        saved = 0
        for asset in ctx.assets:
            before = asset.text
            after = rcssmin.cssmin(before)
            if asset.sourcemaps_enabled:
                asset.sourcemap = remap_deletions(
                    before, after, asset.sourcemap,
                    source=_display_path(asset.source, ctx.project_dir),
                    file=asset.name,
                )
            saved += len(before) - len(after)
            asset.text = after
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Minified {len(ctx.assets)} stylesheets ({saved} bytes saved)",
            artifacts={"bytes_saved": saved},
        )
