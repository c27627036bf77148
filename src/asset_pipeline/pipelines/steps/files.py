"""Steps that move assets in and out of a pipeline and reshape the batch.

``src`` reads files matched by a category's globs, ``dest`` writes the batch
to a directory, ``rename`` and ``concat`` change names and merge files, and
``notify`` / ``reload`` report on what went through.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from loguru import logger

from ...errors import StepError
from ...globbing import resolve_globs
from ...io_utils import _write_bytes
from ...sourcemap import Mapping, SourceMap
from ...utils import _display_path
from .base import Asset, PipelineStep, StepContext, StepOutcome, StepResult, step_registry


def _source_name(ctx: StepContext, asset: Asset) -> str:
    return _display_path(asset.source, ctx.project_dir)


def _is_newer(path: Path, since: Optional[float]) -> bool:
    if since is None:
        return True
    return path.stat().st_mtime > since


# ---------------------------------------------------------------------------
# Input / output
# ---------------------------------------------------------------------------

@step_registry.register
class SrcStep(PipelineStep):
    """Read the files matched by ``category`` / ``globs`` into the batch.

    Config:
        category: path registry category.
        globs: ``"src"`` (default) or ``"aux"``.
        since: ``"files"`` keeps only files modified after the watermark,
            ``"any"`` keeps every file if any of them was modified.
    """

    @property
    def name(self) -> str:
        return "src"

    def can_skip(self, ctx: StepContext) -> bool:
        return False

    async def execute(self, ctx: StepContext) -> StepResult:
        category = ctx.step_config.get("category")
        if not category:
            raise StepError("src step needs a 'category'")
        which = ctx.step_config.get("globs", "src")
        since_mode = ctx.step_config.get("since")

        patterns = ctx.settings.paths.globs(category, which)
        matches = resolve_globs(patterns, ctx.project_dir)

        if since_mode == "files":
            selected = [m for m in matches if _is_newer(m.path, ctx.since)]
        elif since_mode == "any":
            changed = any(_is_newer(m.path, ctx.since) for m in matches)
            selected = matches if changed else []
        elif since_mode is None:
            selected = matches
        else:
            raise StepError(f"Unknown since mode '{since_mode}' (expected 'files' or 'any')")

        ctx.assets = [
            Asset(source=m.path, base=m.base, relpath=m.relative, contents=m.path.read_bytes())
            for m in selected
        ]
        logger.debug(
            "[{}] src {}.{}: {} matched, {} selected",
            ctx.task, category, which, len(matches), len(selected),
        )
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Read {len(selected)} of {len(matches)} files",
            artifacts={"matched": len(matches), "selected": len(selected)},
        )


@step_registry.register
class DestStep(PipelineStep):
    """Write every asset below a destination directory.

    Config (one of):
        category: write to the category's configured ``dest``.
        debug: write to ``<debug_dir>/<debug>`` (expanded copies).
        dir: write to a project-relative directory.
    """

    @property
    def name(self) -> str:
        return "dest"

    def _target_dir(self, ctx: StepContext) -> Path:
        cfg = ctx.step_config
        if "category" in cfg:
            return ctx.settings.resolve(ctx.settings.paths.get(cfg["category"]).dest)
        if "debug" in cfg:
            return ctx.settings.resolve(f"{ctx.settings.debug_dir}/{cfg['debug']}")
        if "dir" in cfg:
            return ctx.settings.resolve(cfg["dir"])
        raise StepError("dest step needs one of 'category', 'debug' or 'dir'")

    async def execute(self, ctx: StepContext) -> StepResult:
        target = self._target_dir(ctx)
        written: list[str] = []
        for asset in ctx.assets:
            path = target / asset.relpath
            smap = asset.meta.get("sourcemap")
            if isinstance(smap, SourceMap):
                # map files point back at the project root from wherever they land
                root = os.path.relpath(ctx.project_dir, path.parent).replace(os.sep, "/")
                smap = smap.with_source_root(root + "/")
                asset.contents = smap.to_json(asset.meta.get("include_content", True)).encode("utf-8")
            _write_bytes(path, asset.contents)
            ctx.written.append(path)
            written.append(_display_path(path, ctx.project_dir))
        logger.debug("[{}] dest {}: wrote {}", ctx.task, _display_path(target, ctx.project_dir), written)
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Wrote {len(written)} files",
            artifacts={"written": written},
        )


# ---------------------------------------------------------------------------
# Batch reshaping
# ---------------------------------------------------------------------------

@step_registry.register
class RenameStep(PipelineStep):
    """Rename assets: ``basename`` replaces the stem, ``suffix`` is appended to
    it and ``extname`` replaces the extension."""

    @property
    def name(self) -> str:
        return "rename"

    async def execute(self, ctx: StepContext) -> StepResult:
        cfg = ctx.step_config
        for asset in ctx.assets:
            stem, ext = os.path.splitext(asset.name)
            stem = cfg.get("basename", stem) + cfg.get("suffix", "")
            ext = cfg.get("extname", ext)
            new_name = stem + ext
            asset.relpath = f"{asset.dirname}/{new_name}" if asset.dirname else new_name
            if asset.sourcemap is not None:
                asset.sourcemap = asset.sourcemap.with_file(new_name)
        return StepResult(outcome=StepOutcome.SUCCESS, message=f"Renamed {len(ctx.assets)} files")


@step_registry.register
class ConcatStep(PipelineStep):
    """Join the batch, in order, into one asset named ``filename``."""

    @property
    def name(self) -> str:
        return "concat"

    async def execute(self, ctx: StepContext) -> StepResult:
        filename = ctx.step_config.get("filename")
        if not filename:
            raise StepError("concat step needs a 'filename'")
        separator = ctx.step_config.get("separator", "\n")

        parts: list[str] = []
        mappings: list[Mapping] = []
        contents: dict[str, Optional[str]] = {}
        with_maps = any(a.sourcemaps_enabled for a in ctx.assets)
        line_offset = 0
        for asset in ctx.assets:
            text = asset.text
            parts.append(text)
            if with_maps:
                if asset.sourcemap is not None:
                    for m in asset.sourcemap.mappings:
                        mappings.append(Mapping(
                            m.generated_line + line_offset, m.generated_column,
                            m.source, m.original_line, m.original_column, m.name,
                        ))
                    contents.update(asset.sourcemap.sources_content)
                else:
                    name = _source_name(ctx, asset)
                    mappings.extend(Mapping(line_offset + i, 0, name, i, 0) for i in range(text.count("\n") + 1))
                    contents[name] = text
            line_offset += text.count("\n") + separator.count("\n")

        first = ctx.assets[0]
        joined = Asset(
            source=first.source,
            base=first.base,
            relpath=filename,
            contents=separator.join(parts).encode("utf-8"),
            sourcemaps_enabled=with_maps,
        )
        if with_maps:
            joined.sourcemap = SourceMap(file=filename, mappings=mappings, sources_content=contents)
        count = len(ctx.assets)
        ctx.assets = [joined]
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Concatenated {count} files into {filename}",
            artifacts={"inputs": count},
        )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@step_registry.register
class NotifyStep(PipelineStep):
    """Report the configured ``message`` once for the whole batch."""

    @property
    def name(self) -> str:
        return "notify"

    async def execute(self, ctx: StepContext) -> StepResult:
        message = ctx.step_config.get("message") or f"{ctx.task} task complete"
        if ctx.notifier is not None:
            ctx.notifier.notify_task(ctx.task, message, files=len(ctx.assets))
        else:
            logger.info("{} ({} files)", message, len(ctx.assets))
        return StepResult(outcome=StepOutcome.SUCCESS, message=message)


@step_registry.register
class ReloadStep(PipelineStep):
    """Push the batch to connected live-reload clients, if a server is attached.

    Stylesheets are injected in place; anything else asks for a full reload.
    """

    @property
    def name(self) -> str:
        return "reload"

    def can_skip(self, ctx: StepContext) -> bool:
        return ctx.live_reload is None or not ctx.assets

    async def execute(self, ctx: StepContext) -> StepResult:
        for asset in ctx.assets:
            kind = "css" if asset.name.endswith(".css") else "reload"
            ctx.live_reload.publish_sync({"type": kind, "path": asset.relpath})
        return StepResult(outcome=StepOutcome.SUCCESS, message=f"Pushed {len(ctx.assets)} changes")
