"""Source map bookkeeping steps.

``sourcemaps_init`` starts tracking positions for every asset (optionally
picking up a map already embedded in the file) and ``sourcemaps_write``
emits the tracked map, either inline as a data URL or as a separate
``.map`` file next to the asset.
"""

from __future__ import annotations

from loguru import logger

from ...sourcemap import (
    SourceMap,
    decode_data_url,
    identity_map,
    inline_comment,
    split_url_comment,
    url_comment,
)
from ...utils import _display_path
from .base import Asset, PipelineStep, StepContext, StepOutcome, StepResult, step_registry


def _load_embedded(asset: Asset, url: str) -> SourceMap | None:
    if url.startswith("data:"):
        return decode_data_url(url)
    map_path = asset.source.parent / url
    if map_path.is_file():
        return SourceMap.from_json(map_path.read_text(encoding="utf-8"))
    logger.debug("Referenced source map {} not found", map_path)
    return None


@step_registry.register
class SourcemapsInitStep(PipelineStep):
    @property
    def name(self) -> str:
        return "sourcemaps_init"

    async def execute(self, ctx: StepContext) -> StepResult:
        load_maps = bool(ctx.step_config.get("load_maps", False))
        loaded = 0
        for asset in ctx.assets:
            asset.sourcemaps_enabled = True
            smap = None
            if load_maps:
                text, url = split_url_comment(asset.text)
                if url:
                    smap = _load_embedded(asset, url)
                    asset.text = text
            if smap is not None:
                loaded += 1
            else:
                name = _display_path(asset.source, ctx.project_dir)
                smap = identity_map(asset.text, name, asset.name)
                smap = SourceMap(smap.file, smap.mappings, {name: asset.text})
            asset.sourcemap = smap
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Tracking {len(ctx.assets)} files ({loaded} existing maps loaded)",
            artifacts={"loaded": loaded},
        )


@step_registry.register
class SourcemapsWriteStep(PipelineStep):
    """Emit each asset's map.

    Config:
        path: ``None`` (default) embeds the map as a data URL comment;
            a relative directory writes ``<name>.map`` there instead.
        include_content: embed original sources in the map (default true).
    """

    @property
    def name(self) -> str:
        return "sourcemaps_write"

    async def execute(self, ctx: StepContext) -> StepResult:
        path = ctx.step_config.get("path")
        include_content = bool(ctx.step_config.get("include_content", True))

        batch: list[Asset] = []
        for asset in ctx.assets:
            batch.append(asset)
            if not asset.sourcemaps_enabled or asset.sourcemap is None:
                continue
            smap = asset.sourcemap.with_file(asset.name)
            text, _ = split_url_comment(asset.text)
            if path is None:
                asset.text = text.rstrip("\n") + inline_comment(smap, asset.name, include_content)
            else:
                rel_dir = path.strip("/")
                map_rel = asset.name + ".map" if rel_dir in ("", ".") else f"{rel_dir}/{asset.name}.map"
                asset.text = text.rstrip("\n") + url_comment(map_rel, asset.name)
                map_relpath = f"{asset.dirname}/{map_rel}" if asset.dirname else map_rel
                batch.append(Asset(
                    source=asset.source,
                    base=asset.base,
                    relpath=map_relpath,
                    contents=smap.to_json(include_content).encode("utf-8"),
                    meta={"sourcemap": smap, "include_content": include_content},
                ))
            asset.sourcemap = None
            asset.sourcemaps_enabled = False
        ctx.assets = batch
        return StepResult(outcome=StepOutcome.SUCCESS, message="Source maps written")
