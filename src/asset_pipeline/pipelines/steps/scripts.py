"""Script minification."""

from __future__ import annotations

import rjsmin

from ...sourcemap import remap_deletions
from ...utils import _display_path
from .base import PipelineStep, StepContext, StepOutcome, StepResult, step_registry


@step_registry.register
class UglifyStep(PipelineStep):
    """Minify JavaScript with rjsmin.

    rjsmin only strips whitespace and comments, so the source map of each
    asset is carried over by matching the output against the input.
    """

    @property
    def name(self) -> str:
        return "uglify"

    async def execute(self, ctx: StepContext) -> StepResult:
        keep_bang = ctx.settings.scripts.keep_bang_comments
        saved = 0
        for asset in ctx.assets:
            before = asset.text
            after = rjsmin.jsmin(before, keep_bang_comments=keep_bang)
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
            message=f"Minified {len(ctx.assets)} scripts ({saved} bytes saved)",
            artifacts={"bytes_saved": saved},
        )
