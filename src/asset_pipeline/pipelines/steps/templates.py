"""Page template rendering with Jinja2.

Each page is rendered through an environment rooted at the glob base of the
page, so pages can ``{% include %}`` and ``{% extends %}`` partials kept in
``_``-prefixed directories next to them. A page that fails to load or
render, whatever the exception, is recorded as a file error and dropped;
the rest of the batch carries on. A trailing ``.j2`` is dropped before the
page takes its ``.html`` extension.
"""

from __future__ import annotations

from pathlib import Path

import jinja2
from loguru import logger

from ...config import TemplateOptions
from ...utils import _display_path
from .base import PipelineStep, StepContext, StepOutcome, StepResult, step_registry

_TAB_WIDTH = 4


def _prettify(html: str, indent: str) -> str:
    """Normalize leading indentation to *indent* per level and squeeze
    runs of blank lines."""
    out: list[str] = []
    blank = False
    for raw in html.splitlines():
        line = raw.rstrip()
        if not line:
            if out and not blank:
                out.append("")
            blank = True
            continue
        blank = False
        content = line.lstrip()
        width = len(line[: len(line) - len(content)].expandtabs(_TAB_WIDTH))
        depth, rest = divmod(width, _TAB_WIDTH)
        out.append(indent * depth + " " * rest + content)
    while out and not out[-1]:
        out.pop()
    return "\n".join(out) + "\n" if out else ""


def _environment(base: Path, opts: TemplateOptions) -> jinja2.Environment:
    return jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(base)),
        undefined=jinja2.StrictUndefined if opts.strict_undefined else jinja2.Undefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        autoescape=jinja2.select_autoescape(["html", "htm", "xml"]),
    )


@step_registry.register
class RenderTemplatesStep(PipelineStep):
    @property
    def name(self) -> str:
        return "render_templates"

    async def execute(self, ctx: StepContext) -> StepResult:
        opts = ctx.settings.templates
        envs: dict[Path, jinja2.Environment] = {}

        rendered = []
        for asset in ctx.assets:
            env = envs.get(asset.base)
            if env is None:
                env = envs[asset.base] = _environment(asset.base, opts)
            try:
                html = env.get_template(asset.relpath).render(
                    **opts.context,
                    page_path=asset.relpath,
                )
            except Exception as exc:
                logger.error(
                    "Template {} failed to render: {}: {}",
                    _display_path(asset.source, ctx.project_dir), type(exc).__name__, exc,
                )
                ctx.record_file_error(asset.source, self.name, exc)
                continue
            asset.text = _prettify(html, opts.indent) if opts.pretty else html
            if asset.relpath.endswith(".j2"):
                asset.relpath = asset.relpath[: -len(".j2")]
            asset.with_suffix(".html")
            rendered.append(asset)

        failed = len(ctx.assets) - len(rendered)
        ctx.assets = rendered
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Rendered {len(rendered)} pages ({failed} failed)",
            artifacts={"rendered": len(rendered), "failed": failed},
        )
