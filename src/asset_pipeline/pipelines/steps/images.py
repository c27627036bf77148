"""Image steps: raster recompression with Pillow and SVG symbol sprites."""

from __future__ import annotations

import io
import xml.etree.ElementTree as ET

from loguru import logger
from PIL import Image

from ...config import ImageOptions
from ...utils import _display_path
from .base import Asset, PipelineStep, StepContext, StepOutcome, StepResult, step_registry

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)


def _recompress(data: bytes, opts: ImageOptions) -> bytes:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        fmt = img.format
        buf = io.BytesIO()
        extra = {}
        if img.info.get("icc_profile"):
            extra["icc_profile"] = img.info["icc_profile"]
        if fmt == "PNG":
            level = opts.optimization_level
            img.save(buf, "PNG", optimize=level >= 3, compress_level=min(9, 2 + level), **extra)
        elif fmt == "JPEG":
            img.save(
                buf, "JPEG",
                quality=opts.jpeg_quality,
                optimize=True,
                progressive=opts.progressive,
                **extra,
            )
        else:
            raise ValueError(f"Unsupported image format {fmt!r}")
    return buf.getvalue()


@step_registry.register
class ImageminStep(PipelineStep):
    """Re-encode PNG and JPEG images, keeping the result only when smaller.

    An image Pillow cannot read is recorded as a file error and dropped.
    """

    @property
    def name(self) -> str:
        return "imagemin"

    async def execute(self, ctx: StepContext) -> StepResult:
        opts = ctx.settings.images
        kept = []
        optimized = 0
        saved = 0
        for asset in ctx.assets:
            try:
                smaller = _recompress(asset.contents, opts)
            except (OSError, ValueError, Image.DecompressionBombError) as exc:
                logger.warning(
                    "Skipping {}: {}: {}",
                    _display_path(asset.source, ctx.project_dir), type(exc).__name__, exc,
                )
                ctx.record_file_error(asset.source, self.name, exc)
                continue
            if len(smaller) < len(asset.contents):
                saved += len(asset.contents) - len(smaller)
                asset.contents = smaller
                optimized += 1
            kept.append(asset)

        processed = len(ctx.assets)
        ctx.assets = kept
        logger.debug("[{}] imagemin: {} processed, {} smaller, {} bytes saved", ctx.task, processed, optimized, saved)
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Optimized {processed} images ({saved} bytes saved)",
            artifacts={"processed": processed, "optimized": optimized, "bytes_saved": saved},
        )


def _view_box(root: ET.Element) -> str | None:
    view_box = root.get("viewBox")
    if view_box:
        return view_box
    width, height = root.get("width"), root.get("height")
    if width and height:
        try:
            return f"0 0 {float(width.rstrip('px'))} {float(height.rstrip('px'))}"
        except ValueError:
            return None
    return None


@step_registry.register
class SvgSpriteStep(PipelineStep):
    """Merge every SVG of the batch into one ``<symbol>`` sprite.

    Symbol ids are the file stems (with the configured prefix), so an icon is
    referenced as ``<use href="sprite.svg#icon-name"/>``.
    """

    @property
    def name(self) -> str:
        return "svg_sprite"

    async def execute(self, ctx: StepContext) -> StepResult:
        opts = ctx.settings.sprites
        sprite = ET.Element(f"{{{SVG_NS}}}svg")
        ids: list[str] = []
        for asset in sorted(ctx.assets, key=lambda a: a.relpath):
            try:
                root = ET.fromstring(asset.contents)
            except ET.ParseError as exc:
                logger.warning("Skipping {}: {}", _display_path(asset.source, ctx.project_dir), exc)
                ctx.record_file_error(asset.source, self.name, exc)
                continue
            symbol_id = opts.id_prefix + asset.name.rsplit(".", 1)[0]
            if symbol_id in ids:
                logger.warning("Duplicate sprite id '{}' from {}, skipped", symbol_id, asset.relpath)
                continue
            symbol = ET.SubElement(sprite, f"{{{SVG_NS}}}symbol", {"id": symbol_id})
            view_box = _view_box(root)
            if view_box:
                symbol.set("viewBox", view_box)
            for child in list(root):
                symbol.append(child)
            ids.append(symbol_id)

        first = ctx.assets[0]
        data = ET.tostring(sprite, encoding="unicode")
        ctx.assets = [Asset(
            source=first.source,
            base=first.base,
            relpath=opts.filename,
            contents=(data + "\n").encode("utf-8"),
        )] if ids else []
        return StepResult(
            outcome=StepOutcome.SUCCESS,
            message=f"Assembled {len(ids)} symbols into {opts.filename}",
            artifacts={"symbols": ids},
        )
