"""End-to-end tests for the project and vendor script tasks."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from asset_pipeline.builder import Builder
from asset_pipeline.config import BuildSettings
from asset_pipeline.sourcemap import SourceMap


@pytest.fixture
def project(tmp_path: Path) -> Path:
    scripts = tmp_path / "src" / "scripts"
    (scripts / "vendor").mkdir(parents=True)
    (scripts / "b.js").write_text("function second(value) {\n    return value * 2;\n}\n")
    (scripts / "a.js").write_text("// first file\nvar first = 1;\n")
    (scripts / "vendor" / "lib.js").write_text("/*! lib v1 */\nwindow.lib = { version: 1 };\n")
    return tmp_path


@pytest.fixture
def builder(project: Path) -> Builder:
    return Builder(BuildSettings(project_dir=project))


class TestScriptsTask:
    def test_debug_copy_is_concatenated_in_order(self, builder: Builder, project: Path):
        run = builder.run("scripts")
        assert run.succeeded, run.error

        private = project / "private" / "scripts"
        assert [p.name for p in private.iterdir()] == ["main.js"]
        main = (private / "main.js").read_text()
        assert main.index("var first") < main.index("function second")
        assert "vendor" not in main and "window.lib" not in main

    def test_minified_copy_and_map(self, builder: Builder, project: Path):
        builder.run("scripts")
        dist = project / "dist" / "assets" / "scripts"
        assert {p.name for p in dist.iterdir()} == {"main.min.js", "main.min.js.map"}

        minified = (dist / "main.min.js").read_text()
        assert "// first file" not in minified
        assert minified.endswith("//# sourceMappingURL=main.min.js.map\n")

        data = json.loads((dist / "main.min.js.map").read_text())
        assert data["file"] == "main.min.js"
        assert set(data["sources"]) == {"src/scripts/a.js", "src/scripts/b.js"}
        assert data["sourceRoot"] == "../../../"

    def test_map_points_into_second_file(self, builder: Builder, project: Path):
        builder.run("scripts")
        dist = project / "dist" / "assets" / "scripts"
        minified = (dist / "main.min.js").read_text()
        smap = SourceMap.from_json((dist / "main.min.js.map").read_text())

        lines = minified.splitlines()
        line_no = next(i for i, line in enumerate(lines) if "function second" in line)
        hit = smap.lookup(line_no, lines[line_no].index("function second"))
        assert hit.source == "src/scripts/b.js"
        assert hit.original_line == 0


class TestVendorTask:
    def test_vendor_bundle(self, builder: Builder, project: Path):
        run = builder.run("vendor")
        assert run.succeeded, run.error

        dist = project / "dist" / "assets" / "scripts"
        assert [p.name for p in dist.iterdir()] == ["vendor.min.js"]
        bundle = (dist / "vendor.min.js").read_text()
        assert "window.lib" in bundle
        assert "/*! lib v1 */" not in bundle
        assert "sourceMappingURL" not in bundle
        assert not (project / "private").exists()

    def test_bang_comments_kept_when_configured(self, project: Path):
        settings = BuildSettings(project_dir=project, scripts={"keep_bang_comments": True})
        Builder(settings).run("vendor")
        bundle = (project / "dist" / "assets" / "scripts" / "vendor.min.js").read_text()
        assert "/*! lib v1 */" in bundle
