"""End-to-end tests for the styles task (Sass, prefixing, packing, minifying)."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from asset_pipeline.builder import Builder
from asset_pipeline.config import BuildSettings

MAIN_SCSS = """\
@import "vars";

.a {
  color: $brand;
  transform: rotate(1deg);
}

@media (min-width: 768px) {
  .b { display: none; }
}

@media (min-width: 320px) {
  .c { display: flex; }
}

@media (min-width: 768px) {
  .d { color: blue; }
}
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    scss = tmp_path / "src" / "scss"
    scss.mkdir(parents=True)
    (scss / "main.scss").write_text(MAIN_SCSS)
    (scss / "_vars.scss").write_text("$brand: #ff0000;\n")
    return tmp_path


@pytest.fixture
def builder(project: Path) -> Builder:
    return Builder(BuildSettings(project_dir=project))


class TestStylesTask:
    def test_run_succeeds(self, builder: Builder):
        run = builder.run("styles")
        assert run.status == "completed", run.error
        assert run.succeeded
        assert [s.status for s in run.steps if s.name == "reload"] == ["skipped"]

    def test_debug_copy_is_expanded_prefixed_and_packed(self, builder: Builder, project: Path):
        builder.run("styles")
        css = (project / "private" / "css" / "main.css").read_text()
        assert "color: #ff0000;" in css
        assert "-webkit-transform: rotate(1deg);" in css
        assert "-ms-flexbox" in css
        assert css.count("@media (min-width: 768px)") == 1
        assert css.index("(min-width: 320px)") < css.index("(min-width: 768px)")
        assert css.index(".a {") < css.index("@media")
        assert "sourceMappingURL" not in css

    def test_minified_copy_with_external_map(self, builder: Builder, project: Path):
        builder.run("styles")
        dist = project / "dist" / "assets" / "css"
        minified = (dist / "main.min.css").read_text()
        expanded = (project / "private" / "css" / "main.css").read_text()
        assert len(minified) < len(expanded)
        assert minified.endswith("/*# sourceMappingURL=main.min.css.map */\n")

        smap = json.loads((dist / "main.min.css.map").read_text())
        assert smap["version"] == 3
        assert smap["file"] == "main.min.css"
        assert "src/scss/main.scss" in smap["sources"]
        assert smap["sourceRoot"] == "../../../"
        assert smap["mappings"]

    def test_partials_are_not_written(self, builder: Builder, project: Path):
        builder.run("styles")
        outputs = {p.name for p in (project / "dist" / "assets" / "css").iterdir()}
        assert outputs == {"main.min.css", "main.min.css.map"}
        assert not (project / "private" / "css" / "_vars.css").exists()

    def test_sass_error_fails_the_run(self, builder: Builder, project: Path):
        (project / "src" / "scss" / "broken.scss").write_text(".x { color: $missing; }\n")
        run = builder.run("styles")
        assert run.status == "failed"
        assert run.failed_step == "sass"
        assert run.error_type == "CompileError"
        assert "broken.scss" in run.error
        assert not (project / "dist").exists()

    def test_missing_source_directory(self, tmp_path: Path):
        run = Builder(BuildSettings(project_dir=tmp_path)).run("styles")
        assert run.status == "failed"
        assert run.failed_step == "src"
        assert run.error_type == "SourceNotFoundError"

    def test_autoprefixer_targets_from_config(self, project: Path):
        settings = BuildSettings(project_dir=project, styles={"browsers": ["last 2 Chrome versions"]})
        Builder(settings).run("styles")
        css = (project / "private" / "css" / "main.css").read_text()
        assert "-webkit-transform" not in css
        assert "-ms-flexbox" not in css
