"""Tests for the asset-pipeline command line."""

from __future__ import annotations

from pathlib import Path

import pytest

from asset_pipeline.cli import build_parser, main


@pytest.fixture
def project(tmp_path: Path) -> Path:
    scripts = tmp_path / "src" / "scripts"
    (scripts / "vendor").mkdir(parents=True)
    (scripts / "app.js").write_text("var app = 1;\n")
    (scripts / "vendor" / "lib.js").write_text("var lib = 1;\n")
    views = tmp_path / "src" / "views"
    views.mkdir(parents=True)
    (views / "index.html").write_text("<p>{{ 1 + 1 }}</p>\n")
    return tmp_path


def _run(project: Path, *argv: str) -> int:
    return main(["--project-dir", str(project), "--log-level", "WARNING", *argv])


class TestParser:
    def test_task_commands(self):
        parser = build_parser()
        args = parser.parse_args(["styles", "--force"])
        assert args.task == "styles"
        assert args.force is True

    def test_runpug_alias(self):
        assert build_parser().parse_args(["runpug"]).task == "templates"

    def test_server_options(self):
        args = build_parser().parse_args(["server", "--watch", "--port", "8080"])
        assert args.watch is True
        assert args.port == 8080
        assert args.host is None


class TestCommands:
    def test_scripts_task(self, project: Path):
        assert _run(project, "scripts") == 0
        assert (project / "dist" / "assets" / "scripts" / "main.min.js").exists()

    def test_runpug(self, project: Path):
        assert _run(project, "runpug") == 0
        assert (project / "dist" / "index.html").read_text() == "<p>2</p>\n"

    def test_run_by_name(self, project: Path):
        assert _run(project, "run", "vendor") == 0
        assert (project / "dist" / "assets" / "scripts" / "vendor.min.js").exists()

    def test_run_unknown_pipeline(self, project: Path, capsys):
        assert _run(project, "run", "fonts") == 2
        assert "Unknown pipeline 'fonts'" in capsys.readouterr().err

    def test_missing_source_directory_fails_task(self, project: Path, capsys):
        assert _run(project, "styles") == 1
        assert "failed" in capsys.readouterr().out

    def test_build_stops_at_first_failure(self, project: Path, capsys):
        assert _run(project, "build") == 1
        out = capsys.readouterr().out
        assert "templates" in out
        assert "styles" in out
        assert "vendor" not in out

    def test_list(self, project: Path, capsys):
        assert _run(project, "list") == 0
        out = capsys.readouterr().out
        for task in ("styles", "templates", "vendor", "scripts", "images", "sprites"):
            assert task in out
        assert "runpug" in out

    def test_invalid_config(self, project: Path, capsys):
        config = project / ".asset_pipeline" / "config.yaml"
        config.parent.mkdir()
        config.write_text("images:\n  optimization_level: 99\n")
        assert _run(project, "images") == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_missing_explicit_config(self, project: Path):
        assert _run(project, "--config", str(project / "nope.yaml"), "scripts") == 2
