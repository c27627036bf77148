"""Tests for running tasks through the Builder."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from asset_pipeline.builder import BUILD_TASKS, Builder
from asset_pipeline.config import BuildSettings


@pytest.fixture
def project(tmp_path: Path) -> Path:
    views = tmp_path / "src" / "views"
    views.mkdir(parents=True)
    (views / "index.html").write_text("<p>hi</p>\n")
    return tmp_path


class TestBuilder:
    def test_build_order(self):
        assert BUILD_TASKS == ("templates", "styles", "vendor", "scripts", "images", "sprites")

    def test_success_notifies_completion(self, project: Path):
        notifier = MagicMock()
        run = Builder(BuildSettings(project_dir=project), notifier=notifier).run("templates")
        assert run.succeeded
        notifier.notify_task.assert_called_once_with("templates", "Templates task completed", files=1)
        notifier.notify_task_failed.assert_not_called()

    def test_failure_notifies(self, project: Path):
        notifier = MagicMock()
        run = Builder(BuildSettings(project_dir=project), notifier=notifier).run("styles")
        assert run.status == "failed"
        notifier.notify_task_failed.assert_called_once()
        assert notifier.notify_task_failed.call_args[0][0] == "styles"

    def test_run_many_stops_on_failure(self, project: Path):
        runs = Builder(BuildSettings(project_dir=project)).run_many(["templates", "styles", "scripts"])
        assert [r.task for r in runs] == ["templates", "styles"]

    def test_run_many_can_continue(self, project: Path):
        runs = Builder(BuildSettings(project_dir=project)).run_many(["styles", "templates"], stop_on_failure=False)
        assert [r.status for r in runs] == ["failed", "completed"]

    def test_project_pipelines_are_loaded(self, project: Path):
        pipelines = project / ".asset_pipeline" / "pipelines"
        pipelines.mkdir(parents=True)
        (pipelines / "pages.yaml").write_text(
            "id: pages\n"
            "steps:\n"
            "  - name: src\n"
            "    config: {category: templates}\n"
            "  - name: dest\n"
            "    config: {dir: raw}\n"
        )
        builder = Builder(BuildSettings(project_dir=project))
        assert "pages" in builder.tasks()
        run = builder.run("pages")
        assert run.succeeded, run.error
        assert (project / "raw" / "index.html").read_text() == "<p>hi</p>\n"

    def test_successful_run_records_watermark(self, project: Path):
        builder = Builder(BuildSettings(project_dir=project))
        builder.run("templates")
        assert builder.watermarks.to_dict()["tasks"]["templates"]["started_at"] > 0
