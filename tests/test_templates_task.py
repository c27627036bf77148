"""Tests for the templates task and HTML prettifying."""

from __future__ import annotations

from pathlib import Path

import pytest

from asset_pipeline.builder import Builder
from asset_pipeline.config import BuildSettings
from asset_pipeline.pipelines.steps.templates import _prettify

LAYOUT = """\
<html>
<body>
{% block content %}{% endblock %}
</body>
</html>
"""

INDEX = """\
{% extends "_layouts/base.html" %}
{% block content %}
<main>
    <h1>{{ title }}</h1>
    {% include "_partials/nav.html" %}
</main>
{% endblock %}
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    views = tmp_path / "src" / "views"
    (views / "_layouts").mkdir(parents=True)
    (views / "_partials").mkdir()
    (views / "blog").mkdir()
    (views / "_layouts" / "base.html").write_text(LAYOUT)
    (views / "_partials" / "nav.html").write_text("<nav>{{ page_path }}</nav>\n")
    (views / "index.html").write_text(INDEX)
    (views / "blog" / "post.j2").write_text("<p>{{ title }} post</p>\n")
    return tmp_path


def _settings(project: Path, **overrides) -> BuildSettings:
    templates = {"context": {"title": "Home"}}
    templates.update(overrides)
    return BuildSettings(project_dir=project, templates=templates)


class TestTemplatesTask:
    def test_pages_rendered_with_partials(self, project: Path):
        run = Builder(_settings(project)).run("templates")
        assert run.succeeded, run.error

        html = (project / "dist" / "index.html").read_text()
        assert "<h1>Home</h1>" in html
        assert "<nav>index.html</nav>" in html
        assert html.startswith("<html>\n<body>\n")

    def test_j2_pages_get_html_extension(self, project: Path):
        Builder(_settings(project)).run("templates")
        assert (project / "dist" / "blog" / "post.html").read_text() == "<p>Home post</p>\n"

    def test_partials_are_not_pages(self, project: Path):
        Builder(_settings(project)).run("templates")
        assert not (project / "dist" / "_layouts").exists()
        assert not (project / "dist" / "_partials").exists()

    def test_alias(self, project: Path):
        run = Builder(_settings(project)).run("runpug")
        assert run.task == "templates"

    def test_indent_is_configurable(self, project: Path):
        Builder(_settings(project, indent="  ")).run("templates")
        html = (project / "dist" / "index.html").read_text()
        assert "\n  <h1>Home</h1>\n" in html

    def test_broken_page_keeps_previous_output(self, project: Path):
        (project / "src" / "views" / "broken.html").write_text("{% if %}\n")
        stale = project / "dist" / "broken.html"
        stale.parent.mkdir(parents=True)
        stale.write_text("previous build")

        run = Builder(_settings(project)).run("templates")
        assert run.status == "completed"
        assert not run.succeeded
        assert [e.path.name for e in run.file_errors] == ["broken.html"]
        assert run.file_errors[0].error_type == "TemplateSyntaxError"
        assert stale.read_text() == "previous build"
        assert (project / "dist" / "index.html").exists()

    def test_render_time_error_is_isolated(self, project: Path):
        (project / "src" / "views" / "divide.html").write_text("<p>{{ 1 // 0 }}</p>\n")

        run = Builder(_settings(project)).run("templates")
        assert run.status == "completed"
        assert [e.path.name for e in run.file_errors] == ["divide.html"]
        assert run.file_errors[0].error_type == "ZeroDivisionError"
        assert not (project / "dist" / "divide.html").exists()
        assert (project / "dist" / "index.html").exists()
        assert (project / "dist" / "blog" / "post.html").exists()

    def test_undecodable_page_is_isolated(self, project: Path):
        (project / "src" / "views" / "latin.html").write_bytes(b"\xff\xfe<p>caf\xe9</p>\n")

        run = Builder(_settings(project)).run("templates")
        assert run.status == "completed"
        assert [e.path.name for e in run.file_errors] == ["latin.html"]
        assert run.file_errors[0].error_type == "UnicodeDecodeError"
        assert (project / "dist" / "index.html").exists()

    def test_html_j2_pages_keep_single_extension(self, project: Path):
        (project / "src" / "views" / "about.html.j2").write_text("<p>about</p>\n")
        Builder(_settings(project)).run("templates")
        assert (project / "dist" / "about.html").read_text() == "<p>about</p>\n"
        assert not (project / "dist" / "about.html.html").exists()

    def test_strict_undefined(self, project: Path):
        run = Builder(_settings(project, context={}, strict_undefined=True)).run("templates")
        assert {e.path.name for e in run.file_errors} == {"index.html", "post.j2"}

    def test_lenient_undefined_renders_empty(self, project: Path):
        Builder(_settings(project, context={})).run("templates")
        assert "<h1></h1>" in (project / "dist" / "index.html").read_text()


class TestPrettify:
    def test_spaces_become_indent_levels(self):
        assert _prettify("<div>\n    <p>x</p>\n</div>\n", "\t") == "<div>\n\t<p>x</p>\n</div>\n"

    def test_leftover_spaces_are_kept(self):
        assert _prettify("      x", "\t") == "\t  x\n"

    def test_blank_runs_are_squeezed(self):
        assert _prettify("\n\na\n\n\n\nb\n\n", "  ") == "a\n\nb\n"

    def test_tabs_are_expanded(self):
        assert _prettify("\t\tx\n", "  ") == "    x\n"
