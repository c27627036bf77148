from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from .builder import BUILD_TASKS, Builder, load_registry
from .config import BuildSettings, load_settings
from .constants import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_TASK_FAILED
from .errors import ConfigError
from .notifications import NotificationManager
from .pipelines.engine import TaskRun

console = Console()


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _settings(args: argparse.Namespace) -> BuildSettings:
    config = Path(args.config).expanduser().resolve() if args.config else None
    return load_settings(_resolve_project_dir(args.project_dir), config)


def _notifier(settings: BuildSettings) -> NotificationManager:
    return NotificationManager(
        console=settings.notifications.console,
        desktop=settings.notifications.desktop,
    )


def _builder(args: argparse.Namespace, settings: BuildSettings, **kwargs) -> Builder:
    return Builder(
        settings,
        notifier=_notifier(settings),
        force=getattr(args, "force", False),
        **kwargs,
    )


def _print_runs(runs: list[TaskRun]) -> None:
    table = Table(show_header=True, box=None)
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Error")
    for run in runs:
        if run.status == "failed":
            status = "[red]failed[/red]"
            error = f"{run.failed_step}: {run.error}"
        elif run.file_errors:
            status = "[yellow]partial[/yellow]"
            error = "; ".join(f"{e.path.name}: {e.error}" for e in run.file_errors)
        else:
            status = "[green]ok[/green]"
            error = ""
        table.add_row(run.task, status, str(len(run.written)), f"{run.duration_seconds:.2f}s", error)
    console.print(table)


def _exit_code(runs: list[TaskRun]) -> int:
    return EXIT_OK if all(r.succeeded for r in runs) else EXIT_TASK_FAILED


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_task(args: argparse.Namespace) -> int:
    settings = _settings(args)
    runs = [_builder(args, settings).run(args.task)]
    _print_runs(runs)
    return _exit_code(runs)


def _cmd_run(args: argparse.Namespace) -> int:
    settings = _settings(args)
    builder = _builder(args, settings)
    if not builder.registry.has(args.name):
        sys.stderr.write(f"Unknown pipeline '{args.name}' (available: {', '.join(builder.tasks())})\n")
        return EXIT_CONFIG_ERROR
    runs = [builder.run(args.name)]
    _print_runs(runs)
    return _exit_code(runs)


def _cmd_build(args: argparse.Namespace) -> int:
    settings = _settings(args)
    runs = _builder(args, settings).run_many(BUILD_TASKS)
    _print_runs(runs)
    return _exit_code(runs)


def _cmd_list(args: argparse.Namespace) -> int:
    settings = _settings(args)
    registry = load_registry(settings)
    table = Table(show_header=True, box=None)
    table.add_column("Task")
    table.add_column("Aliases")
    table.add_column("Steps")
    table.add_column("Description")
    for template in sorted(registry.list_templates(), key=lambda t: t.id):
        table.add_row(
            template.id,
            ", ".join(template.aliases),
            " > ".join(template.step_names()),
            template.description,
        )
    console.print(table)
    return EXIT_OK


def _cmd_watch(args: argparse.Namespace) -> int:
    from .watch import WatchDispatcher

    settings = _settings(args)
    builder = _builder(args, settings)
    WatchDispatcher(settings, builder.run).run_forever()
    return EXIT_OK


def _cmd_server(args: argparse.Namespace) -> int:
    import uvicorn

    from .livereload import LiveReloadHub, create_app
    from .watch import WatchDispatcher

    settings = _settings(args)
    hub = LiveReloadHub()
    app = create_app(settings, hub)

    dispatcher = None
    if args.watch:
        builder = _builder(args, settings, live_reload=hub)
        dispatcher = WatchDispatcher(settings, builder.run)
        dispatcher.start()
    try:
        uvicorn.run(
            app,
            host=args.host or settings.server.host,
            port=args.port or settings.server.port,
        )
    finally:
        if dispatcher is not None:
            dispatcher.stop()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_task_command(
    sub: argparse._SubParsersAction,
    name: str,
    help_text: str,
    func: Callable[[argparse.Namespace], int],
    aliases: tuple[str, ...] = (),
) -> argparse.ArgumentParser:
    parser = sub.add_parser(name, aliases=list(aliases), help=help_text)
    parser.add_argument("--force", action="store_true", help="Ignore last-run watermarks and process every file")
    parser.set_defaults(func=func, task=name)
    return parser


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="asset-pipeline", description="Front-end asset build tasks")
    parser.add_argument("--project-dir", default=None, help="Project root (default: current directory)")
    parser.add_argument("--config", default=None, help="Config file (default: .asset_pipeline/config.yaml)")
    parser.add_argument("--log-level", default="INFO", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    sub = parser.add_subparsers(dest="command", required=True)

    _add_task_command(sub, "styles", "Compile, prefix and minify stylesheets", _cmd_task)
    _add_task_command(sub, "templates", "Render page templates", _cmd_task, aliases=("runpug",))
    _add_task_command(sub, "scripts", "Concatenate and minify project scripts", _cmd_task)
    _add_task_command(sub, "vendor", "Concatenate and minify vendor scripts", _cmd_task)
    _add_task_command(sub, "images", "Optimize changed images", _cmd_task)
    _add_task_command(sub, "sprites", "Assemble the SVG sprite", _cmd_task)
    _add_task_command(sub, "build", "Run every build task in sequence", _cmd_build)

    run = _add_task_command(sub, "run", "Run any registered pipeline by name", _cmd_run)
    run.add_argument("name")

    list_parser = sub.add_parser("list", help="List registered pipelines")
    list_parser.set_defaults(func=_cmd_list)

    watch = sub.add_parser("watch", help="Rerun tasks when their sources change")
    watch.set_defaults(func=_cmd_watch)

    server = sub.add_parser("server", help="Serve the output directory with live reload")
    server.add_argument("--watch", action="store_true", help="Also watch sources and rebuild")
    server.add_argument("--host", default=None)
    server.add_argument("--port", type=int, default=None)
    server.set_defaults(func=_cmd_server)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    try:
        return int(args.func(args))
    except ConfigError as exc:
        sys.stderr.write(f"Configuration error: {exc}\n")
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
