from __future__ import annotations

import pathlib
import shlex
import sys

import click

from rewatch import console
from rewatch.cli import decorators as cli_decorators
from rewatch.watch import engine


@cli_decorators.rewatch_command("watch")
@click.argument("spec", nargs=-1)
@click.option(
    "--ignore", "ignore", multiple=True, help="Glob excluded from dependency resolution"
)
@click.option(
    "--watch-files",
    "watch_files",
    multiple=True,
    help="Watch only these paths; any change re-runs every test file",
)
@click.option("--watch-ignore", "watch_ignore", multiple=True, help="Glob excluded from watching")
@click.option(
    "--search-path",
    "search_paths",
    multiple=True,
    help="Extra directory searched when resolving imports",
)
@click.option(
    "--delay", "delay_ms", type=click.IntRange(min=0), default=None, help="Debounce window (ms)"
)
@click.option("--reset", is_flag=True, help="Discard persisted caches before starting")
@click.option(
    "--in-process/--subprocess",
    "in_process",
    default=None,
    help="Run pytest inside the watcher process instead of a fresh interpreter",
)
@click.option("--pytest-args", "pytest_args", default=None, help="Arguments passed to pytest")
@cli_decorators.cache_dir_option
def watch_cmd(
    spec: tuple[str, ...],
    ignore: tuple[str, ...],
    watch_files: tuple[str, ...],
    watch_ignore: tuple[str, ...],
    search_paths: tuple[str, ...],
    delay_ms: int | None,
    reset: bool,
    in_process: bool | None,
    pytest_args: str | None,
    cache_dir: pathlib.Path | None,
) -> None:
    """Watch files and re-run affected tests.

    SPEC names test files, directories or globs (default: tests).

    Examples:

        rewatch watch

        rewatch watch tests/unit --pytest-args "-x -q"

    Type 'rs' and Enter to re-run every test file.
    """
    root, cfg = cli_decorators.load_project_config(
        spec=list(spec) or None,
        ignore=list(ignore) or None,
        watch_files=list(watch_files) or None,
        watch_ignore=list(watch_ignore) or None,
        search_paths=list(search_paths) or None,
        delay_ms=delay_ms,
        in_process=in_process,
        pytest_args=shlex.split(pytest_args) if pytest_args is not None else None,
        cache_dir=str(cache_dir) if cache_dir is not None else None,
    )
    exit_code = engine.watch(root, cfg, console=console.get_console(), reset=reset)
    sys.exit(exit_code)
