from __future__ import annotations

import pathlib

import click

from rewatch import config, module_map
from rewatch.cli import decorators as cli_decorators


@cli_decorators.rewatch_command("clear-cache")
@cli_decorators.cache_dir_option
def clear_cache(cache_dir: pathlib.Path | None) -> None:
    """Delete the persisted dependency graph and change cache.

    The next run re-resolves every file from scratch.
    """
    root, cfg = cli_decorators.load_project_config(
        cache_dir=str(cache_dir) if cache_dir is not None else None
    )
    resolved = config.get_cache_dir(cfg, root)
    with module_map.ModuleMap(cache_dir=resolved, cwd=root) as mm:
        mm.reset_caches()
    click.echo(f"Cleared cache in {resolved}")
