from __future__ import annotations

import json
import pathlib

import click

from rewatch import collect, config, module_map, project, resolver
from rewatch.cli import decorators as cli_decorators


@cli_decorators.rewatch_command("affected")
@click.argument("files", nargs=-1, required=True)
@click.option("--all", "all_files", is_flag=True, help="List every affected file, not only tests")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@cli_decorators.cache_dir_option
def affected(
    files: tuple[str, ...], all_files: bool, as_json: bool, cache_dir: pathlib.Path | None
) -> None:
    """Show test files affected by changes to FILES.

    Updates the persisted dependency graph as a side effect.

    Examples:

        rewatch affected src/app/models.py

        rewatch affected --all --json src/app/models.py
    """
    root, cfg = cli_decorators.load_project_config(
        cache_dir=str(cache_dir) if cache_dir is not None else None
    )
    entry_files = collect.collect_entry_files(root, cfg.spec, cfg.patterns, cfg.ignore)
    cwd = pathlib.Path.cwd()
    changed = [project.normalize_path(f, cwd) for f in files]

    with module_map.ModuleMap.create(
        entry_files,
        cache_dir=config.get_cache_dir(cfg, root),
        cwd=root,
        ignore=cfg.ignore,
        resolver=resolver.PythonImportResolver(cfg.search_paths),
    ) as mm:
        result = mm.find_affected_files(changed)
        mm.save()

    for error in result.errors:
        click.echo(f"Warning: {error.format_user_message()}", err=True)

    selected = sorted(result.all_files if all_files else result.entry_files)
    if as_json:
        key = "all_files" if all_files else "entry_files"
        click.echo(json.dumps({key: selected}, indent=2))
        return
    for filename in selected:
        click.echo(project.relative_to_root(filename, root))
