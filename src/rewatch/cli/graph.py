from __future__ import annotations

import json
import pathlib

import click

from rewatch import collect, config, module_map, project, resolver
from rewatch.cli import decorators as cli_decorators


@cli_decorators.rewatch_command("graph")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@cli_decorators.cache_dir_option
def graph(as_json: bool, cache_dir: pathlib.Path | None) -> None:
    """Show the dependency graph of known files.

    Each file is listed with the files it imports; test files are marked.
    """
    root, cfg = cli_decorators.load_project_config(
        cache_dir=str(cache_dir) if cache_dir is not None else None
    )
    entry_files = collect.collect_entry_files(root, cfg.spec, cfg.patterns, cfg.ignore)

    with module_map.ModuleMap.create(
        entry_files,
        cache_dir=config.get_cache_dir(cfg, root),
        cwd=root,
        ignore=cfg.ignore,
        resolver=resolver.PythonImportResolver(cfg.search_paths),
    ) as mm:
        data = mm.to_dict()
        entries = mm.entry_files

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    for filename, node in data.items():
        marker = " [test]" if filename in entries else ""
        click.echo(f"{project.relative_to_root(filename, root)}{marker}")
        for child in node["children"]:
            click.echo(f"  -> {project.relative_to_root(child, root)}")
