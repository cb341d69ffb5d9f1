"""Static dependency extraction for Python source files.

Only ``import`` statements are inspected; modules that do not map to a file
under one of the search roots (stdlib, site-packages) are dropped.
"""

from __future__ import annotations

import ast
import logging
import os
import pathlib
from typing import TYPE_CHECKING, Protocol

from rewatch import exceptions, ignore as ignore_mod

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = logging.getLogger(__name__)


class DependencyResolver(Protocol):
    """Returns the files a given file statically depends on."""

    def resolve(self, filename: str, *, cwd: str, ignore: Iterable[str] = ()) -> set[str]:
        """Raises DependencyResolutionError when filename cannot be analyzed."""
        ...


def _find_module(root: pathlib.Path, parts: Sequence[str]) -> list[pathlib.Path] | None:
    """Map a dotted module path to files under root.

    Returns the module file followed by every package __init__.py on the way,
    or None if the module does not live under root.
    """
    found = list[pathlib.Path]()
    current = root
    for i, part in enumerate(parts):
        current = current / part
        is_last = i == len(parts) - 1
        init = current / "__init__.py"
        if is_last:
            module_file = current.with_suffix(".py")
            if module_file.is_file():
                found.append(module_file)
            elif init.is_file():
                found.append(init)
            elif not current.is_dir():
                return None
        elif init.is_file():
            found.append(init)
        elif not current.is_dir():
            return None
    return found


def _package_root(filename: pathlib.Path) -> pathlib.Path:
    """First ancestor directory that is not a package, as pytest inserts into sys.path."""
    current = filename.parent
    while (current / "__init__.py").is_file() and current.parent != current:
        current = current.parent
    return current


class PythonImportResolver:
    """Resolve ``import`` and ``from ... import`` statements to project files."""

    _search_paths: tuple[str, ...]

    def __init__(self, search_paths: Iterable[str | os.PathLike[str]] | None = None) -> None:
        self._search_paths = tuple(os.fspath(p) for p in search_paths or ())

    @property
    def search_paths(self) -> tuple[str, ...]:
        return self._search_paths

    def _roots(self, filename: pathlib.Path, cwd: pathlib.Path) -> list[pathlib.Path]:
        roots = [cwd]
        src = cwd / "src"
        if src.is_dir():
            roots.append(src)
        roots.extend(cwd / p for p in self._search_paths)
        roots.append(_package_root(filename))
        return list(dict.fromkeys(roots))

    def resolve(self, filename: str, *, cwd: str, ignore: Iterable[str] = ()) -> set[str]:
        path = pathlib.Path(filename)
        try:
            source = path.read_bytes()
        except OSError as e:
            raise exceptions.DependencyResolutionError(filename, e.strerror or str(e)) from e
        try:
            tree = ast.parse(source, filename=filename)
        except (SyntaxError, ValueError) as e:
            raise exceptions.DependencyResolutionError(filename, str(e)) from e

        cwd_path = pathlib.Path(cwd)
        roots = self._roots(path, cwd_path)
        found = set[pathlib.Path]()

        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    found.update(self._resolve_absolute(roots, alias.name.split(".")))
            elif isinstance(node, ast.ImportFrom):
                names = [alias.name for alias in node.names if alias.name != "*"]
                module_parts = node.module.split(".") if node.module else []
                if node.level:
                    base = path.parent
                    for _ in range(node.level - 1):
                        base = base.parent
                    found.update(self._resolve_from([base], module_parts, names))
                elif module_parts:
                    found.update(self._resolve_from(roots, module_parts, names))

        deps = {os.path.normpath(p) for p in found}
        deps.discard(os.path.normpath(filename))
        if ignore_patterns := tuple(ignore):
            deps = ignore_mod.IgnoreFilter(ignore_patterns, cwd_path).filter_paths(deps)
        logger.debug(f"Resolved {len(deps)} dependencies for {filename}")
        return deps

    def _resolve_absolute(
        self, roots: Sequence[pathlib.Path], parts: Sequence[str]
    ) -> list[pathlib.Path]:
        for root in roots:
            files = _find_module(root, parts)
            if files is not None:
                return files
        return []

    def _resolve_from(
        self, roots: Sequence[pathlib.Path], module_parts: Sequence[str], names: Sequence[str]
    ) -> list[pathlib.Path]:
        """``from module import a, b``: the module itself plus any submodules named."""
        for root in roots:
            if module_parts:
                files = _find_module(root, module_parts)
            else:
                files = [init] if (init := root / "__init__.py").is_file() else []
            if files is None:
                continue
            for name in names:
                submodule = _find_module(root, [*module_parts, name])
                if submodule:
                    files.extend(submodule)
            return files
        return []


_default_resolver = PythonImportResolver()


def resolve_dependencies(filename: str, *, cwd: str, ignore: Iterable[str] = ()) -> set[str]:
    """Resolve filename with the default import resolver."""
    return _default_resolver.resolve(filename, cwd=cwd, ignore=ignore)
