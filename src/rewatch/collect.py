"""Entry (test) file discovery."""

from __future__ import annotations

import fnmatch
import glob
import logging
import os
import pathlib
from typing import TYPE_CHECKING

from rewatch import ignore as ignore_mod
from rewatch import project

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = logging.getLogger(__name__)

DEFAULT_SPEC = ("tests",)
DEFAULT_PATTERNS = ("test_*.py", "*_test.py")

_GLOB_CHARS = frozenset("*?[")


def _matches(filename: str, patterns: Sequence[str]) -> bool:
    name = os.path.basename(filename)
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)


def _walk(
    directory: pathlib.Path, patterns: Sequence[str], ignored: ignore_mod.IgnoreFilter
) -> list[str]:
    found = list[str]()
    for dirpath, dirnames, filenames in os.walk(directory):
        # Prune in place so os.walk skips ignored and hidden directories
        dirnames[:] = sorted(
            d
            for d in dirnames
            if not d.startswith(".")
            and d != "__pycache__"
            and not ignored.is_ignored(os.path.join(dirpath, d), is_dir=True)
        )
        found.extend(
            os.path.join(dirpath, name) for name in filenames if _matches(name, patterns)
        )
    return found


def _walks_to(
    directory: str, filename: str, patterns: Sequence[str], ignored: ignore_mod.IgnoreFilter
) -> bool:
    """Whether _walk(directory) would yield filename."""
    rel = os.path.relpath(filename, directory)
    if rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return False
    current = directory
    for part in rel.split(os.sep)[:-1]:
        current = os.path.join(current, part)
        if part.startswith(".") or part == "__pycache__":
            return False
        if ignored.is_ignored(current, is_dir=True):
            return False
    return _matches(filename, patterns)


def collect_entry_files(
    cwd: str | os.PathLike[str],
    spec: Iterable[str] = DEFAULT_SPEC,
    patterns: Sequence[str] = DEFAULT_PATTERNS,
    ignore: Iterable[str] = (),
) -> list[str]:
    """Expand spec entries (files, directories or globs) into test file paths.

    Explicitly named files are kept even when they do not match patterns.
    Returns sorted absolute paths without duplicates.
    """
    root = pathlib.Path(cwd)
    ignored = ignore_mod.IgnoreFilter(ignore, root)
    files = set[str]()

    for entry in spec:
        candidates: list[str]
        is_glob = bool(_GLOB_CHARS.intersection(entry))
        if is_glob:
            pattern = entry if os.path.isabs(entry) else str(root / entry)
            candidates = sorted(glob.glob(pattern, recursive=True))
        else:
            candidates = [str(root / entry)]
        if not candidates:
            logger.warning(f"No files match '{entry}'")

        for candidate in candidates:
            path = pathlib.Path(candidate)
            if path.is_dir():
                files.update(_walk(path, patterns, ignored))
            elif path.is_file():
                if not is_glob or _matches(candidate, patterns):
                    files.add(candidate)
            else:
                logger.warning(f"Test path does not exist: {entry}")

    result = sorted(
        normalized
        for normalized in (project.normalize_path(f, root) for f in files)
        if not ignored.is_ignored(normalized)
    )
    logger.debug(f"Collected {len(result)} entry files")
    return result


def is_entry_file(
    path: str | os.PathLike[str],
    *,
    cwd: str | os.PathLike[str],
    spec: Iterable[str] = DEFAULT_SPEC,
    patterns: Sequence[str] = DEFAULT_PATTERNS,
    ignore: Iterable[str] = (),
) -> bool:
    """Check whether path would be collected as an entry file.

    Answers for a single path without walking the spec directories.
    """
    root = pathlib.Path(cwd)
    filename = project.normalize_path(path, root)
    if not os.path.isfile(filename):
        return False
    ignored = ignore_mod.IgnoreFilter(ignore, root)
    if ignored.is_ignored(filename):
        return False

    for entry in spec:
        is_glob = bool(_GLOB_CHARS.intersection(entry))
        if is_glob:
            pattern = entry if os.path.isabs(entry) else str(root / entry)
            candidates = glob.glob(pattern, recursive=True)
        else:
            candidates = [str(root / entry)]
        for candidate in candidates:
            normalized = project.normalize_path(candidate, root)
            if normalized == filename:
                if not is_glob or _matches(filename, patterns):
                    return True
            elif os.path.isdir(normalized) and _walks_to(normalized, filename, patterns, ignored):
                return True
    return False
