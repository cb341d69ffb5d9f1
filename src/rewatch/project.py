"""Project root detection and path normalization.

Finds the project root by locating .rewatch, .git or pyproject.toml markers, and
normalizes paths into the absolute string keys used by the module map.
"""

import logging
import os
import pathlib

logger = logging.getLogger(__name__)

_PROJECT_MARKERS = (".rewatch", ".git", "pyproject.toml")

_project_root_cache: pathlib.Path | None = None


def find_project_root() -> pathlib.Path:
    """Walk up from cwd to find a directory holding a project marker."""
    current = pathlib.Path.cwd().resolve()
    for parent in [current, *current.parents]:
        if any((parent / marker).exists() for marker in _PROJECT_MARKERS):
            logger.debug(f"Found project root: {parent}")
            return parent

    logger.warning("No project markers (.rewatch, .git, pyproject.toml) found, using cwd")
    return current


def get_project_root() -> pathlib.Path:
    """Get project root (cached after first call)."""
    global _project_root_cache
    if _project_root_cache is None:
        _project_root_cache = find_project_root()
        logger.info(f"Project root: {_project_root_cache}")
    return _project_root_cache


def normalize_path(path: str | os.PathLike[str], cwd: str | os.PathLike[str] | None = None) -> str:
    """Make path absolute against cwd without following symlinks.

    Module map keys are produced here so that watcher events, resolver output
    and user input all agree on one spelling per file.
    """
    base = pathlib.Path(cwd) if cwd is not None else get_project_root()
    p = pathlib.Path(path)
    abs_path = p if p.is_absolute() else base / p
    return os.path.normpath(abs_path)


def relative_to_root(path: str, root: pathlib.Path | None = None) -> str:
    """Return path relative to root for display, or unchanged if outside it."""
    base = root if root is not None else get_project_root()
    try:
        return str(pathlib.Path(path).relative_to(base))
    except ValueError:
        return path
