from __future__ import annotations

import functools
import logging
import os
import pathlib
import unicodedata
from typing import TYPE_CHECKING

import pathspec

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

# Always excluded from watching, regardless of configured patterns
DEFAULT_WATCH_IGNORE = (
    "*.pyc",
    "*.pyo",
    "__pycache__/",
    ".git/",
    ".hg/",
    ".venv/",
    "venv/",
    ".rewatch/",
    ".pytest_cache/",
    "*.swp",
    "*~",
    ".#*",
)


class IgnoreFilter:
    """Matches paths against gitwildmatch glob patterns.

    Relative paths and absolute paths under ``root`` are matched relative to
    ``root``; absolute paths elsewhere are matched on their full spelling. The
    compiled spec is immutable, so one filter can be shared between the watcher
    thread and the event loop.
    """

    _root: pathlib.Path
    _patterns: tuple[str, ...]
    _spec: pathspec.PathSpec

    def __init__(self, patterns: Iterable[str], root: str | os.PathLike[str]) -> None:
        self._root = pathlib.Path(root)
        self._patterns = tuple(self._normalize_pattern(p) for p in patterns if p and p.strip())
        self._spec = _compile(self._patterns)

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def is_ignored(self, path: str | os.PathLike[str], *, is_dir: bool = False) -> bool:
        """Check if path matches any pattern."""
        if not self._patterns:
            return False
        path_str = self._normalize_path(path)
        if is_dir and not path_str.endswith("/"):
            path_str += "/"
        return self._spec.match_file(path_str)

    def filter_paths(self, paths: Iterable[str]) -> set[str]:
        """Return the subset of paths that are not ignored."""
        return {path for path in paths if not self.is_ignored(path)}

    def _normalize_path(self, path: str | os.PathLike[str]) -> str:
        """Normalize path: forward slashes, Unicode NFC, relative to root when inside it."""
        path_obj = pathlib.Path(path)
        path_str = str(path_obj).replace("\\", "/")
        if path_obj.is_absolute():
            try:
                path_str = str(path_obj.relative_to(self._root)).replace("\\", "/")
            except ValueError:
                path_str = path_str.lstrip("/")
        return unicodedata.normalize("NFC", path_str)

    def _normalize_pattern(self, pattern: str) -> str:
        """Anchor absolute patterns that point inside root."""
        pattern = unicodedata.normalize("NFC", pattern.strip().replace("\\", "/"))
        negated = pattern.startswith("!")
        body = pattern[1:] if negated else pattern
        body_path = pathlib.Path(body)
        if body_path.is_absolute():
            try:
                body = "/" + str(body_path.relative_to(self._root)).replace("\\", "/")
            except ValueError:
                body = body.lstrip("/")
        return f"!{body}" if negated else body


@functools.lru_cache(maxsize=32)
def _compile(patterns: tuple[str, ...]) -> pathspec.PathSpec:
    try:
        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)
    except ValueError as e:
        logger.warning(f"Failed to compile ignore patterns {list(patterns)}: {e}")
        return pathspec.PathSpec.from_lines("gitwildmatch", [])
