from __future__ import annotations

import collections
import logging
import os
import pathlib
from typing import TYPE_CHECKING, NamedTuple

import watchfiles

from rewatch import project

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Set

    from watchfiles import Change

    from rewatch.ignore import IgnoreFilter

logger = logging.getLogger(__name__)


class ChangeBatch(NamedTuple):
    """One watcher batch reduced to a final state per path."""

    added: set[str]
    modified: set[str]
    deleted: set[str]

    def __bool__(self) -> bool:
        return bool(self.added or self.modified or self.deleted)


def collect_watch_paths(root: pathlib.Path, watch_files: Iterable[str] = ()) -> list[pathlib.Path]:
    """Paths handed to the watcher: the explicit watch_files if any, else the project root.

    Missing explicit paths are skipped with a warning; the watcher rejects them.
    """
    if not watch_files:
        return [root]
    paths = list[pathlib.Path]()
    for entry in watch_files:
        path = pathlib.Path(project.normalize_path(entry, root))
        if path.exists():
            paths.append(path)
        else:
            logger.warning(f"Watch path does not exist, skipping: {entry}")
    return paths


def create_watch_filter(ignore_filter: IgnoreFilter | None = None) -> Callable[[Change, str], bool]:
    """Create filter for watch mode file events.

    Applied in the watcher before events reach the event loop: ignored paths
    and bytecode never produce a batch.
    """

    def watch_filter(change: Change, path: str) -> bool:
        _ = change
        if ignore_filter is not None and ignore_filter.is_ignored(path):
            return False
        # Bytecode is filtered even when no ignore_filter is given
        return not (path.endswith((".pyc", ".pyo")) or "__pycache__" in path)

    return watch_filter


def group_changes(changes: Set[tuple[Change, str]], root: pathlib.Path) -> ChangeBatch:
    """Collapse a batch into one event per path, judged by whether the path exists now.

    Editors that save through a temp file and rename produce delete+add pairs
    for a file that still exists; those collapse into a modification.
    """
    kinds = collections.defaultdict[str, set[watchfiles.Change]](set)
    for change, path in changes:
        kinds[project.normalize_path(path, root)].add(change)

    batch = ChangeBatch(added=set(), modified=set(), deleted=set())
    for path, seen in kinds.items():
        if not os.path.exists(path):
            batch.deleted.add(path)
        elif seen == {watchfiles.Change.added}:
            batch.added.add(path)
        else:
            batch.modified.add(path)
    return batch
