"""Persistent adjacency of the module map, one JSON document per cache directory."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import pathlib
import tempfile
from typing import TYPE_CHECKING, cast

from rewatch import exceptions
from rewatch.types import NodeData

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

GRAPH_STORE_FILENAME = "module-map.cache.json"


def atomic_write_file(
    dest: pathlib.Path,
    write_fn: Callable[[int], None],
    mode: int = 0o644,
) -> None:
    """Atomically write to dest using temp file + rename pattern.

    Args:
        dest: Target file path.
        write_fn: Function that receives the file descriptor and writes content.
                  MUST close fd (typically via os.fdopen which takes ownership).
        mode: File permissions (default 0o644).
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=dest.parent, suffix=".tmp")
    tmp = pathlib.Path(tmp_path)
    fd_closed = False
    try:
        write_fn(fd)
        fd_closed = True
        os.chmod(tmp_path, mode)
        tmp.replace(dest)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    finally:
        if not fd_closed:
            with contextlib.suppress(OSError):
                os.close(fd)


def _is_node_data(value: object) -> bool:
    if not isinstance(value, dict):
        return False
    data = cast("dict[str, object]", value)
    if not isinstance(data.get("filename"), str):
        return False
    return all(
        isinstance(data.get(key, []), list) for key in ("entry_files", "children", "parents")
    )


class GraphStore:
    """Key-value store of serialized nodes, keyed by filename.

    A missing, empty or unreadable file loads as an empty store (with a
    warning for the unreadable case); writes replace the whole document.
    """

    _path: pathlib.Path

    def __init__(self, path: pathlib.Path) -> None:
        self._path = path

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def load(self) -> dict[str, NodeData]:
        """Read every stored node."""
        try:
            text = self._path.read_text()
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning(f"Cannot read module map cache {self._path}, starting fresh: {e}")
            return {}
        if not text.strip():
            return {}
        try:
            raw: object = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Module map cache {self._path} is corrupt, starting fresh: {e}")
            return {}
        if not isinstance(raw, dict):
            logger.warning(f"Module map cache {self._path} has unexpected shape, starting fresh")
            return {}

        nodes = dict[str, NodeData]()
        for key, value in cast("dict[str, object]", raw).items():
            if not _is_node_data(value):
                logger.warning(f"Skipping malformed module map cache entry: {key}")
                continue
            nodes[key] = cast("NodeData", value)
        return nodes

    def replace(self, nodes: Iterable[NodeData]) -> None:
        """Replace the stored contents with exactly nodes."""
        payload = {node["filename"]: node for node in nodes}

        def write(fd: int) -> None:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2, sort_keys=True)

        try:
            atomic_write_file(self._path, write)
        except OSError as e:
            raise exceptions.PersistenceError(
                f"Cannot write module map cache {self._path}: {e}"
            ) from e
        logger.debug(f"Wrote {len(payload)} nodes to {self._path}")

    def destroy(self) -> None:
        """Delete the stored document."""
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise exceptions.PersistenceError(
                f"Cannot delete module map cache {self._path}: {e}"
            ) from e
