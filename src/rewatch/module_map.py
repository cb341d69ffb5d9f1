"""Persistent dependency graph between a project's files and its entry (test) files.

The map answers one question quickly: given some changed files, which entry
files must be re-run? It keeps a node per known file with its ``children``
(static dependencies) and ``parents`` (dependents), plus the set of entry files
whose dependency closure includes the file. The graph survives restarts through
a :class:`~rewatch.storage.graph_store.GraphStore`, and a
:class:`~rewatch.storage.change_cache.ChangeCache` tells which files changed
while nothing was watching.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import shutil
import threading
from typing import TYPE_CHECKING, Self

from rewatch import exceptions, project
from rewatch import resolver as resolver_mod
from rewatch.node import Node
from rewatch.storage import change_cache as change_cache_mod
from rewatch.storage import graph_store as graph_store_mod
from rewatch.types import AffectedFiles

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from rewatch.types import NodeData

logger = logging.getLogger(__name__)

CHANGE_CACHE_DIRNAME = "file-entry.lmdb"


def _open_change_cache(path: pathlib.Path) -> change_cache_mod.ChangeCache:
    """Open the change cache, wiping it once if it cannot be opened as-is."""
    try:
        return change_cache_mod.ChangeCache(path)
    except exceptions.PersistenceError as e:
        logger.warning(f"Discarding unreadable change cache, starting fresh: {e}")
        shutil.rmtree(path, ignore_errors=True)
        return change_cache_mod.ChangeCache(path)


class ModuleMap:
    """Graph of every known file, keyed by absolute filename.

    All public operations take the map's lock, so a map may be driven from
    worker threads. Nodes are owned by the map; callers mutate only through
    map operations.
    """

    _cwd: str
    _entry_files: set[str]
    _ignore: tuple[str, ...]
    _resolver: resolver_mod.DependencyResolver
    _change_cache: change_cache_mod.ChangeCache
    _graph_store: graph_store_mod.GraphStore
    _nodes: dict[str, Node]
    _lock: threading.RLock
    _initialized: bool

    def __init__(
        self,
        entry_files: Iterable[str] = (),
        *,
        cache_dir: str | os.PathLike[str],
        cwd: str | os.PathLike[str],
        ignore: Iterable[str] = (),
        resolver: resolver_mod.DependencyResolver | None = None,
        change_cache: change_cache_mod.ChangeCache | None = None,
        graph_store: graph_store_mod.GraphStore | None = None,
    ) -> None:
        self._cwd = os.path.normpath(os.path.abspath(cwd))
        self._entry_files = {project.normalize_path(f, self._cwd) for f in entry_files}
        self._ignore = tuple(ignore)
        self._resolver = resolver if resolver is not None else resolver_mod.PythonImportResolver()
        cache_path = pathlib.Path(cache_dir)
        if change_cache is None:
            change_cache = _open_change_cache(cache_path / CHANGE_CACHE_DIRNAME)
        if graph_store is None:
            graph_store = graph_store_mod.GraphStore(
                cache_path / graph_store_mod.GRAPH_STORE_FILENAME
            )
        self._change_cache = change_cache
        self._graph_store = graph_store
        self._nodes = dict[str, Node]()
        self._lock = threading.RLock()
        self._initialized = False

    @classmethod
    def create(
        cls,
        entry_files: Iterable[str] = (),
        *,
        cache_dir: str | os.PathLike[str],
        cwd: str | os.PathLike[str],
        ignore: Iterable[str] = (),
        resolver: resolver_mod.DependencyResolver | None = None,
        change_cache: change_cache_mod.ChangeCache | None = None,
        graph_store: graph_store_mod.GraphStore | None = None,
        reset: bool = False,
    ) -> ModuleMap:
        """Construct and initialize a module map."""
        module_map = cls(
            entry_files,
            cache_dir=cache_dir,
            cwd=cwd,
            ignore=ignore,
            resolver=resolver,
            change_cache=change_cache,
            graph_store=graph_store,
        )
        module_map.init(reset=reset)
        return module_map

    @property
    def cwd(self) -> str:
        return self._cwd

    @property
    def ignore(self) -> tuple[str, ...]:
        return self._ignore

    @property
    def entry_files(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._entry_files)

    @property
    def files(self) -> set[str]:
        """Every known filename."""
        with self._lock:
            return set(self._nodes)

    @property
    def directories(self) -> set[str]:
        """Parent directories of every known file."""
        with self._lock:
            return {os.path.dirname(filename) for filename in self._nodes}

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get(self, filename: str) -> Node | None:
        with self._lock:
            return self._nodes.get(project.normalize_path(filename, self._cwd))

    def __contains__(self, filename: object) -> bool:
        if not isinstance(filename, str):
            return False
        with self._lock:
            return project.normalize_path(filename, self._cwd) in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._nodes))

    def init(self, reset: bool = False) -> list[exceptions.DependencyResolutionError]:
        """Load persisted state, refresh what changed since, and persist again.

        Returns the resolution errors raised while re-populating changed files.
        """
        with self._lock:
            if self._initialized:
                raise exceptions.AlreadyInitializedError("Module map is already initialized")
            self._initialized = True

            if reset:
                self.reset_caches()
            else:
                self.merge_from_cache(destructive=True)

            added = list[Node]()
            for filename in sorted(self._entry_files - self._nodes.keys()):
                node = Node.create(filename)
                self._nodes[filename] = node
                added.append(node)
            if added:
                logger.debug(f"Added {len(added)} new entry files")

            changed = self._change_cache.get_changed_files(self._nodes)
            logger.debug(f"Found {len(changed)} changed out of {len(self._nodes)} known files")
            for filename in sorted(changed):
                if filename in self._nodes and not os.path.exists(filename):
                    logger.debug(f"Dropping file removed since last run: {filename}")
                    self._delete(filename)
            seeds = {node.filename: node for node in added if node.filename in self._nodes}
            for filename in sorted(changed):
                if filename in self._nodes:
                    seeds[filename] = self._nodes[filename]
            errors = self.populate(seeds.values(), force=True) if seeds else []

            try:
                self.save()
            except exceptions.PersistenceError as e:
                logger.warning(f"Failed to save module map, keeping the in-memory graph: {e}")
            logger.info(
                f"Module map ready: {len(self._nodes)} files, {len(self._entry_files)} entry files"
            )
            return errors

    def reset_caches(self) -> None:
        """Destroy both persisted caches. In-memory nodes are untouched."""
        with self._lock:
            self._change_cache.reset()
            self._graph_store.destroy()
            logger.debug(f"Destroyed persisted caches for {self._cwd}")

    def merge_from_cache(self, destructive: bool = False) -> None:
        """Load every stored node into memory, optionally clearing memory first."""
        with self._lock:
            stored = self._graph_store.load()
            if destructive:
                self._nodes.clear()
                logger.debug("Cleared in-memory module map")
            for data in stored.values():
                node = Node.from_dict(data)
                self._nodes[node.filename] = node
            logger.debug(f"Added {len(stored)} files to map from cache")

    def populate(
        self, nodes: Iterable[Node], force: bool = False
    ) -> list[exceptions.DependencyResolutionError]:
        """Resolve dependencies reachable from nodes and add them to the map.

        A node is re-resolved when ``force`` is set or its file changed;
        otherwise its recorded children are reused. Every reachable child is
        tagged with the entry files owning the seed it was reached from.
        """
        with self._lock:
            errors = list[exceptions.DependencyResolutionError]()
            stack = list[tuple[Node, frozenset[str]]]()
            seen = set[str]()
            resolved = set[str]()
            dropped = set[str]()

            for node in nodes:
                owners = set(node.entry_files)
                if node.filename in self._entry_files:
                    owners.add(node.filename)
                seen.add(node.filename)
                stack.append((node, frozenset(owners)))
            logger.debug(f"Populating from {[node.filename for node, _ in stack]}")

            while stack:
                node, owners = stack.pop()
                if node.filename not in resolved and (
                    force or self._change_cache.has_changed(node.filename)
                ):
                    resolved.add(node.filename)
                    children = self._resolve(node.filename, errors)
                    for old_child in node.children - children:
                        if (old_node := self._nodes.get(old_child)) is not None:
                            old_node.parents.discard(node.filename)
                            dropped.add(old_child)
                    node.children = children
                    logger.debug(f"Added {len(children)} children to {node.filename}")

                for child in sorted(node.children):
                    child_node = self._nodes.get(child)
                    if child_node is None:
                        child_node = Node.create(child)
                        self._nodes[child] = child_node
                    gained_owners = not owners <= child_node.entry_files
                    child_node.entry_files |= owners
                    child_node.parents.add(node.filename)
                    if child not in seen or gained_owners:
                        seen.add(child)
                        stack.append((child_node, owners))

            for filename in sorted(dropped):
                orphan = self._nodes.get(filename)
                if orphan is not None and not orphan.parents and filename not in self._entry_files:
                    logger.debug(f"Pruning orphaned dependency {filename}")
                    self._delete(filename)
            if dropped:
                self._retag(dropped)
            return errors

    def _retag(self, filenames: Iterable[str]) -> None:
        """Rebuild entry_files for filenames and everything below them.

        Tags are recomputed from parents outside the subtree and then pushed
        down until nothing changes, so cycles settle.
        """
        subtree = set[str]()
        stack = [f for f in filenames if f in self._nodes]
        while stack:
            name = stack.pop()
            if name in subtree:
                continue
            subtree.add(name)
            stack.extend(c for c in self._nodes[name].children if c in self._nodes)

        for name in subtree:
            node = self._nodes[name]
            node.entry_files = set[str]()
            for parent in node.parents:
                if parent in subtree or (parent_node := self._nodes.get(parent)) is None:
                    continue
                node.entry_files |= parent_node.entry_files
                if parent in self._entry_files:
                    node.entry_files.add(parent)

        work = sorted(subtree)
        while work:
            node = self._nodes[work.pop()]
            owners = set(node.entry_files)
            if node.filename in self._entry_files:
                owners.add(node.filename)
            for child in node.children:
                child_node = self._nodes.get(child)
                if child_node is None or child not in subtree:
                    continue
                if not owners <= child_node.entry_files:
                    child_node.entry_files |= owners
                    work.append(child)
        logger.debug(f"Recomputed entry files for {len(subtree)} files")

    def _resolve(
        self, filename: str, errors: list[exceptions.DependencyResolutionError]
    ) -> set[str]:
        if not os.path.exists(filename):
            logger.debug(f"{filename} no longer exists; it has no dependencies")
            return set()
        try:
            children = self.find_dependencies(filename)
        except exceptions.DependencyResolutionError as e:
            logger.warning(f"{e}; treating {filename} as having no dependencies")
            errors.append(e)
            return set()
        children.discard(filename)
        return children

    def find_dependencies(self, filename: str) -> set[str]:
        """Resolve the direct dependencies of filename."""
        filename = project.normalize_path(filename, self._cwd)
        deps = self._resolver.resolve(filename, cwd=self._cwd, ignore=self._ignore)
        return {project.normalize_path(dep, self._cwd) for dep in deps}

    def find_affected_files(
        self, changed_files: Iterable[str] = (), mark_changed: Iterable[str] = ()
    ) -> AffectedFiles:
        """Compute every file (and entry file) affected by changed_files.

        With no changed_files, the change cache decides what changed and is
        persisted afterwards.
        """
        with self._lock:
            force = False
            for filename in mark_changed:
                try:
                    self.mark_file_as_changed(filename)
                except exceptions.PersistenceError as e:
                    logger.warning(f"Cannot mark {filename} as changed, re-resolving anyway: {e}")
                    force = True

            files = {project.normalize_path(f, self._cwd) for f in changed_files}
            derived = not files
            if derived:
                files = self._change_cache.get_changed_files(self._nodes)
                logger.debug(f"Found {len(files)} changed out of {len(self._nodes)} known files")

            nodes = [self._nodes[f] for f in sorted(files) if f in self._nodes]
            logger.debug(f"Found {len(nodes)} existing nodes from {len(files)} filename(s)")
            if not nodes:
                if derived:
                    self._persist_quietly()
                logger.debug("No changed files")
                return AffectedFiles.empty()

            errors = self.populate(nodes, force=force)
            if derived:
                self._persist_quietly()

            all_files = {node.filename for node in nodes}
            for node in nodes:
                affected = set(node.entry_files)
                if node.filename in self._entry_files:
                    affected.add(node.filename)
                stack = list(node.parents)
                while stack:
                    parent = stack.pop()
                    if parent in affected:
                        continue
                    affected.add(parent)
                    if (parent_node := self._nodes.get(parent)) is not None:
                        stack.extend(parent_node.parents)
                logger.debug(f"Change in {node.filename} affected {len(affected)} files")
                all_files |= affected

            entry_files = set(self.filter_entry_files(all_files))
            return AffectedFiles(all_files=all_files, entry_files=entry_files, errors=errors)

    def delete(self, filename: str) -> bool:
        """Remove a file, cascading into dependencies left without dependents.

        Returns False if the file was not known.
        """
        with self._lock:
            filename = project.normalize_path(filename, self._cwd)
            if filename not in self._nodes:
                return False
            self._delete(filename)
            return True

    def _delete(self, filename: str) -> None:
        work = [filename]
        while work:
            name = work.pop()
            node = self._nodes.pop(name, None)
            if node is None:
                continue
            for child in node.children:
                child_node = self._nodes.get(child)
                if child_node is None:
                    continue
                child_node.parents.discard(name)
                if not child_node.parents:
                    logger.debug(f"Cascading delete: {child}")
                    work.append(child)
            for parent in node.parents:
                if (parent_node := self._nodes.get(parent)) is not None:
                    parent_node.children.discard(name)
            if name in self._entry_files:
                self._entry_files.discard(name)
                for other in self._nodes.values():
                    other.entry_files.discard(name)

    def add_entry_file(self, filename: str) -> list[exceptions.DependencyResolutionError]:
        """Mark filename as an entry file, adding and populating it if new."""
        with self._lock:
            filename = project.normalize_path(filename, self._cwd)
            self._entry_files.add(filename)
            if filename in self._nodes:
                logger.debug(f"Marked file {filename} as an entry file")
                return []
            node = Node.create(filename)
            self._nodes[filename] = node
            logger.debug(f"Added new entry file {filename}")
            return self.populate([node])

    def filter_entry_files(self, files: Iterable[str]) -> list[str]:
        """Return those of files that are entry files, in input order."""
        with self._lock:
            return [f for f in files if f in self._entry_files]

    def mark_file_as_changed(self, filename: str) -> None:
        self._change_cache.mark_changed(project.normalize_path(filename, self._cwd))

    def _persist_quietly(self) -> None:
        try:
            self._change_cache.persist(self._nodes)
        except exceptions.PersistenceError as e:
            logger.warning(f"Failed to persist change cache: {e}")

    def get_changed_files(self) -> set[str]:
        """Known files changed since last observed. Persists the change cache."""
        with self._lock:
            changed = self._change_cache.get_changed_files(self._nodes)
            self._change_cache.persist(self._nodes)
            return changed

    def save(self) -> None:
        """Persist both caches from the in-memory graph."""
        with self._lock:
            self._change_cache.persist(self._nodes)
            self._graph_store.replace(node.to_dict() for node in self._nodes.values())
            logger.debug(f"Saved module map ({len(self._nodes)} files)")

    def to_dict(self) -> dict[str, NodeData]:
        """Stable representation sorted by filename."""
        with self._lock:
            return {f: self._nodes[f].to_dict() for f in sorted(self._nodes)}

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def close(self) -> None:
        self._change_cache.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
