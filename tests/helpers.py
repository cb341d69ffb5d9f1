"""Shared test helpers: a scriptable resolver and small file utilities."""

from __future__ import annotations

import os
import pathlib
from typing import TYPE_CHECKING

import anyio

from rewatch import exceptions
from rewatch.types import RunOutcome

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from rewatch.types import NodeData


class FakeResolver:
    """Resolver driven by an explicit adjacency mapping of absolute paths."""

    graph: dict[str, set[str]]
    failing: set[str]
    calls: list[str]

    def __init__(self, graph: Mapping[str, Iterable[str]] | None = None) -> None:
        self.graph = {k: set(v) for k, v in (graph or {}).items()}
        self.failing = set[str]()
        self.calls = list[str]()

    def resolve(self, filename: str, *, cwd: str, ignore: Iterable[str] = ()) -> set[str]:
        self.calls.append(filename)
        if filename in self.failing:
            raise exceptions.DependencyResolutionError(filename, "invalid syntax")
        return set(self.graph.get(filename, ()))


def write_files(root: pathlib.Path, *names: str) -> dict[str, str]:
    """Create files under root; returns name -> absolute path string."""
    paths = dict[str, str]()
    for name in names:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"# {name}\n")
        paths[name] = str(path)
    return paths


def modify(path: str) -> None:
    """Change a file's content and push its mtime forward."""
    p = pathlib.Path(path)
    before = p.stat()
    p.write_text(p.read_text() + "# changed\n")
    os.utime(p, ns=(before.st_atime_ns, before.st_mtime_ns + 1_000_000_000))


def assert_symmetric(data: Mapping[str, NodeData]) -> None:
    """Every child edge has a matching parent edge and vice versa."""
    for filename, node in data.items():
        for child in node["children"]:
            assert child in data, f"{filename} -> missing child {child}"
            assert filename in data[child]["parents"]
        for parent in node["parents"]:
            assert parent in data, f"{filename} <- missing parent {parent}"
            assert filename in data[parent]["children"]


class RecordingExecutor:
    """Executor double that records each batch and can be held mid-run.

    Must be created inside a running event loop.
    """

    runs: list[list[str]]
    cleared: list[set[str]]
    exit_code: int
    error: Exception | None
    release: anyio.Event | None
    started: anyio.Event
    active: int
    max_active: int

    def __init__(self, *, exit_code: int = 0, hold: bool = False) -> None:
        self.runs = list[list[str]]()
        self.cleared = list[set[str]]()
        self.exit_code = exit_code
        self.error = None
        self.release = anyio.Event() if hold else None
        self.started = anyio.Event()
        self.active = 0
        self.max_active = 0

    async def run(self, entry_files: Sequence[str]) -> RunOutcome:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.runs.append(list(entry_files))
        self.started.set()
        try:
            if self.release is not None:
                await self.release.wait()
            if self.error is not None:
                raise self.error
            return RunOutcome(exit_code=self.exit_code, entry_files=tuple(entry_files))
        finally:
            self.active -= 1

    def clear_modules(self, files: Iterable[str]) -> int:
        self.cleared.append(set(files))
        return len(self.cleared[-1])

    async def wait_for_runs(self, count: int) -> None:
        with anyio.fail_after(5):
            while len(self.runs) < count or self.active:
                await anyio.sleep(0.01)
