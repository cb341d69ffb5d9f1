"""Test executors: how a batch of entry files actually gets run."""

from __future__ import annotations

import functools
import importlib
import logging
import os
import pathlib
import sys
from typing import TYPE_CHECKING, Protocol

import anyio
import anyio.to_thread
import pytest

from rewatch.types import RunOutcome

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = logging.getLogger(__name__)


class TestExecutor(Protocol):
    """Runs entry files and invalidates modules cached between runs."""

    async def run(self, entry_files: Sequence[str]) -> RunOutcome:
        """Run entry_files; an empty sequence runs every collected test."""
        ...

    def clear_modules(self, files: Iterable[str]) -> int:
        """Forget cached modules for files. Returns the count cleared."""
        ...


def _get_pyc_paths(source_path: str) -> list[pathlib.Path]:
    """Get every __pycache__/*.pyc path for a source file."""
    source = pathlib.Path(source_path)
    if source.suffix != ".py":
        return []
    # Matches every interpreter tag, e.g. helpers.cpython-313.pyc
    return list((source.parent / "__pycache__").glob(f"{source.stem}.*.pyc"))


def clear_modules(files: Iterable[str]) -> int:
    """Remove modules loaded from files out of sys.modules, with their bytecode caches.

    Returns the count of cleared modules.
    """
    targets = {os.path.normpath(f) for f in files}
    if not targets:
        return 0
    to_remove = list[str]()

    # Copy to list to avoid RuntimeError if another thread imports during iteration
    for name, module in list(sys.modules.items()):
        # sys.modules values can be None for failed imports
        if module is None:  # pyright: ignore[reportUnnecessaryComparison]
            continue
        module_file = getattr(module, "__file__", None)
        if not isinstance(module_file, str):
            continue
        if os.path.normpath(module_file) in targets:
            to_remove.append(name)

    for name in to_remove:
        del sys.modules[name]
        logger.debug(f"Cleared module from cache: {name}")

    for source in targets:
        for pyc_path in _get_pyc_paths(source):
            try:
                pyc_path.unlink(missing_ok=True)
                logger.debug(f"Removed bytecode cache: {pyc_path}")
            except OSError as e:
                logger.debug(f"Could not remove bytecode cache {pyc_path}: {e}")

    importlib.invalidate_caches()
    return len(to_remove)


class SubprocessExecutor:
    """Runs pytest in a fresh interpreter per batch."""

    _pytest_args: tuple[str, ...]
    _python: str
    _cwd: str | None

    def __init__(
        self,
        pytest_args: Iterable[str] = (),
        python: str = sys.executable,
        cwd: str | os.PathLike[str] | None = None,
    ) -> None:
        self._pytest_args = tuple(pytest_args)
        self._python = python
        self._cwd = os.fspath(cwd) if cwd is not None else None

    @property
    def pytest_args(self) -> tuple[str, ...]:
        return self._pytest_args

    def command(self, entry_files: Sequence[str]) -> list[str]:
        return [self._python, "-m", "pytest", *self._pytest_args, *entry_files]

    async def run(self, entry_files: Sequence[str]) -> RunOutcome:
        command = self.command(entry_files)
        logger.debug(f"Running {command}")
        # stdout/stderr of None inherit the terminal
        result = await anyio.run_process(
            command, cwd=self._cwd, check=False, stdout=None, stderr=None
        )
        return RunOutcome(exit_code=result.returncode, entry_files=tuple(entry_files))

    def clear_modules(self, files: Iterable[str]) -> int:
        # Nothing is cached in this process; only the import finders need a refresh
        importlib.invalidate_caches()
        return 0


class InProcessExecutor:
    """Runs pytest.main in a worker thread of this process.

    Faster start-up than a subprocess, at the cost of sharing sys.modules with
    the watcher; changed modules are evicted before every run.
    """

    _pytest_args: tuple[str, ...]

    def __init__(self, pytest_args: Iterable[str] = ()) -> None:
        self._pytest_args = tuple(pytest_args)

    @property
    def pytest_args(self) -> tuple[str, ...]:
        return self._pytest_args

    async def run(self, entry_files: Sequence[str]) -> RunOutcome:
        args = [*self._pytest_args, *entry_files]
        logger.debug(f"Running pytest.main({args})")
        exit_code = await anyio.to_thread.run_sync(functools.partial(pytest.main, args))
        return RunOutcome(exit_code=int(exit_code), entry_files=tuple(entry_files))

    def clear_modules(self, files: Iterable[str]) -> int:
        cleared = clear_modules(files)
        if cleared:
            logger.debug(f"Cleared {cleared} modules before run")
        return cleared
