"""Watch mode: file-system events in, debounced test re-runs out."""

from __future__ import annotations

import logging
import pathlib
import signal
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING

import anyio
import anyio.to_thread
import watchfiles

from rewatch import collect, config, exceptions, executor, ignore, project
from rewatch import module_map as module_map_mod
from rewatch import rerunner as rerunner_mod
from rewatch import resolver as resolver_mod
from rewatch.types import WatchStatus
from rewatch.watch import _watch_utils

if TYPE_CHECKING:
    from collections.abc import Iterable, Set
    from typing import TextIO

    from anyio.abc import TaskGroup
    from watchfiles import Change

    from rewatch.console import Console
    from rewatch.resolver import DependencyResolver
    from rewatch.types import RunOutcome, SetupRunContext

logger = logging.getLogger(__name__)

EXIT_SIGNAL = 130

_RESTART_COMMAND = "rs"

# watchfiles debounce: short, the rerunner coalesces bursts itself
_WATCH_DEBOUNCE_MS = 50


class WatchEngine:
    """Watch mode engine: keeps the module map current and re-runs affected tests.

    Module map operations run in worker threads so the event loop keeps
    serving signals and keyboard input while files are re-resolved.
    """

    _root: pathlib.Path
    _config: config.RewatchConfig
    _executor: executor.TestExecutor
    _console: Console | None
    _stdin: TextIO | None
    _resolver: DependencyResolver
    _setup_run: Callable[[SetupRunContext], executor.TestExecutor | None] | None
    _reset: bool
    _teardown: list[Callable[[], object]]
    _module_map: module_map_mod.ModuleMap | None
    _rerunner: rerunner_mod.Rerunner | None
    _stop_event: anyio.Event | None
    _task_group: TaskGroup | None
    _status: WatchStatus
    _exit_code: int
    _exiting: bool

    def __init__(
        self,
        root: pathlib.Path,
        cfg: config.RewatchConfig,
        *,
        test_executor: executor.TestExecutor | None = None,
        console: Console | None = None,
        stdin: TextIO | None = None,
        resolver: DependencyResolver | None = None,
        setup_run: Callable[[SetupRunContext], executor.TestExecutor | None] | None = None,
        reset: bool = False,
    ) -> None:
        self._root = root
        self._config = cfg
        if test_executor is None:
            if cfg.in_process:
                test_executor = executor.InProcessExecutor(cfg.pytest_args)
            else:
                test_executor = executor.SubprocessExecutor(cfg.pytest_args, cwd=root)
        self._executor = test_executor
        self._console = console
        self._stdin = stdin
        if resolver is None:
            resolver = resolver_mod.PythonImportResolver(cfg.search_paths)
        self._resolver = resolver
        self._setup_run = setup_run
        self._reset = reset
        self._teardown = list[Callable[[], object]]()
        self._module_map = None
        self._rerunner = None
        self._stop_event = None
        self._task_group = None
        self._status = WatchStatus.WAITING
        self._exit_code = 0
        self._exiting = False

    @property
    def module_map(self) -> module_map_mod.ModuleMap:
        if self._module_map is None:
            raise RuntimeError("WatchEngine has not been started")
        return self._module_map

    @property
    def rerunner(self) -> rerunner_mod.Rerunner:
        if self._rerunner is None:
            raise RuntimeError("WatchEngine has not been started")
        return self._rerunner

    @property
    def status(self) -> WatchStatus:
        return self._status

    @property
    def legacy_mode(self) -> bool:
        """Explicit watch_files re-run every entry file on any change."""
        return bool(self._config.watch_files)

    def add_teardown(self, callback: Callable[[], object]) -> None:
        """Register a callback run on shutdown, after state is persisted."""
        self._teardown.append(callback)

    def collect_entry_files(self) -> list[str]:
        return collect.collect_entry_files(
            self._root, self._config.spec, self._config.patterns, self._config.ignore
        )

    def is_entry_file(self, path: str) -> bool:
        return collect.is_entry_file(
            path,
            cwd=self._root,
            spec=self._config.spec,
            patterns=self._config.patterns,
            ignore=self._config.ignore,
        )

    async def start(self, task_group: TaskGroup) -> None:
        """Build the module map and the rerunner inside task_group."""
        self._task_group = task_group
        self._stop_event = anyio.Event()
        entry_files = self.collect_entry_files()
        logger.debug(f"Found {len(entry_files)} test files")

        cache_dir = config.get_cache_dir(self._config, self._root)
        self._module_map = await anyio.to_thread.run_sync(
            lambda: module_map_mod.ModuleMap.create(
                entry_files,
                cache_dir=cache_dir,
                cwd=self._root,
                ignore=self._config.ignore,
                resolver=self._resolver,
                reset=self._reset,
            )
        )
        self._rerunner = rerunner_mod.Rerunner(
            self._executor,
            task_group,
            watcher=self,
            setup_run=self._before_run,
            delay_ms=self._config.delay_ms,
            on_error=self._on_run_error,
            on_complete=self._on_run_complete,
        )
        if self.legacy_mode:
            logger.debug("Explicit watch files provided; will re-run all tests upon change")

    async def run(self) -> int:
        """Watch until stopped. Returns the process exit code."""
        async with anyio.create_task_group() as tg:
            await self.start(tg)
            tg.start_soon(self._handle_signals)
            if self._stdin is not None:
                tg.start_soon(self._read_stdin, self._stdin)

            watch_paths = _watch_utils.collect_watch_paths(self._root, self._config.watch_files)
            if self._console is not None:
                self._console.watch_start(watch_paths, len(self.module_map.entry_files))

            tg.start_soon(self._initial_run)
            await self._watch_loop(watch_paths)
            await self.shutdown()
            tg.cancel_scope.cancel()
        return self._exit_code

    async def _initial_run(self) -> None:
        try:
            await self.rerunner.run(sorted(self.module_map.entry_files))
        except Exception as e:
            self._on_run_error(e)

    async def _watch_loop(self, watch_paths: list[pathlib.Path]) -> None:
        if not watch_paths:
            logger.warning("Nothing to watch")
            return
        if self._stop_event is None:
            raise RuntimeError("WatchEngine has not been started")
        watch_filter = _watch_utils.create_watch_filter(self._build_ignore_filter())
        async for changes in watchfiles.awatch(
            *watch_paths,
            watch_filter=watch_filter,
            stop_event=self._stop_event,
            debounce=_WATCH_DEBOUNCE_MS,
        ):
            if self._console is not None:
                self._console.watch_changes_detected(changes)
            await self.handle_changes(changes)

    def _build_ignore_filter(self) -> ignore.IgnoreFilter:
        patterns = [*ignore.DEFAULT_WATCH_IGNORE, *self._config.watch_ignore]
        cache_dir = config.get_cache_dir(self._config, self._root)
        patterns.append(f"{cache_dir}/")
        return ignore.IgnoreFilter(patterns, self._root)

    async def handle_changes(self, changes: Set[tuple[Change, str]]) -> None:
        """Translate one watcher batch into module map updates and enqueued runs."""
        if self.legacy_mode:
            changed = {project.normalize_path(path, self._root) for _, path in changes}
            logger.debug("Rerunning all tests")
            self.rerunner.enqueue(self.module_map.entry_files, self.module_map.files | changed)
            return

        batch = _watch_utils.group_changes(changes, self._root)
        if not batch:
            return
        to_check = set(batch.modified) | batch.deleted

        for path in sorted(batch.added):
            if path in self.module_map:
                to_check.add(path)
            elif self.is_entry_file(path):
                await anyio.to_thread.run_sync(self.module_map.add_entry_file, path)
                logger.debug(f"Added new entry file {path}")
                to_check.add(path)
            else:
                logger.debug(f"Added non-entry file {path}; not triggering rerun")

        if to_check:
            await self._find_changes_and_rerun(to_check)
        for path in sorted(batch.deleted):
            await anyio.to_thread.run_sync(self.module_map.delete, path)
        await self.save()

    async def _find_changes_and_rerun(self, files: Iterable[str]) -> None:
        filenames = sorted(files)
        affected = await anyio.to_thread.run_sync(
            lambda: self.module_map.find_affected_files(filenames, filenames)
        )
        for error in affected.errors:
            if self._console is not None:
                self._console.warning(error.format_user_message())
        if not affected.all_files:
            logger.debug(f"Files changed but not consumed by any test file: {filenames}")
            return
        if not affected.entry_files:
            logger.debug(f"{len(affected.all_files)} files affected, but none were tests")
            return
        logger.debug(f"Enqueueing {sorted(affected.entry_files)}")
        self.rerunner.enqueue(affected.entry_files, affected.all_files)

    def rerun_all(self) -> None:
        """Queue every entry file, invalidating every known module."""
        self.rerunner.enqueue(self.module_map.entry_files, self.module_map.files)

    async def _read_stdin(self, stream: TextIO) -> None:
        while True:
            line = await anyio.to_thread.run_sync(stream.readline, abandon_on_cancel=True)
            if not line:
                logger.debug("stdin closed; keyboard shortcuts disabled")
                return
            if line.strip().lower() == _RESTART_COMMAND:
                logger.debug("Restart requested from keyboard")
                self.rerun_all()

    async def _handle_signals(self) -> None:
        try:
            with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as received:
                async for signum in received:
                    self._on_signal(signum)
        except NotImplementedError:
            logger.debug("Signal handling not supported on this platform")

    def _on_signal(self, signum: int) -> None:
        logger.debug(f"Received signal {signum}")
        if self._exit_code == EXIT_SIGNAL:
            if self._console is not None:
                self._console.watch_cleaning_up(again=True)
            return
        self._exit_code = EXIT_SIGNAL
        if self._console is not None:
            self._console.watch_cleaning_up()
        self.stop()

    def stop(self) -> None:
        """Stop watching; run() persists state and returns."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def save(self) -> None:
        """Persist the module map; failures are reported, not raised."""
        if self._module_map is None:
            return
        try:
            await anyio.to_thread.run_sync(self._module_map.save)
            logger.debug("Persisted module map cache")
        except exceptions.PersistenceError as e:
            logger.warning(f"Failed to save module map: {e}; continuing")

    async def shutdown(self) -> None:
        """Persist state, then run teardown callbacks. Safe to call more than once."""
        if self._exiting:
            return
        self._exiting = True
        self.stop()
        with anyio.CancelScope(shield=True):
            await self.save()
        for callback in self._teardown:
            try:
                callback()
            except Exception as e:
                logger.error(f"Teardown callback failed: {e}")
        if self._module_map is not None:
            self._module_map.close()
        if self._console is not None:
            self._console.watch_stopped()

    def _before_run(self, context: SetupRunContext) -> executor.TestExecutor | None:
        self._status = WatchStatus.RUNNING
        if self._console is not None:
            self._console.run_start(context.entry_files, self._root)
        if self._setup_run is not None:
            return self._setup_run(context)
        return None

    def _on_run_complete(self, outcome: RunOutcome) -> None:
        self._status = WatchStatus.WAITING
        if self._console is not None:
            self._console.run_result(outcome)
            self._console.watch_waiting()

    def _on_run_error(self, error: Exception) -> None:
        self._status = WatchStatus.ERROR
        logger.debug(f"Run failed: {error!r}")
        if self._console is not None:
            self._console.error(f"Test run failed: {error}")
            self._console.watch_waiting()


def watch(
    root: pathlib.Path,
    cfg: config.RewatchConfig,
    *,
    console: Console | None = None,
    reset: bool = False,
) -> int:
    """Run watch mode until interrupted. Returns the exit code."""
    engine = WatchEngine(root, cfg, console=console, stdin=sys.stdin, reset=reset)
    return anyio.run(engine.run)
