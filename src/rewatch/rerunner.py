"""Debounced re-run scheduler.

Bursts of enqueue calls are coalesced into one run once ``delay_ms`` passes
without new work. At most one run is in flight; work that arrives during a
run is queued and triggers a follow-up run when the current one finishes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anyio

from rewatch.types import SetupRunContext

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from anyio.abc import TaskGroup

    from rewatch.executor import TestExecutor
    from rewatch.types import RunOutcome

logger = logging.getLogger(__name__)

DEFAULT_RUN_DELAY_MS = 100


def _validate_add(queue: set[str], value: str) -> bool:
    """Add value to queue; True if it was not already there."""
    if value in queue:
        return False
    queue.add(value)
    return True


class Rerunner:
    """Owns the queue of files to run and the timer that drains it.

    Lives entirely on the event loop of ``task_group``; not thread-safe.
    """

    _executor: TestExecutor
    _task_group: TaskGroup
    _watcher: object
    _setup_run: Callable[[SetupRunContext], TestExecutor | None] | None
    _on_error: Callable[[Exception], None] | None
    _on_complete: Callable[[RunOutcome], None] | None
    _delay_ms: int
    _entry_queue: set[str]
    _affected_queue: set[str]
    _running: bool
    _timer_scope: anyio.CancelScope | None

    def __init__(
        self,
        executor: TestExecutor,
        task_group: TaskGroup,
        *,
        watcher: object = None,
        setup_run: Callable[[SetupRunContext], TestExecutor | None] | None = None,
        delay_ms: int = DEFAULT_RUN_DELAY_MS,
        on_error: Callable[[Exception], None] | None = None,
        on_complete: Callable[[RunOutcome], None] | None = None,
    ) -> None:
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        self._executor = executor
        self._task_group = task_group
        self._watcher = watcher
        self._setup_run = setup_run
        self._on_error = on_error
        self._on_complete = on_complete
        self._delay_ms = delay_ms
        self._entry_queue = set[str]()
        self._affected_queue = set[str]()
        self._running = False
        self._timer_scope = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> frozenset[str]:
        """Entry files queued for the next run."""
        return frozenset(self._entry_queue)

    @property
    def delay_ms(self) -> int:
        return self._delay_ms

    @property
    def executor(self) -> TestExecutor:
        return self._executor

    def enqueue(self, entry_files: Iterable[str] = (), affected_files: Iterable[str] = ()) -> bool:
        """Queue files for the next run. Returns True if anything new was queued.

        Re-enqueuing already queued files neither adds work nor restarts the
        debounce window.
        """
        added = False
        for filename in entry_files:
            added = _validate_add(self._entry_queue, filename) or added
        for filename in affected_files:
            added = _validate_add(self._affected_queue, filename) or added

        if added and not self._running:
            self.reset_debounce_timer()
        return added

    def reset_debounce_timer(self) -> None:
        """Cancel any pending timer and start a fresh one."""
        if self._timer_scope is not None:
            self._timer_scope.cancel()
        scope = anyio.CancelScope()
        self._timer_scope = scope
        self._task_group.start_soon(self._wait_then_drain, scope)
        logger.debug("Reset drain timer")

    async def _wait_then_drain(self, scope: anyio.CancelScope) -> None:
        with scope:
            await anyio.sleep(self._delay_ms / 1000)
        if scope.cancel_called:
            return
        if self._timer_scope is scope:
            self._timer_scope = None
        try:
            await self.drain()
        except Exception as e:
            logger.error(f"Test run failed: {e}")
            if self._on_error is not None:
                self._on_error(e)

    async def drain(self) -> RunOutcome | None:
        """Swap out both queues and run them."""
        entry_files = set(self._entry_queue)
        affected_files = set(self._affected_queue)
        self._entry_queue.clear()
        self._affected_queue.clear()
        return await self.run(entry_files, affected_files)

    async def run(
        self, entry_files: Iterable[str] = (), affected_files: Iterable[str] = ()
    ) -> RunOutcome | None:
        """Invalidate affected modules, then run entry files (all tests if empty).

        If a run is already in flight the files are queued instead and None is
        returned. Executor errors propagate.
        """
        entry_list = sorted(entry_files)
        affected_set = set(affected_files)
        if self._running:
            self.enqueue(entry_list, affected_set)
            return None

        self._running = True
        try:
            cleared = self._executor.clear_modules(affected_set)
            if cleared:
                logger.debug(f"Deleted {cleared} module(s) from the import cache")
            if self._setup_run is not None:
                context = SetupRunContext(
                    executor=self._executor, watcher=self._watcher, entry_files=entry_list
                )
                replacement = self._setup_run(context)
                if replacement is not None:
                    self._executor = replacement
            outcome = await self._executor.run(entry_list)
            logger.debug(f"Finished watch run: {outcome.status}")
        finally:
            self._running = False
            if self._entry_queue or self._affected_queue:
                self.reset_debounce_timer()

        if self._on_complete is not None:
            self._on_complete(outcome)
        return outcome
