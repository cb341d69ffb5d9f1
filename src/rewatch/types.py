from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING, Any, NamedTuple, TypedDict

if TYPE_CHECKING:
    from rewatch.exceptions import DependencyResolutionError


class NodeData(TypedDict):
    """Serialized form of a module map node (one Graph Store value)."""

    filename: str
    entry_files: list[str]
    children: list[str]
    parents: list[str]


class AffectedFiles(NamedTuple):
    """Result of an affected-file computation.

    ``all_files`` holds every file whose cached module must be invalidated;
    ``entry_files`` is the subset that are entry (test) files to re-run.
    """

    all_files: set[str]
    entry_files: set[str]
    errors: list[DependencyResolutionError]

    @classmethod
    def empty(cls) -> AffectedFiles:
        return cls(all_files=set(), entry_files=set(), errors=[])


class RunStatus(enum.StrEnum):
    """Outcome of a single test run."""

    PASSED = "passed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    NO_TESTS = "no_tests"
    ERROR = "error"


# pytest exit codes, see pytest.ExitCode
_EXIT_CODE_STATUS = {
    0: RunStatus.PASSED,
    1: RunStatus.FAILED,
    2: RunStatus.INTERRUPTED,
    5: RunStatus.NO_TESTS,
}


@dataclasses.dataclass(frozen=True)
class RunOutcome:
    """What a test executor reports after running a set of entry files."""

    exit_code: int
    entry_files: tuple[str, ...]

    @property
    def status(self) -> RunStatus:
        return _EXIT_CODE_STATUS.get(self.exit_code, RunStatus.ERROR)

    @property
    def ok(self) -> bool:
        return self.status in (RunStatus.PASSED, RunStatus.NO_TESTS)


@dataclasses.dataclass(frozen=True)
class SetupRunContext:
    """Passed to the pre-run hook; the hook may return a replacement executor."""

    executor: Any
    watcher: Any
    entry_files: list[str]


class WatchStatus(enum.StrEnum):
    """Status shown to the user while watching."""

    WAITING = "waiting"
    RUNNING = "running"
    ERROR = "error"
