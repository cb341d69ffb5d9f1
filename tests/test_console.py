from __future__ import annotations

import io
import pathlib
from typing import TYPE_CHECKING

import watchfiles

from rewatch import console
from rewatch.types import RunOutcome

if TYPE_CHECKING:
    import pytest


def _console() -> tuple[console.Console, io.StringIO]:
    stream = io.StringIO()
    return console.Console(stream=stream, color=False), stream


def test_run_start_shows_relative_names() -> None:
    """Entry files are shown relative to the project root."""
    out, stream = _console()
    out.run_start(["/p/tests/test_a.py", "/p/tests/test_b.py"], pathlib.Path("/p"))

    assert stream.getvalue() == "running [2] tests/test_a.py, tests/test_b.py\n"


def test_run_start_all_tests() -> None:
    """An empty batch means the whole suite."""
    out, stream = _console()
    out.run_start([])

    assert stream.getvalue() == "running all tests\n"


def test_run_start_truncates_long_batches() -> None:
    """Long batches are summarized."""
    out, stream = _console()
    out.run_start([f"/p/test_{i}.py" for i in range(8)], pathlib.Path("/p"))

    assert "(+3 more)" in stream.getvalue()


def test_run_result_statuses() -> None:
    """Each pytest outcome has its own wording."""
    out, stream = _console()
    out.run_result(RunOutcome(0, ()), duration=1.5)
    out.run_result(RunOutcome(1, ()), duration=0.25)
    out.run_result(RunOutcome(5, ()))
    out.run_result(RunOutcome(3, ()))

    assert stream.getvalue().splitlines() == [
        "passed [1.50s]",
        "FAILED [0.25s]",
        "no tests ran",
        "error (exit 3)",
    ]


def test_changes_detected_lists_basenames() -> None:
    """Detected changes show file names only."""
    out, stream = _console()
    out.watch_changes_detected({(watchfiles.Change.modified, "/p/src/models.py")})

    assert "Changes detected: models.py" in stream.getvalue()


def test_color_disabled_without_tty(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-terminal streams never get ANSI codes."""
    monkeypatch.delenv("NO_COLOR", raising=False)

    assert console.Console(stream=io.StringIO()).use_color is False


def test_forced_color_wraps_text() -> None:
    """Forcing color adds escape codes."""
    stream = io.StringIO()
    console.Console(stream=stream, color=True).error("boom")

    assert "\033[" in stream.getvalue()
    assert "boom" in stream.getvalue()


def test_get_console_is_cached() -> None:
    """get_console returns one shared instance."""
    assert console.get_console() is console.get_console()
