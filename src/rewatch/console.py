import os
import pathlib
import sys
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, TextIO

from rewatch.types import RunOutcome, RunStatus

if TYPE_CHECKING:
    from collections.abc import Set

    from watchfiles import Change

# ANSI color codes
_COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}

_ERASE_LINE = "\033[2K"


def _supports_color(stream: TextIO) -> bool:
    """Check if terminal supports color output."""
    if not hasattr(stream, "isatty"):
        return False
    if not stream.isatty():
        return False
    return not os.environ.get("NO_COLOR")


def _summarize(names: Sequence[str], limit: int) -> str:
    text = ", ".join(names[:limit])
    if len(names) > limit:
        text += f" (+{len(names) - limit} more)"
    return text


class Console:
    """Console output handler for watch mode status lines."""

    stream: TextIO
    use_color: bool

    def __init__(self, stream: TextIO | None = None, color: bool | None = None) -> None:
        """Initialize console.

        Args:
            stream: Output stream (default: sys.stderr)
            color: Force color on/off (default: auto-detect)
        """
        self.stream = stream or sys.stderr
        self.use_color = color if color is not None else _supports_color(self.stream)
        self._run_start: float | None = None

    def _color(self, text: str, *codes: str) -> str:
        """Apply color codes to text."""
        if not self.use_color:
            return text
        prefix = "".join(_COLORS.get(c, "") for c in codes)
        return f"{prefix}{text}{_COLORS['reset']}"

    def _print(self, text: str) -> None:
        print(text, file=self.stream, flush=True)

    def erase_line(self) -> None:
        if self.use_color:
            print(_ERASE_LINE, end="\r", file=self.stream, flush=True)

    def run_start(self, entry_files: Sequence[str], root: pathlib.Path | None = None) -> None:
        """Print which entry files are about to run."""
        self._run_start = time.perf_counter()
        self.erase_line()
        status = self._color("running", "blue", "bold")
        if not entry_files:
            self._print(f"{status} all tests")
            return
        names = [_display(f, root) for f in entry_files]
        count = self._color(f"[{len(names)}]", "dim")
        self._print(f"{status} {count} {_summarize(names, 5)}")

    def run_result(self, outcome: RunOutcome, duration: float | None = None) -> None:
        """Print the result of a finished run."""
        match outcome.status:
            case RunStatus.PASSED:
                status_text = self._color("passed", "green", "bold")
            case RunStatus.NO_TESTS:
                status_text = self._color("no tests ran", "yellow")
            case RunStatus.FAILED:
                status_text = self._color("FAILED", "red", "bold")
            case _:
                status_text = self._color(f"{outcome.status} (exit {outcome.exit_code})", "red")

        if duration is None and self._run_start is not None:
            duration = time.perf_counter() - self._run_start
        parts = [status_text]
        if duration is not None:
            parts.append(self._color(f"[{duration:.2f}s]", "dim"))
        self._print(" ".join(parts))
        self._run_start = None

    def error(self, message: str) -> None:
        """Print error message."""
        prefix = self._color("Error:", "red", "bold")
        self._print(f"{prefix} {message}")

    def warning(self, message: str) -> None:
        prefix = self._color("Warning:", "yellow", "bold")
        self._print(f"{prefix} {message}")

    def watch_start(self, paths: Sequence[pathlib.Path], entry_count: int) -> None:
        """Print watch mode startup message."""
        header = self._color("Watch mode started", "cyan", "bold")
        self._print(f"\n{header}")
        self._print(f"Watching: {_summarize([str(p) for p in paths], 3)}")
        self._print(f"Test files: {entry_count}")

    def watch_waiting(self) -> None:
        """Print waiting for changes message."""
        msg = self._color(
            "Waiting for file changes... (type 'rs' to re-run all, Ctrl+C to exit)", "dim"
        )
        self._print(f"\n{msg}\n")

    def watch_changes_detected(self, changes: "Set[tuple[Change, str]]") -> None:
        """Print detected changes summary."""
        files = sorted(pathlib.Path(path).name for _, path in changes)
        header = self._color("Changes detected:", "yellow", "bold")
        self._print(f"\n{header} {_summarize(files, 5)}")

    def watch_cleaning_up(self, again: bool = False) -> None:
        if again:
            msg = self._color("still cleaning up, please wait...", "yellow")
        else:
            msg = self._color("cleaning up, please wait...", "yellow")
        self._print(f"\n{msg}")

    def watch_stopped(self) -> None:
        """Print watch mode stopped message."""
        msg = self._color("\nWatch mode stopped", "cyan")
        self._print(msg)


def _display(filename: str, root: pathlib.Path | None) -> str:
    if root is None:
        return filename
    try:
        return str(pathlib.Path(filename).relative_to(root))
    except ValueError:
        return filename


# Global console instance for convenience
_console: Console | None = None


def get_console() -> Console:
    """Get or create global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console
