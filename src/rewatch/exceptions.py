from typing_extensions import override


class RewatchError(Exception):
    """Base exception for rewatch errors."""

    def format_user_message(self) -> str:
        """Format a user-friendly error message."""
        return str(self)

    def get_suggestion(self) -> str | None:
        """Return actionable suggestion for resolving the error."""
        return None


class AlreadyInitializedError(RewatchError):
    """Raised when a module map is initialized a second time."""

    pass


class DependencyResolutionError(RewatchError):
    """Raised when the dependencies of a single file cannot be resolved.

    The module map recovers from this locally: the file is treated as having
    no children for the current pass and the error is handed back to the caller.
    """

    _filename: str
    _reason: str

    def __init__(self, filename: str, reason: str) -> None:
        self._filename = filename
        self._reason = reason
        super().__init__(f"Could not resolve dependencies of '{filename}': {reason}")

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def reason(self) -> str:
        return self._reason

    @override
    def get_suggestion(self) -> str:
        return "Fix the syntax error; dependencies are re-resolved on the next save"

    @override
    def __reduce__(self) -> tuple[type, tuple[str, str]]:
        return (self.__class__, (self._filename, self._reason))


class PersistenceError(RewatchError):
    """Raised when reading or writing an on-disk cache fails."""

    @override
    def get_suggestion(self) -> str:
        return "Run 'rewatch clear-cache' to start from an empty cache"


class ConfigError(RewatchError):
    """Base class for configuration errors."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when a config value fails validation."""

    @override
    def get_suggestion(self) -> str:
        return "Check rewatch.yaml against the documented options"
