import shlex
from typing import Annotated, Any, Self

import pydantic

from rewatch import collect, ignore


def _split_csv(v: Any) -> Any:
    """Parse comma-separated string into list."""
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class RewatchConfig(pydantic.BaseModel):
    """Complete rewatch configuration schema (rewatch.yaml)."""

    model_config = pydantic.ConfigDict(extra="forbid")

    spec: list[str] = pydantic.Field(default_factory=lambda: list(collect.DEFAULT_SPEC))
    patterns: list[str] = pydantic.Field(default_factory=lambda: list(collect.DEFAULT_PATTERNS))
    ignore: list[str] = pydantic.Field(default_factory=list)
    watch_files: list[str] = pydantic.Field(default_factory=list)
    watch_ignore: list[str] = pydantic.Field(
        default_factory=lambda: list(ignore.DEFAULT_WATCH_IGNORE)
    )
    delay_ms: Annotated[int, pydantic.Field(ge=0)] = 100
    cache_dir: str = ".rewatch/cache"
    in_process: bool = False
    pytest_args: list[str] = pydantic.Field(default_factory=list)
    search_paths: list[str] = pydantic.Field(default_factory=list)

    @pydantic.field_validator(
        "spec",
        "patterns",
        "ignore",
        "watch_files",
        "watch_ignore",
        "search_paths",
        mode="before",
    )
    @classmethod
    def parse_list(cls, v: Any) -> Any:
        return _split_csv(v)

    @pydantic.field_validator("pytest_args", mode="before")
    @classmethod
    def parse_pytest_args(cls, v: Any) -> Any:
        """Accept a shell-style string as well as a list."""
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @pydantic.field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one test file pattern is required")
        return v

    @classmethod
    def get_default(cls) -> Self:
        """Get default configuration."""
        return cls()
