from __future__ import annotations

import functools
import pathlib
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import click

from rewatch import config, exceptions, project

if TYPE_CHECKING:
    from collections.abc import Callable

P = ParamSpec("P")
R = TypeVar("R")
F = TypeVar("F", bound="Callable[..., Any]")


def _handle_rewatch_error(e: exceptions.RewatchError) -> click.ClickException:
    """Convert RewatchError to user-friendly ClickException."""
    message = e.format_user_message()
    if suggestion := e.get_suggestion():
        message = f"{message}\n\nTip: {suggestion}"
    return click.ClickException(message)


def with_error_handling(func: Callable[P, R]) -> Callable[P, R]:
    """Wrap function with rewatch error handling."""

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except click.ClickException:
            raise
        except exceptions.RewatchError as e:
            raise _handle_rewatch_error(e) from e
        except Exception as e:
            raise click.ClickException(repr(e)) from e

    return wrapper


def rewatch_command(
    name: str | None = None, **attrs: Any
) -> Callable[[Callable[..., Any]], click.Command]:
    """Create a Click command with rewatch error handling.

    Args:
        name: Optional command name (defaults to function name)
        **attrs: Additional arguments passed to click.command()
    """

    def decorator(func: Callable[..., Any]) -> click.Command:
        return click.command(name=name, **attrs)(with_error_handling(func))

    return decorator


def load_project_config(**overrides: Any) -> tuple[pathlib.Path, config.RewatchConfig]:
    """Find the project root and load its config with CLI overrides applied."""
    root = project.get_project_root()
    return root, config.load_config(root, overrides)


def cache_dir_option(func: F) -> F:
    return click.option(
        "--cache-dir",
        type=click.Path(file_okay=False, path_type=pathlib.Path),
        default=None,
        help="Directory holding the persisted caches (default: .rewatch/cache)",
    )(func)
