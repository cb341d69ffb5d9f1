from __future__ import annotations

import logging
import pathlib
import sys
from collections.abc import Generator
from typing import TYPE_CHECKING

import pytest
from click.testing import CliRunner

from rewatch import console, project

# Add tests directory to sys.path so helpers.py can be imported
_tests_dir = pathlib.Path(__file__).parent
if str(_tests_dir) not in sys.path:
    sys.path.insert(0, str(_tests_dir))

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

_REWATCH_LOGGERS = ("rewatch", "")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_rewatch_state(mocker: MockerFixture) -> Generator[None]:
    """Reset global rewatch state between tests.

    CliRunner can leave the console singleton pointing to closed streams and
    the project root cache pointing to an old directory.
    """
    mocker.patch.object(console, "_console", None)
    project._project_root_cache = None
    for name in _REWATCH_LOGGERS:
        logging.getLogger(name).handlers.clear()
    yield
    project._project_root_cache = None


@pytest.fixture
def set_project_root(tmp_path: pathlib.Path, mocker: MockerFixture) -> pathlib.Path:
    """Set project root to tmp_path, with a .git marker so discovery agrees."""
    (tmp_path / ".git").mkdir(exist_ok=True)
    mocker.patch.object(project, "_project_root_cache", tmp_path)
    return tmp_path


@pytest.fixture
def cache_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / ".rewatch" / "cache"


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI runner for testing."""
    return CliRunner()
