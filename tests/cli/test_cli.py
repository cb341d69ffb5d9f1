from __future__ import annotations

import json
import pathlib
from typing import TYPE_CHECKING

import pytest

from rewatch import cli
from rewatch.storage import graph_store
from rewatch.watch import engine

if TYPE_CHECKING:
    from click.testing import CliRunner
    from pytest_mock import MockerFixture


@pytest.fixture
def sample_project(set_project_root: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> pathlib.Path:
    """A src-layout package with two test files, cwd set to the project root."""
    files = {
        "src/app/__init__.py": "",
        "src/app/models.py": "VALUE = 1\n",
        "src/app/views.py": "from app.models import VALUE\n",
        "tests/test_models.py": "from app import models\n",
        "tests/test_views.py": "from app.views import VALUE\n",
    }
    for name, content in files.items():
        path = set_project_root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    monkeypatch.chdir(set_project_root)
    return set_project_root


# =============================================================================
# Group
# =============================================================================


def test_help_lists_commands(runner: CliRunner) -> None:
    """Top-level help lists every command."""
    result = runner.invoke(cli.cli, ["--help"])

    assert result.exit_code == 0
    for name in ("watch", "affected", "graph", "clear-cache"):
        assert name in result.output


def test_verbose_and_quiet_conflict(runner: CliRunner) -> None:
    """-v and -q cannot be combined."""
    result = runner.invoke(cli.cli, ["-v", "-q", "graph"])

    assert result.exit_code == 2
    assert "mutually exclusive" in result.output


def test_unknown_command(runner: CliRunner) -> None:
    """Unknown commands are usage errors."""
    result = runner.invoke(cli.cli, ["nope"])

    assert result.exit_code == 2


# =============================================================================
# affected
# =============================================================================


def test_affected_lists_dependent_tests(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """Changing a model affects every test that imports it, directly or not."""
    result = runner.invoke(cli.cli, ["affected", "src/app/models.py"])

    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == ["tests/test_models.py", "tests/test_views.py"]


def test_affected_leaf_module(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """Changing a module only one test imports affects only that test."""
    result = runner.invoke(cli.cli, ["affected", "src/app/views.py"])

    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == ["tests/test_views.py"]


def test_affected_all_json(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """--all --json reports every affected file as absolute paths."""
    result = runner.invoke(cli.cli, ["affected", "--all", "--json", "src/app/views.py"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {
        "all_files": [
            str(sample_project / "src/app/views.py"),
            str(sample_project / "tests/test_views.py"),
        ]
    }


def test_affected_unknown_file(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """A file no test depends on affects nothing."""
    (sample_project / "src/app/unused.py").write_text("")

    result = runner.invoke(cli.cli, ["affected", "src/app/unused.py"])

    assert result.exit_code == 0
    assert result.stdout == ""


def test_affected_persists_cache(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """The dependency graph is saved under the cache directory."""
    runner.invoke(cli.cli, ["affected", "src/app/models.py"])

    assert (sample_project / ".rewatch/cache" / graph_store.GRAPH_STORE_FILENAME).exists()


def test_affected_uses_configured_search_paths(
    runner: CliRunner, sample_project: pathlib.Path
) -> None:
    """Imports found only under search_paths still link tests to their modules."""
    (sample_project / "libs").mkdir()
    (sample_project / "libs/shared.py").write_text("")
    (sample_project / "tests/test_shared.py").write_text("import shared\n")
    (sample_project / "rewatch.yaml").write_text("search_paths: [libs]\n")

    result = runner.invoke(cli.cli, ["affected", "libs/shared.py"])

    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == ["tests/test_shared.py"]

def test_affected_requires_files(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """At least one file must be given."""
    result = runner.invoke(cli.cli, ["affected"])

    assert result.exit_code == 2


def test_invalid_config_shows_tip(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """Configuration errors are reported with a suggestion."""
    (sample_project / "rewatch.yaml").write_text("delay: 5\n")

    result = runner.invoke(cli.cli, ["affected", "src/app/models.py"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    assert "Tip:" in result.output


# =============================================================================
# graph / clear-cache
# =============================================================================


def test_graph_json(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """graph --json dumps every node with symmetric edges."""
    result = runner.invoke(cli.cli, ["graph", "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    views = str(sample_project / "src/app/views.py")
    models = str(sample_project / "src/app/models.py")
    test_views = str(sample_project / "tests/test_views.py")
    assert models in data[views]["children"]
    assert views in data[models]["parents"]
    assert data[views]["entry_files"] == [test_views]


def test_graph_text_marks_tests(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """Text output marks test files and indents their imports."""
    result = runner.invoke(cli.cli, ["graph"])

    assert result.exit_code == 0, result.output
    assert "tests/test_views.py [test]" in result.output
    assert "  -> src/app/views.py" in result.output


def test_clear_cache(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """clear-cache removes the saved dependency graph."""
    runner.invoke(cli.cli, ["graph"])
    store = sample_project / ".rewatch/cache" / graph_store.GRAPH_STORE_FILENAME
    assert store.exists()

    result = runner.invoke(cli.cli, ["clear-cache"])

    assert result.exit_code == 0, result.output
    assert "Cleared cache in" in result.output
    assert not store.exists()


def test_cache_dir_option(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """--cache-dir redirects where caches are written."""
    result = runner.invoke(cli.cli, ["graph", "--cache-dir", "custom"])

    assert result.exit_code == 0, result.output
    assert (sample_project / "custom" / graph_store.GRAPH_STORE_FILENAME).exists()


# =============================================================================
# watch
# =============================================================================


def test_watch_passes_options_to_engine(
    runner: CliRunner, sample_project: pathlib.Path, mocker: MockerFixture
) -> None:
    """CLI options override the config handed to the watch engine."""
    watch = mocker.patch.object(engine, "watch", return_value=0)

    result = runner.invoke(
        cli.cli,
        [
            "watch",
            "tests/unit",
            "--delay",
            "5",
            "--pytest-args",
            "-x -q",
            "--in-process",
            "--search-path",
            "libs",
            "--reset",
        ],
    )

    assert result.exit_code == 0, result.output
    (root, cfg), kwargs = watch.call_args
    assert root == sample_project
    assert cfg.spec == ["tests/unit"]
    assert cfg.delay_ms == 5
    assert cfg.pytest_args == ["-x", "-q"]
    assert cfg.in_process is True
    assert cfg.search_paths == ["libs"]
    assert kwargs["reset"] is True


def test_watch_propagates_exit_code(
    runner: CliRunner, sample_project: pathlib.Path, mocker: MockerFixture
) -> None:
    """The engine's exit code becomes the process exit code."""
    mocker.patch.object(engine, "watch", return_value=engine.EXIT_SIGNAL)

    result = runner.invoke(cli.cli, ["watch"])

    assert result.exit_code == engine.EXIT_SIGNAL


def test_watch_rejects_negative_delay(runner: CliRunner, sample_project: pathlib.Path) -> None:
    """--delay must be non-negative."""
    result = runner.invoke(cli.cli, ["watch", "--delay", "-1"])

    assert result.exit_code == 2
