from __future__ import annotations

import pathlib

import pytest

from rewatch import config, exceptions, ignore
from rewatch.config import io as config_io


def test_defaults() -> None:
    """Without a config file every field takes its default."""
    cfg = config.RewatchConfig.get_default()

    assert cfg.spec == ["tests"]
    assert cfg.patterns == ["test_*.py", "*_test.py"]
    assert cfg.delay_ms == 100
    assert cfg.in_process is False
    assert cfg.watch_ignore == list(ignore.DEFAULT_WATCH_IGNORE)
    assert cfg.search_paths == []


def test_load_missing_file(tmp_path: pathlib.Path) -> None:
    """A project without rewatch.yaml loads defaults."""
    assert config.load_config(tmp_path) == config.RewatchConfig()


def test_load_yaml(tmp_path: pathlib.Path) -> None:
    """Values from rewatch.yaml are applied."""
    (tmp_path / "rewatch.yaml").write_text(
        "spec: [tests/unit]\ndelay_ms: 250\npytest_args: -x -q\nignore: build/**, dist/**\n"
    )

    cfg = config.load_config(tmp_path)

    assert cfg.spec == ["tests/unit"]
    assert cfg.delay_ms == 250
    assert cfg.pytest_args == ["-x", "-q"]
    assert cfg.ignore == ["build/**", "dist/**"]


def test_yml_extension(tmp_path: pathlib.Path) -> None:
    """rewatch.yml is found when rewatch.yaml is absent."""
    (tmp_path / "rewatch.yml").write_text("in_process: true\n")

    assert config.get_config_path(tmp_path) == tmp_path / "rewatch.yml"
    assert config.load_config(tmp_path).in_process is True


def test_search_paths_accept_comma_separated_string(tmp_path: pathlib.Path) -> None:
    """search_paths is a list, written either as YAML or comma-separated."""
    (tmp_path / "rewatch.yaml").write_text("search_paths: libs, vendor/pkgs\n")

    assert config.load_config(tmp_path).search_paths == ["libs", "vendor/pkgs"]


def test_overrides_win_and_none_is_ignored(tmp_path: pathlib.Path) -> None:
    """CLI overrides beat the file; unset options leave it alone."""
    (tmp_path / "rewatch.yaml").write_text("delay_ms: 250\nspec: [a]\n")

    cfg = config.load_config(tmp_path, {"delay_ms": 10, "spec": None})

    assert cfg.delay_ms == 10
    assert cfg.spec == ["a"]


def test_unknown_key_rejected(tmp_path: pathlib.Path) -> None:
    """Typos in rewatch.yaml are validation errors."""
    (tmp_path / "rewatch.yaml").write_text("delay: 5\n")

    with pytest.raises(exceptions.ConfigValidationError):
        config.load_config(tmp_path)


def test_negative_delay_rejected(tmp_path: pathlib.Path) -> None:
    """delay_ms must not be negative."""
    with pytest.raises(exceptions.ConfigValidationError):
        config.load_config(tmp_path, {"delay_ms": -5})


def test_empty_patterns_rejected() -> None:
    """At least one test file pattern is required."""
    with pytest.raises(ValueError, match="pattern"):
        config.RewatchConfig(patterns=[])


def test_invalid_yaml(tmp_path: pathlib.Path) -> None:
    """Malformed YAML raises ConfigError."""
    (tmp_path / "rewatch.yaml").write_text("spec: [unclosed\n")

    with pytest.raises(exceptions.ConfigError, match="Invalid YAML"):
        config.load_config(tmp_path)


def test_non_mapping_yaml(tmp_path: pathlib.Path) -> None:
    """A YAML list at the top level is rejected."""
    path = tmp_path / "rewatch.yaml"
    path.write_text("- a\n- b\n")

    with pytest.raises(exceptions.ConfigError, match="mapping"):
        config_io.load_config_file(path)


def test_empty_yaml(tmp_path: pathlib.Path) -> None:
    """An empty file is treated as no config."""
    path = tmp_path / "rewatch.yaml"
    path.write_text("")

    assert config_io.load_config_file(path) == {}


def test_cache_dir_relative_to_root(tmp_path: pathlib.Path) -> None:
    """Relative cache dirs resolve against the project root."""
    cfg = config.RewatchConfig(cache_dir="build/cache")

    assert config.get_cache_dir(cfg, tmp_path) == tmp_path / "build" / "cache"


def test_cache_dir_absolute(tmp_path: pathlib.Path) -> None:
    """Absolute cache dirs are kept as-is."""
    cfg = config.RewatchConfig(cache_dir=str(tmp_path / "elsewhere"))

    assert config.get_cache_dir(cfg, pathlib.Path("/unused")) == tmp_path / "elsewhere"
