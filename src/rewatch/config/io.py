import logging
import pathlib
from typing import Any

import pydantic
import ruamel.yaml

from rewatch import exceptions, project
from rewatch.config import models

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("rewatch.yaml", "rewatch.yml")


def get_config_path(root: pathlib.Path | None = None) -> pathlib.Path:
    """Get project config path; the first existing candidate, else rewatch.yaml."""
    base = root if root is not None else project.get_project_root()
    for name in CONFIG_FILENAMES:
        candidate = base / name
        if candidate.exists():
            return candidate
    return base / CONFIG_FILENAMES[0]


def load_config_file(path: pathlib.Path) -> dict[str, Any]:
    """Load YAML config as plain dict, returns empty dict if missing."""
    if not path.exists():
        return {}

    try:
        yaml = ruamel.yaml.YAML(typ="safe")
        with path.open() as f:
            data = yaml.load(f)
    except ruamel.yaml.YAMLError as e:
        raise exceptions.ConfigError(f"Invalid YAML in {path}: {e}") from e
    except PermissionError:
        raise exceptions.ConfigError(f"Permission denied reading {path}") from None
    except OSError as e:
        raise exceptions.ConfigError(f"Error reading {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise exceptions.ConfigError(f"Expected a mapping at the top of {path}")
    return {str(k): v for k, v in data.items()}


def load_config(
    root: pathlib.Path | None = None, overrides: dict[str, Any] | None = None
) -> models.RewatchConfig:
    """Load and merge config: defaults < rewatch.yaml < overrides.

    Override values of None (an unset CLI option) are ignored.
    """
    path = get_config_path(root)
    data = load_config_file(path)
    if data:
        logger.debug(f"Loaded config from {path}")
    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return models.RewatchConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise exceptions.ConfigValidationError(f"Invalid configuration in {path}: {e}") from e


def get_cache_dir(config: models.RewatchConfig, root: pathlib.Path | None = None) -> pathlib.Path:
    """Get cache directory from config, resolved to absolute path."""
    cache_dir = pathlib.Path(config.cache_dir)
    if not cache_dir.is_absolute():
        base = root if root is not None else project.get_project_root()
        cache_dir = base / cache_dir
    return cache_dir
