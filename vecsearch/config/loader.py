"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. ``config/config.yaml`` -- static defaults checked into the repo
  2. ``overrides``          -- e.g. CLI flags, deep-merged over the YAML
  3. ``.env`` file          -- local developer overrides (not committed)
  4. Environment variables  -- set at deploy time

The YAML file is organised in sections; a key ``ef_search`` under section
``hnsw`` maps to the settings field ``hnsw_ef_search``.  Top-level scalar
keys map to the field of the same name.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from vecsearch.config.settings import Settings
from vecsearch.utils.errors import ConfigurationError


def load_settings(
    path: str = "config/config.yaml",
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load YAML config, merge *overrides*, and resolve against the environment.

    Raises
    ------
    ConfigurationError
        If the YAML is malformed or names an unknown or invalid setting.
    """
    config = read_yaml(path)
    if overrides:
        _deep_merge(config, overrides)

    values = flatten(config)
    unknown = sorted(set(values) - set(Settings.model_fields))
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys in {path}: {', '.join(unknown)}")
    try:
        return Settings(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {path}: {exc}") from exc


def read_yaml(path: str) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed YAML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    return loaded


def flatten(config: dict[str, Any]) -> dict[str, Any]:
    """Turn ``{"hnsw": {"m": 16}, "log_level": "INFO"}`` into settings field names."""
    flat: dict[str, Any] = {}
    for section, value in config.items():
        if isinstance(value, dict):
            for key, inner in value.items():
                flat[f"{section}_{key}"] = inner
        else:
            flat[section] = value
    return flat


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
