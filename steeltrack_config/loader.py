"""
Settings loader (``steeltrack_config.loader``).

Source order, later wins:
    1. ``TrackerSettings`` defaults
    2. a YAML file -- the explicit ``path``, else ``$STEELTRACK_CONFIG``
    3. environment overrides: ``STEELTRACK_DATABASE_URL`` (or
       ``DATABASE_URL``) and ``STEELTRACK_LOG_LEVEL``

Failure modes:
    * Missing YAML file  -> ``FileNotFoundError`` propagates.
    * Malformed YAML  -> ``yaml.YAMLError`` propagates.
    * Unknown keys or a non-mapping document  -> ``ValueError``.
    * Invalid values  -> ``ValueError`` from ``TrackerSettings``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from steeltrack_config.schema import TrackerSettings

CONFIG_PATH_ENV = "STEELTRACK_CONFIG"
DATABASE_URL_ENVS = ("STEELTRACK_DATABASE_URL", "DATABASE_URL")
LOG_LEVEL_ENV = "STEELTRACK_LOG_LEVEL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML settings file.

    An empty file yields ``{}``.  Settings may sit at the top level or under
    a ``steeltrack:`` key.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
    if "steeltrack" in data and len(data) == 1:
        data = data["steeltrack"] or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: 'steeltrack' must be a mapping")
    return data


def _check_keys(data: Mapping[str, Any], source: str) -> None:
    unknown = sorted(set(data) - TrackerSettings.field_names())
    if unknown:
        raise ValueError(f"{source}: unknown settings keys {unknown}")


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TrackerSettings:
    """Build a ``TrackerSettings`` from defaults, YAML and environment."""
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}

    config_path = path if path is not None else env.get(CONFIG_PATH_ENV)
    if config_path:
        config_path = Path(config_path)
        data = load_yaml_file(config_path)
        _check_keys(data, str(config_path))
        values.update(data)

    for name in DATABASE_URL_ENVS:
        if env.get(name):
            values["database_url"] = env[name]
            break
    if env.get(LOG_LEVEL_ENV):
        values["log_level"] = env[LOG_LEVEL_ENV].upper()

    if isinstance(values.get("log_level"), str):
        values["log_level"] = values["log_level"].upper()

    return TrackerSettings(**values)
