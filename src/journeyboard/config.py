"""YAML configuration for the journey board CLI and services."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

DEFAULT_CONFIG_NAME = "journeyboard.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "paths": {
        "data": "data",
        "db_path": "data/journeyboard.sqlite",
    },
    "board": {
        "hash_algorithm": "djb2",
        "default_assignee": "Time",
        "default_title": "Ação",
        "fallback_due_days": 7,
    },
    "dispatcher": {
        "context_denylist": [
            "estado_atual",
            "contexto_negocio",
            "stage",
            "pending_validation",
            "checklist",
        ],
    },
    "cache": {
        "journey_cache_size": 256,
    },
    "logging": {
        "level": "INFO",
    },
}


class ConfigError(ValueError):
    """Raised when a configuration file cannot be read as a YAML mapping."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def merge_config(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively overlay ``override`` on ``base`` without mutating either."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Load ``config_path`` over the defaults; a missing file yields the defaults."""
    config = copy_config_template()
    if config_path is None:
        return config
    path = Path(config_path)
    if not path.exists():
        return config

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return merge_config(config, data)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False, allow_unicode=True)


def configure_logging(config: Mapping[str, Any]) -> None:
    logging_cfg = config.get("logging") or {}
    level_name = str(logging_cfg.get("level") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(level)


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "configure_logging",
    "copy_config_template",
    "load_config",
    "merge_config",
    "write_config",
]
