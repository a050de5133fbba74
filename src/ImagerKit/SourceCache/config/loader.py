# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.config.loader",
#   "purpose": "Configuration Loading with File/Env/Override Precedence.",
#   "sections": [
#     {"id": "read-file", "name": "_read_file", "anchor": "function-read-file", "kind": "function"},
#     {"id": "assign-nested", "name": "_assign_nested", "anchor": "function-assign-nested", "kind": "function"},
#     {"id": "coerce-env-value", "name": "_coerce_env_value", "anchor": "function-coerce-env-value", "kind": "function"},
#     {"id": "merge-env-overrides", "name": "_merge_env_overrides", "anchor": "function-merge-env-overrides", "kind": "function"},
#     {"id": "merge-overrides", "name": "_merge_overrides", "anchor": "function-merge-overrides", "kind": "function"},
#     {"id": "load-config", "name": "load_config", "anchor": "function-load-config", "kind": "function"},
#     {"id": "validate-config-file", "name": "validate_config_file", "anchor": "function-validate-config-file", "kind": "function"},
#     {"id": "export-config-schema", "name": "export_config_schema", "anchor": "function-export-config-schema", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Configuration Loading with File/Env/Override Precedence

Implements three-level config composition:
1. **File level** (YAML/JSON): base configuration
2. **Environment level**: IMAGERKIT_* prefixed variables override file
3. **Override level**: programmatic overrides (CLI, tests) win

Environment variables use double-underscore notation:
  IMAGERKIT_TRANSPORT__TIMEOUT_S=10  →  transport.timeout_s=10
  IMAGERKIT_CACHE_TTL_S=false        →  cache_ttl_s=None (never expire)

JSON values are automatically parsed; strings are type-coerced when possible.
The resulting SourceCacheConfig is meant to be loaded once at startup.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from .models import SourceCacheConfig

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "IMAGERKIT_"


def _read_file(path: str) -> dict[str, Any]:
    """
    Read YAML or JSON config file.

    Raises:
        ValueError: If file cannot be read or parsed
    """
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()

    if suffix in (".yaml", ".yml"):
        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if suffix == ".json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e

    raise ValueError(f"Unsupported file format: {suffix}. Use .yaml or .json")


def _assign_nested(data: dict[str, Any], dotted_key: str, value: Any) -> None:
    """
    Assign value to nested dict using dot notation.

    Example:
        _assign_nested(data, "transport.timeout_s", 5)
        → data["transport"]["timeout_s"] = 5
    """
    keys = dotted_key.split(".")
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def _coerce_env_value(value: str) -> Any:
    """
    Attempt to coerce environment variable string to appropriate type.

    Tries JSON parsing first (handles lists, dicts, bools, numbers, null).
    Falls back to string if JSON fails.
    """
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        pass

    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    return value


def _merge_env_overrides(data: dict[str, Any], env_prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """
    Overlay environment variables onto config dict.

    Looks for prefixed variables and maps double-underscore notation to
    nested dicts.
    """
    for env_key, env_value in os.environ.items():
        if not env_key.startswith(env_prefix):
            continue

        relative_key = env_key[len(env_prefix) :].lower()
        dotted_key = relative_key.replace("__", ".")
        coerced_value = _coerce_env_value(env_value)
        _assign_nested(data, dotted_key, coerced_value)
        _LOGGER.debug("Environment override: %s -> %s = %r", env_key, dotted_key, coerced_value)

    return data


def _merge_overrides(data: dict[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """Recursively merge programmatic overrides into the base config dict."""
    if not overrides:
        return data

    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(data.get(key), dict):
            data[key] = _merge_overrides(data[key], value)
        else:
            data[key] = value
        _LOGGER.debug("Override: %s = %r", key, value)

    return data


def load_config(
    path: str | None = None,
    env_prefix: str = ENV_PREFIX,
    overrides: Mapping[str, Any] | None = None,
) -> SourceCacheConfig:
    """
    Load SourceCacheConfig from file, environment, and overrides.

    **Precedence:** file < environment < overrides

    Raises:
        ValueError: If config is invalid or file cannot be read
    """
    data: dict[str, Any] = {}

    if path:
        try:
            data = _read_file(path)
            _LOGGER.info("Loaded config from %s", path)
        except ValueError as e:
            _LOGGER.error("Failed to load config: %s", e)
            raise

    data = _merge_env_overrides(data, env_prefix)
    data = _merge_overrides(data, overrides)

    try:
        config = SourceCacheConfig.model_validate(data)
    except ValueError as e:
        _LOGGER.error("Configuration validation failed: %s", e)
        raise
    _LOGGER.info("Configuration validated. Config hash: %s...", config.config_hash()[:8])
    return config


def validate_config_file(path: str) -> bool:
    """
    Validate a config file, raising ValueError when it is invalid.
    """
    load_config(path=path)
    return True


def export_config_schema() -> dict[str, Any]:
    """
    Export JSON Schema for SourceCacheConfig.
    """
    return SourceCacheConfig.model_json_schema()


__all__ = [
    "ENV_PREFIX",
    "export_config_schema",
    "load_config",
    "validate_config_file",
]
