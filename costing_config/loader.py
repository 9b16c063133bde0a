"""
Configuration Loader (``costing_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into a frozen
``EngineSettings``.  Runtime callers use
``costing_config.get_active_config()`` instead of this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from costing_config.schema import EngineSettings

_DECIMAL_FIELDS = ("ratio_tolerance", "annual_work_hours")
_INT_FIELDS = ("money_decimal_places", "worker_pool_size", "stale_job_timeout_seconds")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def _to_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, float):
        # YAML floats are parsed from their text form, never the binary value
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal number, got {value!r}") from exc


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the raw settings mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse a raw settings mapping into ``EngineSettings``."""
    section = data.get("settings", data)
    if not isinstance(section, dict):
        raise ValueError("'settings' must be a mapping")

    unknown = set(section) - EngineSettings.field_names()
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

    kwargs: dict[str, Any] = {}
    for key, value in section.items():
        if key in _DECIMAL_FIELDS:
            kwargs[key] = _to_decimal(key, value)
        elif key in _INT_FIELDS:
            kwargs[key] = _to_int(key, value)
        else:
            kwargs[key] = str(value)

    return EngineSettings(**kwargs, checksum=compute_checksum(section))


def load_settings(path: Path) -> EngineSettings:
    return parse_settings(load_yaml_file(path))
