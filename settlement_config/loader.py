"""
Configuration loader (``settlement_config.loader``).

Responsibility
--------------
Reads ``defaults.yaml``, merges an optional overlay file over it section by
section, and parses the result into the frozen dataclasses of
``settlement_config.schema``.

Invariants enforced
-------------------
* Unknown sections or keys are rejected, so a misspelt setting never falls
  back silently to its default.
* Money and rates are parsed to ``Decimal`` through ``str``, never via
  float arithmetic.
* ``compute_checksum`` is a deterministic SHA-256 over the merged settings.

Failure modes
-------------
* ``ConfigError`` for a missing file, malformed YAML, an unknown key or a
  value rejected by a section's ``__post_init__``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import fields
from datetime import time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    BillingConfig,
    NumberingConfig,
    PurchasingConfig,
    ReconciliationConfig,
    SettlementConfig,
)
from settlement_kernel.domain.business_day import parse_time_of_day

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS: dict[str, type] = {
    "billing": BillingConfig,
    "purchasing": PurchasingConfig,
    "numbering": NumberingConfig,
    "reconciliation": ReconciliationConfig,
}


class ConfigError(Exception):
    """A configuration file could not be loaded or failed validation.

    Attributes:
        path: The offending file, when one is known.
        reason: What was wrong.
    """

    code: str = "CONFIG_ERROR"

    def __init__(self, reason: str, path: Path | None = None):
        self.path = path
        self.reason = reason
        where = f" ({path})" if path is not None else ""
        super().__init__(f"Invalid settlement configuration{where}: {reason}")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML mapping; an empty file is an empty mapping."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError("file not found", path) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"malformed YAML: {exc}", path) from exc
    if not isinstance(data, dict):
        raise ConfigError("top level must be a mapping", path)
    return data


def merge_settings(
    base: dict[str, Any],
    overlay: dict[str, Any],
    path: Path | None = None,
) -> dict[str, Any]:
    """Overlay section keys onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for section, values in overlay.items():
        if section not in _SECTIONS:
            raise ConfigError(f"unknown section '{section}'", path)
        if not isinstance(values, dict):
            raise ConfigError(f"section '{section}' must be a mapping", path)
        merged.setdefault(section, {}).update(values)
    return merged


def _parse_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def _parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        # YAML 1.1 reads unquoted HH:MM:SS as base-60 seconds
        hours, rest = divmod(value, 3600)
        minutes, seconds = divmod(rest, 60)
        return time(hours, minutes, seconds)
    return parse_time_of_day(str(value))


def _coerce(default: Any, value: Any) -> Any:
    """Coerce a YAML scalar to the type of the dataclass default."""
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, Decimal):
        return _parse_decimal(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, time):
        return _parse_time(value)
    return str(value)


def parse_section(name: str, values: dict[str, Any], path: Path | None = None) -> Any:
    section_cls = _SECTIONS[name]
    defaults = {f.name: f.default for f in fields(section_cls)}
    unknown = set(values) - set(defaults)
    if unknown:
        raise ConfigError(
            f"unknown keys in '{name}': {', '.join(sorted(unknown))}", path
        )
    try:
        kwargs = {key: _coerce(defaults[key], value) for key, value in values.items()}
        return section_cls(**kwargs)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name}: {exc}", path) from exc


def compute_checksum(settings: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the merged settings."""
    canonical = json.dumps(settings, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def load_config(path: Path | str | None = None) -> SettlementConfig:
    """
    Load defaults, merge ``path`` over them, and validate.

    Raises:
        ConfigError: on any problem with either file.
    """
    settings = load_yaml_file(DEFAULTS_PATH)
    overlay_path = Path(path) if path is not None else None
    if overlay_path is not None:
        settings = merge_settings(
            settings, load_yaml_file(overlay_path), overlay_path
        )

    sections = {
        name: parse_section(name, settings.get(name, {}), overlay_path)
        for name in _SECTIONS
    }
    return SettlementConfig(**sections, checksum=compute_checksum(settings))
