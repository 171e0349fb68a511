"""
Settings Loader (``concession_config.loader``).

Responsibility
--------------
Reads a YAML settings file and parses it into the frozen dataclasses of
``concession_config.schema``.  Sections and keys missing from the file keep
their dataclass defaults; unknown keys are rejected so that typos surface.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from concession_config.schema import (
    ConcessionSettings,
    DatabaseSettings,
    DispatchSettings,
    LedgerSettings,
    LockSettings,
    MaintenanceSettings,
    OrderSettings,
    RetrySettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV = "CONCESSION_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "retry": RetrySettings,
    "locks": LockSettings,
    "dispatch": DispatchSettings,
    "orders": OrderSettings,
    "ledger": LedgerSettings,
    "maintenance": MaintenanceSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file is an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_section(name: str, data: dict[str, Any] | None):
    cls = _SECTIONS[name]
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section {name!r} must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in {name!r}: {sorted(unknown)}")
    values = {
        key: tuple(value) if isinstance(value, list) else value
        for key, value in data.items()
    }
    return cls(**values)


def parse_settings(data: dict[str, Any]) -> ConcessionSettings:
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown settings sections: {sorted(unknown)}")
    return ConcessionSettings(**{name: _parse_section(name, data.get(name)) for name in _SECTIONS})


def load_settings(path: Path | str | None = None, environ: dict[str, str] | None = None) -> ConcessionSettings:
    """
    Load settings from ``path`` (default: ``$CONCESSION_CONFIG`` or the
    packaged defaults) and apply the ``DATABASE_URL`` override.
    """
    env = os.environ if environ is None else environ
    source = Path(path) if path is not None else Path(env.get(CONFIG_ENV) or DEFAULTS_PATH)
    settings = parse_settings(load_yaml_file(source))
    url = env.get(DATABASE_URL_ENV)
    if url:
        settings = replace(settings, database=replace(settings.database, url=url))
    return settings
