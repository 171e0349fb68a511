"""
concession_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_settings()`` is the only way services, scripts and tests
    obtain configuration.  It loads the YAML file (the packaged
    ``defaults.yaml`` unless ``CONCESSION_CONFIG`` names another), applies
    ``DATABASE_URL``, validates and logs a trace of what was loaded.

Architecture position:
    Configuration.  Sits above ``concession_kernel`` and below
    ``concession_services``.  The kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` when the configured file does not exist.
    - ``ValueError`` for unknown keys or settings that fail validation.
"""

from __future__ import annotations

from pathlib import Path

from concession_config.loader import load_settings
from concession_config.schema import ConcessionSettings
from concession_kernel.logging_config import get_logger

logger = get_logger("config")


def get_active_settings(path: Path | str | None = None) -> ConcessionSettings:
    """Load, validate and return the active settings."""
    settings = load_settings(path).validate()
    logger.info(
        "settings_loaded",
        extra={
            "dialect": settings.database.url.split(":", 1)[0],
            "critical_write_attempts": settings.retry.critical_write_attempts,
            "read_attempts": settings.retry.read_attempts,
            "deadline_seconds": settings.retry.deadline_seconds,
            "queue_capacity": settings.dispatch.queue_capacity,
        },
    )
    return settings


__all__ = ["ConcessionSettings", "get_active_settings"]
