"""
travel_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain runtime settings, through
    ``get_settings()``.  No other component reads configuration files or
    environment variables directly.

Architecture position:
    Configuration.  Sits beside ``travel_kernel``; the kernel never
    imports from this package.  ``WorkflowService.from_settings()`` is the
    bridge.

Resolution order:
    1. Explicit ``path`` argument.
    2. ``TRAVEL_WORKFLOW_CONFIG`` environment variable.
    3. Built-in defaults (no file).
    ``DATABASE_URL`` in the environment overrides ``database_url`` from
    any source.

Failure modes:
    - ``FileNotFoundError`` -- the named file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from travel_config.loader import load_settings, parse_settings
from travel_config.schema import WorkflowSettings

_logger = logging.getLogger("travel_kernel.config")

CONFIG_PATH_ENV = "TRAVEL_WORKFLOW_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"


def get_settings(path: Path | str | None = None) -> WorkflowSettings:
    """The ONLY public configuration entrypoint."""
    source = path or os.environ.get(CONFIG_PATH_ENV)
    if source:
        settings = load_settings(Path(source))
    else:
        settings = WorkflowSettings()

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        settings = replace(settings, database_url=database_url)

    _logger.info(
        "workflow_settings_loaded",
        extra={
            "source": str(source) if source else "defaults",
            "database_dialect": settings.database_url.split(":", 1)[0],
            "admin_override_capability": settings.admin_override_capability,
            "notification_workers": settings.notification_workers,
        },
    )
    return settings


__all__ = [
    "CONFIG_PATH_ENV",
    "DATABASE_URL_ENV",
    "WorkflowSettings",
    "get_settings",
    "load_settings",
    "parse_settings",
]
