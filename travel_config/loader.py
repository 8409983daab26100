"""
Configuration Loader (``travel_config.loader``).

Responsibility
--------------
Loads the workflow YAML file and parses it into the frozen
``WorkflowSettings`` dataclass.  The public entry point is
``travel_config.get_settings()``; this module is its tooling.

Invariants enforced
-------------------
* Unknown keys raise ``ValueError`` (typos never fall back to defaults).
* Every value is type-checked before the dataclass is built.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or wrong type  -> ``ValueError``.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from travel_config.schema import WorkflowSettings

_KNOWN_KEYS = frozenset(f.name for f in fields(WorkflowSettings))


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def parse_settings(data: dict[str, Any]) -> WorkflowSettings:
    """
    Parse ``WorkflowSettings`` from a dict.

    Accepts either the settings keys at the top level or nested under a
    ``workflow:`` key.

    Raises:
        ValueError: on unknown keys or invalid values.
    """
    if set(data) == {"workflow"}:
        data = data["workflow"] or {}

    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ValueError(f"Unknown workflow setting(s): {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    if "database_url" in data:
        kwargs["database_url"] = _require_str(data, "database_url")
    if "echo_sql" in data:
        kwargs["echo_sql"] = _require_bool(data, "echo_sql")
    if "admin_override_capability" in data:
        value = data["admin_override_capability"]
        if value is not None and not isinstance(value, str):
            raise ValueError("admin_override_capability must be a string or null")
        kwargs["admin_override_capability"] = value or None
    if "notification_workers" in data:
        workers = data["notification_workers"]
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ValueError("notification_workers must be a positive integer")
        kwargs["notification_workers"] = workers
    if "log_level" in data:
        level = _require_str(data, "log_level").upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log_level: {data['log_level']!r}")
        kwargs["log_level"] = level
    if data.get("id_timezone") is not None:
        zone = _require_str(data, "id_timezone")
        try:
            ZoneInfo(zone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown id_timezone: {zone!r}") from None
        kwargs["id_timezone"] = zone
    if "permission_grants" in data:
        kwargs["permission_grants"] = parse_permission_grants(
            data["permission_grants"] or {},
        )

    return WorkflowSettings(**kwargs)


def parse_permission_grants(data: Any) -> dict[str, tuple[str, ...]]:
    """Parse ``actor_id -> [capability, ...]``."""
    if not isinstance(data, dict):
        raise ValueError("permission_grants must be a mapping of actor id to capabilities")
    grants: dict[str, tuple[str, ...]] = {}
    for actor_id, capabilities in data.items():
        if not isinstance(capabilities, list) or not all(
            isinstance(c, str) for c in capabilities
        ):
            raise ValueError(f"permission_grants[{actor_id!r}] must be a list of strings")
        grants[str(actor_id)] = tuple(capabilities)
    return grants


def load_settings(path: Path) -> WorkflowSettings:
    """Load and parse a settings file."""
    return parse_settings(load_yaml_file(path))


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} must be a non-empty string")
    return value


def _require_bool(data: dict[str, Any], key: str) -> bool:
    value = data[key]
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false")
    return value
