"""
Configuration schema (``travel_config.schema``).

Frozen dataclasses describing the workflow runtime settings.  Parsing
and validation live in ``travel_config.loader``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

DEFAULT_DATABASE_URL = "sqlite:///travel_workflow.db"
DEFAULT_ADMIN_OVERRIDE_CAPABILITY = "manage_workflows"


@dataclass(frozen=True)
class WorkflowSettings:
    """Runtime settings for the approval workflow."""

    database_url: str = DEFAULT_DATABASE_URL
    echo_sql: bool = False
    # None disables the admin override entirely
    admin_override_capability: str | None = DEFAULT_ADMIN_OVERRIDE_CAPABILITY
    notification_workers: int = 2
    log_level: str = "INFO"
    # IANA zone for the timestamp embedded in request identifiers
    id_timezone: str | None = None
    # actor_id -> capabilities, for StaticPermissionOracle deployments
    permission_grants: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level.upper())
