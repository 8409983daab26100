"""
Module: travel_engines
Responsibility:
    Package entrypoint that re-exports the pure workflow evaluation
    functions.  This is the canonical import surface for travel_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import travel_kernel/domain and travel_kernel/exceptions.
    MUST NOT import travel_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.  Timestamps
      are stamped by the entity store when a plan is applied.
    - Determinism: identical inputs (including the permission answers)
      always produce identical plans.
"""

from travel_engines.transition import (
    DEFAULT_ADMIN_OVERRIDE,
    TIMEOUT_ACTOR,
    PermissionCheck,
    authorize,
    available_actions,
    evaluate_timeout,
    evaluate_transition,
)

__all__ = [
    "DEFAULT_ADMIN_OVERRIDE",
    "PermissionCheck",
    "TIMEOUT_ACTOR",
    "authorize",
    "available_actions",
    "evaluate_timeout",
    "evaluate_transition",
]
