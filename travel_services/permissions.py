"""
travel_services.permissions -- Permission oracle interface and adapters.

Responsibility:
    Answer "does actor A hold capability C".  The workflow core consumes
    this as a yes/no check and never reads permission tables itself.

Architecture position:
    Services layer.  Injected into WorkflowService; the transition engine
    only ever sees the bound ``has_permission`` callable.

Invariants:
    - Oracles are read-only from the workflow's point of view.
    - Unknown actors hold no capabilities.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Protocol, runtime_checkable


@runtime_checkable
class PermissionOracle(Protocol):
    """Pluggable capability check."""

    def has_permission(self, actor_id: str, capability: str) -> bool:
        """Return True if ``actor_id`` holds ``capability``."""
        ...


class StaticPermissionOracle:
    """PermissionOracle backed by an in-memory actor -> capabilities map.

    Can be replaced with a database-backed or directory-backed
    implementation.
    """

    def __init__(self, grants: Mapping[str, Iterable[str]] | None = None) -> None:
        self._grants: dict[str, set[str]] = {
            actor_id: set(capabilities)
            for actor_id, capabilities in (grants or {}).items()
        }

    def has_permission(self, actor_id: str, capability: str) -> bool:
        return capability in self._grants.get(actor_id, ())

    def grant(self, actor_id: str, *capabilities: str) -> None:
        self._grants.setdefault(actor_id, set()).update(capabilities)

    def revoke(self, actor_id: str, *capabilities: str) -> None:
        self._grants.get(actor_id, set()).difference_update(capabilities)

    def capabilities_of(self, actor_id: str) -> frozenset[str]:
        return frozenset(self._grants.get(actor_id, ()))


class RoleBasedPermissionOracle:
    """PermissionOracle that resolves capabilities through role assignments.

    Mirrors the usual users -> roles -> permissions layout: an actor holds
    a capability when any of their roles grants it.
    """

    def __init__(
        self,
        actor_roles: Mapping[str, Iterable[str]],
        role_permissions: Mapping[str, Iterable[str]],
    ) -> None:
        self._actor_roles = {a: tuple(r) for a, r in actor_roles.items()}
        self._role_permissions = {r: frozenset(p) for r, p in role_permissions.items()}

    def roles_of(self, actor_id: str) -> tuple[str, ...]:
        return self._actor_roles.get(actor_id, ())

    def has_permission(self, actor_id: str, capability: str) -> bool:
        return any(
            capability in self._role_permissions.get(role, frozenset())
            for role in self.roles_of(actor_id)
        )
