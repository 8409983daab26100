"""Database layer - engine construction, declarative base, and session scope."""

from travel_kernel.db.base import Base, TrackedBase, UUIDString
from travel_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    session_factory_for,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "build_engine",
    "create_tables",
    "drop_tables",
    "session_factory_for",
    "session_scope",
]
