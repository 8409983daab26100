"""
Module: travel_kernel.db.base
Responsibility: Declarative base for the workflow tables.  Every table gets
    a surrogate UUID key; human-facing request identifiers live in their
    own unique column on ``travel_requests``.
Architecture position: Kernel > DB.  Imported by every model module; imports
    nothing from models/, services/, domain/ or outer layers.

Invariants enforced:
    - Primary keys are uuid4 values generated client-side, so a new row's
      id is known before flush (steps and executions are logged by id).
    - Constraint names follow ``NAMING_CONVENTION`` so migrations and
      IntegrityError messages name the same constraint on every dialect.
    - Timestamp columns are timezone-aware on PostgreSQL.  SQLite stores
      them naive; ``models.request.as_utc`` restores UTC on read.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, MetaData, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, 36-character text in the database.

    Text rather than a native UUID column keeps SQLite and PostgreSQL
    schemas identical.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(str(value))


class Base(DeclarativeBase):
    """Declarative base: UUID ``id`` plus the shared type map."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Base for mutable header rows that record when they were created and last written.

    Services stamp both columns from the injected clock; the server
    defaults only cover rows inserted outside the services.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
