"""
Module: travel_kernel.db.engine
Responsibility: Build engines, own transaction boundaries, create the schema.
Architecture position: Kernel > DB.  May import db/base.py; ``create_tables``
    also imports the model modules so the metadata is complete.

Invariants enforced:
    - No module-level engine.  Callers build one with ``build_engine`` and
      pass a session factory down (WorkflowService takes the factory).
    - PostgreSQL runs at READ COMMITTED; the entity store takes a row
      lock (FOR UPDATE) on the request while it transitions it.
    - In-memory SQLite shares one connection (StaticPool) so every
      session of a test sees the same database.
    - ``session_scope`` commits on success and rolls back on any
      exception, which is what makes one transition all-or-nothing.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from travel_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_IN_MEMORY_URLS = frozenset({"sqlite://", "sqlite:///:memory:"})


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Create an engine for ``database_url``.

    SQLite connections may be used from worker threads and enforce
    foreign keys.  Pool sizing only applies to server databases.
    """
    if not database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )
        logger.info("engine_built", extra={"dialect": engine.dialect.name})
        return engine

    options: dict = {"connect_args": {"check_same_thread": False}}
    if database_url in _IN_MEMORY_URLS:
        options["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=echo, **options)

    @event.listens_for(engine, "connect")
    def _sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    logger.info("engine_built", extra={"dialect": "sqlite"})
    return engine


def session_factory_for(engine: Engine) -> sessionmaker[Session]:
    """Factory whose sessions keep loaded attributes after commit.

    Services hand DTOs back after ``session_scope`` has committed, so
    instances must not expire on commit.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    One unit of work: commit on normal exit, roll back and re-raise otherwise.

    Usage:
        with session_scope(factory) as session:
            EntityStore(session, clock).transition(plan)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create every workflow table that does not exist yet."""
    from travel_kernel.db.base import Base
    import travel_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """Drop every workflow table.  Tests and local resets only."""
    from travel_kernel.db.base import Base
    import travel_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
