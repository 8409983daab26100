"""
Tests for engine construction, session_scope, and schema helpers.
"""

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.pool import StaticPool

from conftest import make_payload
from travel_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    session_factory_for,
    session_scope,
)
from travel_kernel.domain.request import Requestor, RequestType
from travel_kernel.exceptions import RequestNotFoundError
from travel_kernel.services.entity_store import EntityStore

WORKFLOW_TABLES = {"travel_requests", "approval_steps", "workflow_executions"}


def _requestor() -> Requestor:
    payload = make_payload()
    return Requestor(
        name=payload["requestor_name"],
        staff_id=payload["requestor_staff_id"],
        department=payload["department"],
        email=payload["requestor_email"],
    )


class TestBuildEngine:

    def test_in_memory_sqlite_shares_one_connection(self):
        engine = build_engine("sqlite://")
        try:
            assert isinstance(engine.pool, StaticPool)
        finally:
            engine.dispose()

    def test_sqlite_foreign_keys_enabled(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'fk.db'}")
        try:
            with engine.connect() as conn:
                assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
        finally:
            engine.dispose()


class TestSchemaHelpers:

    def test_create_then_drop(self):
        engine = build_engine("sqlite://")
        try:
            create_tables(engine)
            assert WORKFLOW_TABLES <= set(inspect(engine).get_table_names())

            drop_tables(engine)
            assert not WORKFLOW_TABLES & set(inspect(engine).get_table_names())
        finally:
            engine.dispose()


class TestSessionScope:

    def test_commits_on_success(self, session_factory, clock):
        with session_scope(session_factory) as session:
            created = EntityStore(session, clock).create_request(
                RequestType.TRANSPORT, _requestor(),
            )

        with session_scope(session_factory) as session:
            loaded = EntityStore(session, clock).get_request(
                created.request_id, RequestType.TRANSPORT,
            )
        assert loaded.request_id == created.request_id

    def test_rolls_back_and_reraises(self, session_factory, clock):
        request_ids = []
        with pytest.raises(RuntimeError, match="boom"):
            with session_scope(session_factory) as session:
                created = EntityStore(session, clock).create_request(
                    RequestType.TRANSPORT, _requestor(),
                )
                request_ids.append(created.request_id)
                raise RuntimeError("boom")

        with session_scope(session_factory) as session:
            with pytest.raises(RequestNotFoundError):
                EntityStore(session, clock).get_request(
                    request_ids[0], RequestType.TRANSPORT,
                )

    def test_factory_keeps_attributes_after_commit(self, engine):
        factory = session_factory_for(engine)
        assert factory.kw["expire_on_commit"] is False
