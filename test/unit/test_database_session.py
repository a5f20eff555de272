"""Unit tests for database session helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import event, text

from services import database


class FakeSession:
    """Session stub capturing commits, rollbacks and closes."""

    def __init__(self) -> None:
        """Initialize call tracking."""
        self.committed = False
        self.rolled_back = False
        self.closed = False
        self.expire_on_commit = True

    def commit(self) -> None:
        """Mark commit as called."""
        self.committed = True

    def rollback(self) -> None:
        """Mark rollback as called."""
        self.rolled_back = True

    def close(self) -> None:
        """Mark close as called."""
        self.closed = True


def test_session_scope_commits_on_success() -> None:
    """session_scope commits and closes after successful usage."""
    session = FakeSession()

    with database.session_scope(lambda: session) as active_session:
        assert active_session is session

    assert session.committed is True
    assert session.rolled_back is False
    assert session.closed is True
    assert session.expire_on_commit is False


def test_session_scope_rolls_back_on_error() -> None:
    """session_scope rolls back when an exception is raised."""
    session = FakeSession()

    with pytest.raises(RuntimeError, match="boom"):
        with database.session_scope(lambda: session):
            raise RuntimeError("boom")

    assert session.rolled_back is True
    assert session.committed is False
    assert session.closed is True


def test_run_in_scope_joins_caller_session() -> None:
    """A provided scope is used as-is and never committed."""
    caller = FakeSession()

    def factory():
        raise AssertionError("factory should not be used")

    result = database.run_in_scope(factory, lambda session: session, caller)

    assert result is caller
    assert caller.committed is False


def test_run_in_scope_opens_own_transaction() -> None:
    """Without a scope the handler runs in a fresh committed session."""
    session = FakeSession()

    result = database.run_in_scope(lambda: session, lambda active: "ok")

    assert result == "ok"
    assert session.committed is True


def test_sqlite_engine_begins_immediate(tmp_path) -> None:
    """SQLite engines take the write lock when a transaction starts."""
    engine = database.create_sync_engine(f"sqlite:///{tmp_path / 'lock.db'}")
    statements: list[str] = []

    @event.listens_for(engine, "before_cursor_execute")
    def _record(conn, cursor, statement, parameters, context, executemany) -> None:
        statements.append(statement)

    try:
        with engine.begin() as connection:
            connection.execute(text("SELECT 1"))
    finally:
        engine.dispose()

    assert statements[0] == "BEGIN IMMEDIATE"


def test_check_connection_reports_failure(monkeypatch) -> None:
    """Unreachable databases are reported rather than raised."""

    class BrokenEngine:
        def connect(self):
            raise OSError("refused")

    monkeypatch.setattr(database, "get_sync_engine", lambda: BrokenEngine())

    assert database.check_connection() is False
