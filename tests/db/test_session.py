from __future__ import annotations

import pytest
from sqlalchemy.engine.base import NestedTransaction

from transactional import Connection
from transactional.db import TransactionalSession


def _count(engine) -> int:
    with TransactionalSession(engine) as session:
        return session.execute_scalar("SELECT COUNT(*) FROM items")


def test_commit_runs_operations_on_exit(engine, connection: Connection) -> None:
    calls: list[str] = []

    with TransactionalSession(engine, connection) as session:
        rc = session.execute(
            "INSERT INTO items (id, value) VALUES (:id, :value)",
            {"id": 1, "value": 123},
        )
        assert rc == 1
        assert connection.depth == 1
        session.on_commit(lambda op, conn: calls.append("commit"))
        assert calls == []

    assert calls == ["commit"]
    assert connection.depth == 0

    with TransactionalSession(engine) as session2:
        row = session2.fetch_one("SELECT id, value FROM items WHERE id = :id", {"id": 1})
        assert row == {"id": 1, "value": 123}


def test_exception_rolls_back_db_and_operations(engine, connection: Connection) -> None:
    calls: list[str] = []

    with pytest.raises(RuntimeError, match="boom"):
        with TransactionalSession(engine, connection) as session:
            session.execute("INSERT INTO items (id, value) VALUES (1, 1)")
            session.on_commit(lambda op, conn: calls.append("commit"))
            session.on_rollback(lambda op, conn: calls.append("rollback"))
            raise RuntimeError("boom")

    assert calls == ["rollback"]
    assert connection.depth == 0
    assert _count(engine) == 0


def test_savepoint_rollback_keeps_outer_work(engine, connection: Connection) -> None:
    calls: list[str] = []

    with TransactionalSession(engine, connection) as session:
        session.execute("INSERT INTO items (id, value) VALUES (1, 1)")
        session.on_commit(lambda op, conn: calls.append("commit:outer"))

        with pytest.raises(ValueError):
            with session.savepoint():
                assert connection.depth == 2
                session.execute("INSERT INTO items (id, value) VALUES (2, 2)")
                session.on_commit(lambda op, conn: calls.append("commit:inner"))
                session.on_rollback(lambda op, conn: calls.append("rollback:inner"))
                raise ValueError("inner failure")

        assert calls == ["rollback:inner"]
        assert connection.depth == 1

    assert calls == ["rollback:inner", "commit:outer"]
    with TransactionalSession(engine) as session:
        assert session.fetch_all("SELECT id FROM items ORDER BY id") == [{"id": 1}]


def test_released_savepoint_commits_with_outer(engine, connection: Connection) -> None:
    calls: list[str] = []

    with TransactionalSession(engine, connection) as session:
        session.execute("INSERT INTO items (id, value) VALUES (1, 1)")
        with session.savepoint():
            session.execute("INSERT INTO items (id, value) VALUES (2, 2)")
            session.on_commit(lambda op, conn: calls.append("commit:inner"))

        assert calls == []

    assert calls == ["commit:inner"]
    assert _count(engine) == 2


def test_session_creates_connection_when_omitted(engine) -> None:
    session = TransactionalSession(engine)

    assert isinstance(session.connection, Connection)
    assert session.connection.depth == 0


def test_nested_usage_raises_runtime_error(engine, connection: Connection) -> None:
    with TransactionalSession(engine, connection) as session:
        with pytest.raises(RuntimeError):
            with session:
                pass


def test_inactive_session_raises(engine) -> None:
    session = TransactionalSession(engine)

    with pytest.raises(RuntimeError, match="not active"):
        session.execute("SELECT 1")
    with pytest.raises(RuntimeError, match="not active"):
        session.on_commit(lambda op, conn: None)


def test_sql_connection_is_closed_after_exit(engine) -> None:
    with TransactionalSession(engine) as session:
        conn = session._conn
        assert conn is not None

    assert conn.closed is True


def test_failed_savepoint_release_rolls_back_nested_operations(
    engine, connection: Connection, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[str] = []

    def failing_release(self) -> None:
        self.rollback()
        raise RuntimeError("release failed")

    with pytest.raises(RuntimeError, match="release failed"):
        with TransactionalSession(engine, connection) as session:
            session.on_rollback(lambda op, conn: calls.append("rollback:outer"))
            monkeypatch.setattr(NestedTransaction, "commit", failing_release)
            with session.savepoint():
                session.on_rollback(lambda op, conn: calls.append("rollback:inner"))

    assert calls == ["rollback:inner", "rollback:outer"]
    assert connection.depth == 0
    assert connection.savepoints == {}

    connection.on_commit(lambda op, conn: calls.append("commit:after"))
    assert calls[-1] == "commit:after"
