from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection as SqlConnection
from sqlalchemy.engine import Engine, Result
from sqlalchemy.sql import TextClause

from ..connection import Connection
from ..operation import Operation, OperationCallback

logger = logging.getLogger(__name__)


class TransactionalSession:
    """
    SQLAlchemy transaction mirrored onto a Connection.

    The database transaction and the Connection's transaction open and
    close together, so operations registered during the session run only
    once the database has actually committed, and roll back with it.

    Use as:
        with TransactionalSession(engine, connection) as session:
            session.execute("UPDATE users SET name = :name WHERE id = 1", {"name": "x"})
            session.on_commit(lambda op, conn: cache.delete("user:1"))

            with session.savepoint():
                session.execute(...)
                session.on_rollback(lambda op, conn: ...)
    """

    def __init__(self, engine: Engine, connection: Optional[Connection] = None) -> None:
        self.engine = engine
        self.connection = connection if connection is not None else Connection()
        self._conn: SqlConnection | None = None
        self._tx = None

    def __enter__(self) -> "TransactionalSession":
        if self._conn is not None:
            raise RuntimeError(
                "TransactionalSession is already active; use savepoint() for nesting"
            )
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()
        self.connection.start_transaction()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type:
                self._rollback()
            else:
                self._commit()
        finally:
            if self._conn is not None:
                self._conn.close()

            self._conn = None
            self._tx = None

        # propagate exceptions (if any)
        return False

    def _commit(self) -> None:
        try:
            if self._tx is not None:
                self._tx.commit()
        except Exception:
            logger.warning(
                "Database commit failed; rolling back operations on connection %s",
                self.connection.connection_id,
            )
            self.connection.rollback_transaction()
            raise
        self.connection.commit_transaction()

    def _rollback(self) -> None:
        try:
            if self._tx is not None:
                self._tx.rollback()
        finally:
            self.connection.rollback_transaction()

    def _connection(self) -> SqlConnection:
        if self._conn is None:
            raise RuntimeError("TransactionalSession is not active; use within a context manager")
        return self._conn

    @contextmanager
    def savepoint(self) -> Iterator["TransactionalSession"]:
        """
        Nested transaction backed by a database SAVEPOINT.

        Releasing the savepoint hands its operations to the enclosing
        transaction. An exception rolls both back and is re-raised.
        """
        nested = self._connection().begin_nested()
        self.connection.start_transaction()
        try:
            yield self
        except BaseException:
            try:
                nested.rollback()
            finally:
                self.connection.rollback_transaction()
            raise
        try:
            nested.commit()
        except Exception:
            logger.warning(
                "Savepoint release failed; rolling back nested operations on connection %s",
                self.connection.connection_id,
            )
            self.connection.rollback_transaction()
            raise
        self.connection.commit_transaction()

    def on_commit(self, callback: OperationCallback) -> Operation:
        self._connection()
        return self.connection.on_commit(callback)

    def on_rollback(self, callback: OperationCallback) -> Operation:
        self._connection()
        return self.connection.on_rollback(callback)

    def _run(self, sql: str | TextClause, params: Mapping[str, Any] | None) -> Result:
        stmt = text(sql) if isinstance(sql, str) else sql
        return self._connection().execute(stmt, params or {})

    def execute(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> int:
        """Execute a non-SELECT statement and return affected row count."""
        result = self._run(sql, params)
        if result.rowcount is None:
            raise RuntimeError(
                "execute() received None rowcount; "
                "DDL and similar statements are not supported here"
            )
        return int(result.rowcount)

    def execute_scalar(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return self._run(sql, params).scalar_one_or_none()

    def fetch_one(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Single row as a dict, None if absent. Raises on more than one row."""
        row = self._run(sql, params).mappings().one_or_none()
        return dict(row) if row is not None else None

    def fetch_all(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        return [dict(row) for row in self._run(sql, params).mappings()]
