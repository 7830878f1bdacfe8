from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import Executable


def _statement(sql: str | Executable) -> Executable:
    return text(sql) if isinstance(sql, str) else sql


class DbSession:
    """
    One connection and one transaction for reads, DDL and sequence upkeep.

    Commits when the block exits cleanly and rolls back when it raises.
    Chunk writes use ChunkTransaction instead, which is committed explicitly.

    Use as:
        with DbSession(engine) as session:
            session.execute_ddl("CREATE TABLE ...")
            rows = session.fetch_rows(select(...))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._conn: Connection | None = None
        self._tx = None

    def __enter__(self) -> "DbSession":
        if self._conn is not None:
            raise RuntimeError("DbSession is already active; nested sessions are not allowed")
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn, tx = self._conn, self._tx
        self._conn = self._tx = None
        try:
            if tx is not None and exc_type:
                tx.rollback()
            elif tx is not None:
                tx.commit()
        finally:
            if conn is not None:
                conn.close()

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("DbSession is not active; use within a context manager")
        return self._conn

    def execute(self, sql: str | Executable, params: Mapping[str, Any] | None = None) -> int:
        """Run an INSERT/UPDATE/DELETE and return the affected row count."""
        result = self._connection().execute(_statement(sql), params or {})
        if result.rowcount is None:
            raise RuntimeError("Driver reported no rowcount; use execute_ddl() for DDL statements")
        return int(result.rowcount)

    def execute_ddl(self, sql: str | Executable) -> None:
        self._connection().execute(_statement(sql)).close()

    def execute_scalar(self, sql: str | Executable, params: Mapping[str, Any] | None = None) -> Any:
        """Single value or None, e.g. ``MAX(id)`` or a sequence name."""
        return self._connection().execute(_statement(sql), params or {}).scalar_one_or_none()

    def fetch_rows(self, sql: str | Executable, params: Mapping[str, Any] | None = None) -> list[tuple[Any, ...]]:
        """Rows as plain tuples, in select-list order."""
        result = self._connection().execute(_statement(sql), params or {})
        return [tuple(row) for row in result]
