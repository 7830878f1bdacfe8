from __future__ import annotations

from typing import Any, Mapping, Sequence

from sqlalchemy import Table, and_
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import Executable


class ChunkTransaction:
    """
    A single attempt at applying one chunk, on its own connection.

    The transaction begins on construction and ends with exactly one call to
    commit() or rollback(); both close the connection. A retried chunk
    always gets a fresh ChunkTransaction, never the one that failed.

    Usage:
        tx = ChunkTransaction.begin(engine)
        try:
            tx.delete_range(table, "id", 1, 500)
            tx.insert_rows(table.insert(), params)
            tx.commit()
        except Exception:
            tx.rollback()
            raise
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._tx = None
        self._conn: Connection | None = engine.connect()
        try:
            self._tx = self._conn.begin()
        except Exception:
            self._conn.close()
            self._conn = None
            raise

    @classmethod
    def begin(cls, engine: Engine) -> "ChunkTransaction":
        return cls(engine)

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("Chunk transaction is already closed")
        return self._conn

    def _close(self) -> None:
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._tx = None

    def commit(self) -> None:
        """
        Raises:
            RuntimeError: If the transaction was already committed or rolled back
        """
        self._connection()
        try:
            self._tx.commit()
        except Exception:
            # the driver may have left the transaction open
            try:
                self._tx.rollback()
            except Exception:
                pass
            raise
        finally:
            self._close()

    def rollback(self) -> None:
        self._connection()
        try:
            self._tx.rollback()
        finally:
            self._close()

    def execute(self, stmt: Executable, params: Mapping[str, Any] | None = None) -> int:
        """Run one statement; returns the affected row count (0 when the driver reports none)."""
        result = self._connection().execute(stmt, params or {})
        return int(result.rowcount or 0)

    def delete_range(self, table: Table, key: str, start: Any, end: Any) -> int:
        """Delete rows whose ``key`` lies in ``[start, end]``."""
        column = table.c[key]
        return self.execute(table.delete().where(and_(column >= start, column <= end)))

    def delete_all(self, table: Table) -> int:
        return self.execute(table.delete())

    def insert_rows(self, stmt: Executable, rows: Sequence[Mapping[str, Any]]) -> int:
        """
        executemany ``stmt`` over ``rows``.

        Returns:
            Number of parameter sets sent
        """
        conn = self._connection()
        if not rows:
            return 0
        conn.execute(stmt, list(rows)).close()
        return len(rows)
