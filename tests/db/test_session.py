from __future__ import annotations

import pytest
from sqlalchemy import select, table, column

from ferrydb.db.session import DbSession


def test_transaction_commits_on_success(engine, fresh_table: str) -> None:
    with DbSession(engine) as session:
        rc = session.execute(
            f"INSERT INTO {fresh_table} (id, value) VALUES (:id, :value)",
            {"id": 1, "value": 123},
        )
        assert rc == 1

    with DbSession(engine) as session2:
        rows = session2.fetch_rows(f"SELECT id, value FROM {fresh_table}")
    assert rows == [(1, 123)]


def test_transaction_rolls_back_on_exception(engine, fresh_table: str) -> None:
    with pytest.raises(RuntimeError):
        with DbSession(engine) as session:
            session.execute(f"INSERT INTO {fresh_table} (id, value) VALUES (1, 123)")
            raise RuntimeError("boom")

    with DbSession(engine) as session2:
        assert session2.execute_scalar(f"SELECT COUNT(*) FROM {fresh_table}") == 0


def test_connection_is_closed_after_exit(engine, fresh_table: str) -> None:
    with DbSession(engine) as session:
        conn = session._conn
        assert conn is not None
        session.execute(f"INSERT INTO {fresh_table} (id, value) VALUES (1, 1)")

    assert conn.closed is True


def test_nested_usage_raises_runtime_error(engine) -> None:
    with DbSession(engine) as session:
        with pytest.raises(RuntimeError):
            with session:
                pass


def test_use_outside_context_raises(engine) -> None:
    with pytest.raises(RuntimeError, match="not active"):
        DbSession(engine).execute_scalar("SELECT 1")


def test_execute_returns_rowcount_for_update(engine, fresh_table: str) -> None:
    with DbSession(engine) as session:
        session.execute(f"INSERT INTO {fresh_table} (id, value) VALUES (1, 10), (2, 10), (3, 5)")
        assert session.execute(f"UPDATE {fresh_table} SET value = 0 WHERE value = 10") == 2


def test_execute_ddl_creates_table(engine) -> None:
    with DbSession(engine) as session:
        session.execute_ddl("CREATE TABLE extra (id INTEGER PRIMARY KEY)")
        assert session.execute_scalar("SELECT COUNT(*) FROM extra") == 0


def test_fetch_rows_accepts_core_statements(engine, fresh_table: str) -> None:
    items = table(fresh_table, column("id"), column("name"))
    with DbSession(engine) as session:
        session.execute(f"INSERT INTO {fresh_table} (id, name) VALUES (2, 'b'), (1, 'a')")
        rows = session.fetch_rows(select(items.c.id, items.c.name).order_by(items.c.id))

    assert rows == [(1, "a"), (2, "b")]
