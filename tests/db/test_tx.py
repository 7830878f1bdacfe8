from __future__ import annotations

import pytest
from sqlalchemy import MetaData, Table, column, insert, table, text

from ferrydb.db.session import DbSession
from ferrydb.db.tx import ChunkTransaction


def _count(engine, name: str) -> int:
    with DbSession(engine) as session:
        return session.execute_scalar(f"SELECT COUNT(*) FROM {name}")


def test_commit_makes_rows_visible(engine, fresh_table: str) -> None:
    tx = ChunkTransaction.begin(engine)
    tx.execute(text(f"INSERT INTO {fresh_table} (id, value) VALUES (:id, :value)"), {"id": 1, "value": 123})
    tx.commit()

    assert tx.closed
    assert _count(engine, fresh_table) == 1


def test_rollback_discards_rows(engine, fresh_table: str) -> None:
    tx = ChunkTransaction.begin(engine)
    tx.execute(text(f"INSERT INTO {fresh_table} (id, value) VALUES (1, 123)"))
    tx.rollback()

    assert _count(engine, fresh_table) == 0


def test_closed_transaction_cannot_be_reused(engine, fresh_table: str) -> None:
    tx = ChunkTransaction.begin(engine)
    tx.commit()

    with pytest.raises(RuntimeError, match="already closed"):
        tx.execute(text(f"INSERT INTO {fresh_table} (id, value) VALUES (2, 456)"))
    with pytest.raises(RuntimeError, match="already closed"):
        tx.commit()
    with pytest.raises(RuntimeError, match="already closed"):
        tx.rollback()


def test_insert_rows_sends_every_parameter_set(engine, fresh_table: str) -> None:
    items = table(fresh_table, column("id"), column("value"))
    tx = ChunkTransaction.begin(engine)

    sent = tx.insert_rows(insert(items), [{"id": i, "value": i * 2} for i in range(1, 6)])
    tx.commit()

    assert sent == 5
    assert _count(engine, fresh_table) == 5


def test_insert_rows_with_no_rows_is_a_no_op(engine, fresh_table: str) -> None:
    items = table(fresh_table, column("id"), column("value"))
    tx = ChunkTransaction.begin(engine)

    assert tx.insert_rows(insert(items), []) == 0
    tx.commit()


def test_delete_range_is_inclusive(engine, fresh_table: str) -> None:
    items = Table(fresh_table, MetaData(), autoload_with=engine)
    tx = ChunkTransaction.begin(engine)
    tx.insert_rows(items.insert(), [{"id": i, "value": i} for i in range(1, 11)])

    removed = tx.delete_range(items, "id", 3, 6)
    tx.commit()

    assert removed == 4
    assert _count(engine, fresh_table) == 6


def test_delete_all_empties_the_table(engine, fresh_table: str) -> None:
    items = Table(fresh_table, MetaData(), autoload_with=engine)
    tx = ChunkTransaction.begin(engine)
    tx.insert_rows(items.insert(), [{"id": i, "value": i} for i in range(1, 4)])

    assert tx.delete_all(items) == 3
    tx.commit()

    assert _count(engine, fresh_table) == 0
