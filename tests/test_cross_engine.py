from __future__ import annotations

from pathlib import Path

import pytest

from ferrydb.config import Direction, TransferConfig
from ferrydb.db.connector import Database
from ferrydb.operation import PullOperation, PushOperation
from ferrydb.schema.codec import reset_sequences


@pytest.fixture
def mysql_push_config(mysql_url: str, dump_path: Path):
    return TransferConfig(Direction.PUSH, mysql_url, str(dump_path), default_chunksize=25, retry_backoff=0)


def test_sqlite_to_mysql(source: Database, mysql_destination: Database, pull_config, mysql_push_config) -> None:
    PullOperation(pull_config(), source).run()
    report = PushOperation(mysql_push_config, mysql_destination).run()

    assert report.total_rows == 57 + 143 + 25
    for table in ("users", "orders"):
        spec = source.table_spec(table)
        assert mysql_destination.read_all(mysql_destination.table_spec(table)) == sorted(source.read_all(spec))

    fks = mysql_destination.inspector().get_foreign_keys("orders")
    assert [fk["referred_table"] for fk in fks] == ["users"]

    # Sequences were already reset by the push; doing it again is harmless.
    assert reset_sequences(mysql_destination, ["users"]) == {"users.id": 58}
