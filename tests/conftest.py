from __future__ import annotations

import datetime as dt
import os
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine

from ferrydb.config import Direction, TransferConfig
from ferrydb.db.connector import Database

USER_COUNT = 57
ORDER_COUNT = 143
LOG_COUNT = 25


def _sample_metadata() -> MetaData:
    metadata = MetaData()
    users = Table(
        "users",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("email", String(255), nullable=False),
        Column("active", Boolean, nullable=False, server_default=text("1")),
        Column("created_at", DateTime),
        sqlite_autoincrement=True,
    )
    Index("ix_users_email", users.c.email, unique=True)

    orders = Table(
        "orders",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("user_id", Integer, ForeignKey("users.id", name="fk_orders_user_id"), nullable=False),
        Column("amount_cents", BigInteger, nullable=False),
        Column("note", Text),
    )
    Index("ix_orders_user_id", orders.c.user_id)

    # No primary key: moved as a single chunk.
    Table(
        "logs",
        metadata,
        Column("level", String(16)),
        Column("message", Text),
    )
    return metadata


def seed(engine: Engine, users: int = USER_COUNT, orders: int = ORDER_COUNT, logs: int = LOG_COUNT) -> None:
    metadata = _sample_metadata()
    metadata.create_all(engine)
    base = dt.datetime(2024, 1, 1, 9, 30)
    with engine.begin() as conn:
        conn.execute(
            metadata.tables["users"].insert(),
            [
                {
                    "id": i,
                    "email": f"user{i}@example.com",
                    "active": i % 3 != 0,
                    "created_at": base + dt.timedelta(hours=i),
                }
                for i in range(1, users + 1)
            ],
        )
        if orders:
            conn.execute(
                metadata.tables["orders"].insert(),
                [
                    {
                        "id": i,
                        "user_id": (i % users) + 1,
                        "amount_cents": i * 1250,
                        "note": None if i % 4 == 0 else f"order {i}",
                    }
                    for i in range(1, orders + 1)
                ],
            )
        if logs:
            conn.execute(
                metadata.tables["logs"].insert(),
                [{"level": "info" if i % 2 else "warn", "message": f"event {i}"} for i in range(logs)],
            )


def table_rows(engine: Engine, table: str, order_by: str | None = None) -> list[tuple]:
    sql = f"SELECT * FROM {table}"
    if order_by:
        sql += f" ORDER BY {order_by}"
    with engine.connect() as conn:
        return [tuple(row) for row in conn.execute(text(sql))]


@pytest.fixture
def sqlite_url(tmp_path: Path) -> Callable[[str], str]:
    """
    Factory for throwaway SQLite file databases.

    Usage:
        url = sqlite_url("source")
    """

    def _url(name: str) -> str:
        return f"sqlite:///{tmp_path / (name + '.db')}"

    return _url


@pytest.fixture
def engine(sqlite_url: Callable[[str], str]) -> Iterator[Engine]:
    """Empty SQLite engine for unit tests."""
    eng = create_engine(sqlite_url("unit"))
    yield eng
    eng.dispose()


@pytest.fixture
def make_source(sqlite_url: Callable[[str], str]) -> Callable[..., str]:
    """
    Create and seed a users/orders/logs SQLite database.

    Usage:
        url = make_source("big", orders=5000)
    """

    def _make(name: str = "source", **counts: int) -> str:
        url = sqlite_url(name)
        eng = create_engine(url)
        try:
            seed(eng, **counts)
        finally:
            eng.dispose()
        return url

    return _make


@pytest.fixture
def source_url(make_source: Callable[..., str]) -> str:
    return make_source()


@pytest.fixture
def read_table() -> Callable[..., list[tuple]]:
    return table_rows


@pytest.fixture
def source(source_url: str) -> Iterator[Database]:
    db = Database.from_url(source_url)
    yield db
    db.dispose()


@pytest.fixture
def destination_url(sqlite_url: Callable[[str], str]) -> str:
    return sqlite_url("destination")


@pytest.fixture
def destination(destination_url: str) -> Iterator[Database]:
    db = Database.from_url(destination_url)
    yield db
    db.dispose()


@pytest.fixture
def dump_path(tmp_path: Path) -> Path:
    return tmp_path / "dump"


@pytest.fixture
def pull_config(source_url: str, dump_path: Path) -> Callable[..., TransferConfig]:
    def _config(**overrides) -> TransferConfig:
        options = {"default_chunksize": 20, "retry_backoff": 0}
        options.update(overrides)
        return TransferConfig(Direction.PULL, source_url, str(dump_path), **options)

    return _config


@pytest.fixture
def push_config(destination_url: str, dump_path: Path) -> Callable[..., TransferConfig]:
    def _config(**overrides) -> TransferConfig:
        options = {"default_chunksize": 20, "retry_backoff": 0}
        options.update(overrides)
        return TransferConfig(Direction.PUSH, destination_url, str(dump_path), **options)

    return _config


@pytest.fixture
def fresh_table(engine: Engine) -> str:
    """A small keyed table used across DB unit tests."""
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE items ("
            " id INTEGER NOT NULL PRIMARY KEY,"
            " value INTEGER NOT NULL DEFAULT 0,"
            " name VARCHAR(255) NULL)"
        )
    return "items"


@pytest.fixture(scope="session")
def mysql_url() -> str:
    """
    MySQL URL for cross-engine tests, from FERRYDB_TEST_MYSQL_URL.

    Tests that need it are skipped when the variable is unset.
    """
    url = os.environ.get("FERRYDB_TEST_MYSQL_URL")
    if not url:
        pytest.skip("FERRYDB_TEST_MYSQL_URL is not set")
    return url


@pytest.fixture
def mysql_destination(mysql_url: str) -> Iterator[Database]:
    """An empty MySQL database; the sample tables are dropped afterwards."""
    db = Database.from_url(mysql_url)
    try:
        with db.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except Exception as exc:  # pragma: no cover
        db.dispose()
        pytest.fail(
            "MySQL test database is not reachable.\n"
            f"- FERRYDB_TEST_MYSQL_URL={mysql_url!r}\n"
            f"- Underlying error: {exc}",
            pytrace=False,
        )

    def _drop() -> None:
        with db.engine.begin() as conn:
            for name in ("orders", "users", "logs"):
                conn.exec_driver_sql(f"DROP TABLE IF EXISTS `{name}`")

    _drop()
    yield db
    _drop()
    db.dispose()
