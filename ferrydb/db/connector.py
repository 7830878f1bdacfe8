from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Protocol, Sequence

from sqlalchemy import MetaData, Table, create_engine, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.engine.reflection import Inspector

from ..transfer.models import TableSpec
from .helpers import mask_url, translate_db_errors
from .session import DbSession
from .writer import ChunkWriter

logger = logging.getLogger(__name__)


class Connector(Protocol):
    """
    Capability the transfer engine needs from a database.

    The engine never talks to a driver directly; tests and alternative
    backends can provide any object with these methods.
    """

    @property
    def dialect_name(self) -> str:
        ...

    def table_names(self) -> list[str]:
        ...

    def table_spec(self, name: str) -> TableSpec:
        ...

    def read_range(self, spec: TableSpec, after_key: Any, size: int) -> list[tuple[Any, ...]]:
        ...

    def read_all(self, spec: TableSpec) -> list[tuple[Any, ...]]:
        ...

    def write_rows(
        self,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        batch_size: int,
        clear_range: Optional[tuple[str, Any, Any]] = None,
        *,
        clear_all: bool = False,
    ) -> int:
        ...


class Database:
    """
    SQLAlchemy-backed Connector.

    Usage:
        db = Database.from_url("postgresql+psycopg2://user@host/app")
        spec = db.table_spec("orders")
        rows = db.read_range(spec, after_key=None, size=1000)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._lock = threading.Lock()
        self._writer = ChunkWriter(engine)

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> "Database":
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine = create_engine(database_url, **engine_kwargs)
        logger.debug("Connected to %s", mask_url(database_url))
        return cls(engine)

    def __repr__(self) -> str:
        return f"Database({self.engine.url.render_as_string(hide_password=True)!r})"

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def dialect(self):
        return self.engine.dialect

    def inspector(self) -> Inspector:
        # A fresh inspector each time; Inspector caches and would miss DDL we just ran.
        return inspect(self.engine)

    def session(self) -> DbSession:
        return DbSession(self.engine)

    def table_names(self) -> list[str]:
        with translate_db_errors("listing tables"):
            return sorted(self.inspector().get_table_names())

    def has_table(self, name: str) -> bool:
        with translate_db_errors(f"checking table {name}"):
            return self.inspector().has_table(name)

    def table(self, name: str) -> Table:
        """Reflected Table, cached; types drive bind/result processing."""
        with self._lock:
            table = self._tables.get(name)
            if table is None:
                with translate_db_errors(f"reflecting {name}"):
                    table = Table(name, self._metadata, autoload_with=self.engine)
                self._tables[name] = table
            return table

    def forget(self, name: str) -> None:
        """Drop a cached reflection after DDL changed the table."""
        with self._lock:
            table = self._tables.pop(name, None)
            if table is not None:
                self._metadata.remove(table)

    def table_spec(self, name: str) -> TableSpec:
        table = self.table(name)
        return TableSpec(
            name=name,
            columns=tuple(c.name for c in table.columns),
            primary_key=tuple(c.name for c in table.primary_key.columns),
        )

    def read_range(self, spec: TableSpec, after_key: Any, size: int) -> list[tuple[Any, ...]]:
        """Rows with key strictly greater than ``after_key``, ascending, at most ``size``."""
        table = self.table(spec.name)
        key = table.c[spec.key]
        stmt = select(*[table.c[c] for c in spec.columns]).order_by(key.asc()).limit(size)
        if after_key is not None:
            stmt = stmt.where(key > after_key)
        with translate_db_errors(f"reading {spec.name}"):
            with self.session() as session:
                return session.fetch_rows(stmt)

    def read_all(self, spec: TableSpec) -> list[tuple[Any, ...]]:
        table = self.table(spec.name)
        stmt = select(*[table.c[c] for c in spec.columns])
        with translate_db_errors(f"reading {spec.name}"):
            with self.session() as session:
                return session.fetch_rows(stmt)

    def write_rows(
        self,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        batch_size: int,
        clear_range: Optional[tuple[str, Any, Any]] = None,
        *,
        clear_all: bool = False,
    ) -> int:
        return self._writer.apply(self.table(table), columns, rows, batch_size, clear_range, clear_all=clear_all)

    def dispose(self) -> None:
        self.engine.dispose()
