from __future__ import annotations

from collections.abc import Callable
from typing import Optional, Protocol

from sqlalchemy import Column, ForeignKeyConstraint, Index, MetaData, Table, text
from sqlalchemy.engine import Dialect
from sqlalchemy.schema import AddConstraint, CreateIndex, CreateTable

from .ir import ForeignKeyIR, IndexIR, TableIR
from .types import from_ir


class DdlRenderer(Protocol):
    """
    Turns neutral schema definitions into DDL for one engine.

    Register an implementation with ``register_renderer`` to override how a
    dialect's DDL is produced.
    """

    def render_ddl(self, table: TableIR) -> list[str]:
        """Statements creating ``table``."""
        ...

    def render_index(self, index: IndexIR) -> str:
        """Statement creating ``index``."""
        ...

    def render_foreign_key(self, fk: ForeignKeyIR) -> Optional[str]:
        """Statement adding ``fk``, or None if the engine cannot add it after creation."""
        ...


def build_table(table: TableIR, metadata: MetaData | None = None) -> Table:
    """Build a SQLAlchemy Table carrying generic types for ``table``."""
    metadata = metadata if metadata is not None else MetaData()
    single_pk = len(table.primary_key) == 1
    columns = []
    for col in table.columns:
        is_pk = col.name in table.primary_key
        columns.append(
            Column(
                col.name,
                from_ir(col.type),
                primary_key=is_pk,
                nullable=col.nullable and not is_pk,
                server_default=text(col.default) if col.default is not None else None,
                autoincrement=bool(col.autoincrement and is_pk and single_pk),
            )
        )
    # AUTOINCREMENT is only valid on an INTEGER rowid key
    autoincrement = any(
        c.autoincrement and c.type.name == "integer" for c in table.columns if c.name in table.primary_key
    )
    return Table(table.name, metadata, *columns, sqlite_autoincrement=single_pk and autoincrement)


def _stub_table(metadata: MetaData, name: str, columns: list[str]) -> Table:
    existing = metadata.tables.get(name)
    if existing is not None:
        for col in columns:
            if col not in existing.c:
                existing.append_column(Column(col))
        return existing
    return Table(name, metadata, *[Column(c) for c in columns])


class SqlAlchemyRenderer:
    """Default renderer: compiles SQLAlchemy DDL constructs for the dialect."""

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    def _compile(self, construct) -> str:
        return str(construct.compile(dialect=self.dialect)).strip()

    def render_ddl(self, table: TableIR) -> list[str]:
        return [self._compile(CreateTable(build_table(table)))]

    def render_index(self, index: IndexIR) -> str:
        sa_table = _stub_table(MetaData(), index.table, index.columns)
        sa_index = Index(index.name, *[sa_table.c[c] for c in index.columns], unique=index.unique)
        return self._compile(CreateIndex(sa_index))

    def render_foreign_key(self, fk: ForeignKeyIR) -> Optional[str]:
        if not self.dialect.supports_alter:
            return None
        metadata = MetaData()
        _stub_table(metadata, fk.ref_table, fk.ref_columns)
        sa_table = _stub_table(metadata, fk.table, fk.columns)
        name = fk.name or f"fk_{fk.table}_{'_'.join(fk.columns)}"
        constraint = ForeignKeyConstraint(
            fk.columns,
            [f"{fk.ref_table}.{c}" for c in fk.ref_columns],
            name=name,
            ondelete=fk.ondelete,
            onupdate=fk.onupdate,
        )
        sa_table.append_constraint(constraint)
        return self._compile(AddConstraint(constraint))


_RENDERERS: dict[str, Callable[[Dialect], DdlRenderer]] = {}


def register_renderer(dialect_name: str, factory: Callable[[Dialect], DdlRenderer]) -> None:
    _RENDERERS[dialect_name] = factory


def renderer_for(dialect: Dialect) -> DdlRenderer:
    factory = _RENDERERS.get(dialect.name, SqlAlchemyRenderer)
    return factory(dialect)
