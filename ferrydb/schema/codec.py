"""
Schema extraction and application.

Dumps are JSON documents of the neutral IR in ``ferrydb.schema.ir``; they are
rendered into DDL for the destination by a ``DdlRenderer`` only when loaded,
so one dump can be pushed into any supported engine.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from ..db.connector import Database
from ..db.helpers import translate_db_errors
from ..errors import SchemaApplyError
from .ir import ColumnIR, ForeignKeyIR, IndexIR, TableIndexesIR, TableIR
from .render import DdlRenderer, renderer_for
from .types import portable_default, to_ir

logger = logging.getLogger(__name__)

_INTEGER_TYPES = {"integer", "bigint", "smallint"}


def _is_autoincrement(column: dict, primary_key: list[str], type_name: str, dialect_name: str) -> bool:
    if len(primary_key) != 1 or column["name"] != primary_key[0]:
        return False
    if type_name not in _INTEGER_TYPES:
        return False
    if column.get("autoincrement") is True or column.get("identity"):
        return True
    if "nextval(" in str(column.get("default") or ""):
        return True
    # INTEGER PRIMARY KEY is an alias of the rowid
    return dialect_name == "sqlite" and type_name == "integer"


def reflect_table(source: Database, table: str) -> TableIR:
    with translate_db_errors(f"reflecting {table}"):
        inspector = source.inspector()
        columns = inspector.get_columns(table)
        primary_key = list(inspector.get_pk_constraint(table).get("constrained_columns") or [])

    result = []
    for col in columns:
        type_ir = to_ir(col["type"], table=table, column=col["name"])
        autoincrement = _is_autoincrement(col, primary_key, type_ir.name, source.dialect_name)
        default = None if autoincrement else portable_default(col.get("default"))
        if col.get("default") is not None and default is None and not autoincrement:
            logger.warning("Dropping non-portable default %r on %s.%s", col["default"], table, col["name"])
        result.append(
            ColumnIR(
                name=col["name"],
                type=type_ir,
                nullable=bool(col.get("nullable", True)),
                default=default,
                autoincrement=autoincrement,
            )
        )
    return TableIR(name=table, columns=result, primary_key=primary_key)


def reflect_indexes(source: Database, table: str) -> TableIndexesIR:
    with translate_db_errors(f"reflecting indexes of {table}"):
        inspector = source.inspector()
        raw_indexes = inspector.get_indexes(table)
        raw_fks = inspector.get_foreign_keys(table)

    indexes = []
    for ix in raw_indexes:
        columns = ix.get("column_names") or []
        if not ix.get("name") or not columns or any(c is None for c in columns):
            logger.warning("Skipping expression or unnamed index %r on %s", ix.get("name"), table)
            continue
        indexes.append(IndexIR(name=ix["name"], table=table, columns=list(columns), unique=bool(ix.get("unique"))))

    foreign_keys = []
    for fk in raw_fks:
        options = fk.get("options") or {}
        foreign_keys.append(
            ForeignKeyIR(
                name=fk.get("name"),
                table=table,
                columns=list(fk["constrained_columns"]),
                ref_table=fk["referred_table"],
                ref_columns=list(fk["referred_columns"]),
                ondelete=options.get("ondelete"),
                onupdate=options.get("onupdate"),
            )
        )
    return TableIndexesIR(table=table, indexes=indexes, foreign_keys=foreign_keys)


def _dumps(document) -> str:
    return json.dumps(document, indent=2, sort_keys=True, default=str)


def dump_table_schema(source: Database, table: str) -> str:
    return _dumps(reflect_table(source, table).to_dict())


def dump_schema(source: Database, tables: Optional[Iterable[str]] = None) -> str:
    names = list(tables) if tables is not None else source.table_names()
    return _dumps({"tables": [reflect_table(source, t).to_dict() for t in names]})


def dump_indexes(source: Database, tables: Optional[Iterable[str]] = None) -> str:
    names = list(tables) if tables is not None else source.table_names()
    return _dumps({"tables": [reflect_indexes(source, t).to_dict() for t in names]})


def dump_indexes_individual(source: Database, tables: Optional[Iterable[str]] = None) -> dict[str, str]:
    names = list(tables) if tables is not None else source.table_names()
    return {t: _dumps(reflect_indexes(source, t).to_dict()) for t in names}


def _load_document(raw: str, what: str) -> dict:
    try:
        document = json.loads(raw)
    except ValueError as exc:
        raise SchemaApplyError(f"Invalid {what} document: {exc}") from exc
    if not isinstance(document, dict):
        raise SchemaApplyError(f"Invalid {what} document: expected a JSON object")
    return document


def parse_schema(ddl: str) -> list[TableIR]:
    """Accepts a combined document (``{"tables": [...]}``) or a single table."""
    document = _load_document(ddl, "schema")
    try:
        if "tables" in document:
            return [TableIR.from_dict(t) for t in document["tables"]]
        return [TableIR.from_dict(document)]
    except (KeyError, TypeError) as exc:
        raise SchemaApplyError(f"Invalid schema document: missing {exc}") from exc


def parse_indexes(defs: str) -> list[TableIndexesIR]:
    document = _load_document(defs, "index")
    try:
        if "tables" in document:
            return [TableIndexesIR.from_dict(t) for t in document["tables"]]
        return [TableIndexesIR.from_dict(document)]
    except (KeyError, TypeError) as exc:
        raise SchemaApplyError(f"Invalid index document: missing {exc}") from exc


def _apply(destination: Database, table: str, statements: list[str], applied: list[str]) -> None:
    """Run ``statements`` in one transaction, recording each one that succeeds."""
    try:
        with destination.session() as session:
            for stmt in statements:
                session.execute_ddl(stmt)
                applied.append(stmt)
    except SQLAlchemyError as exc:
        raise SchemaApplyError(
            f"Failed applying DDL for {table} after {len(applied)} successful statement(s): {exc}",
            table=table,
            applied=applied,
        ) from exc
    finally:
        destination.forget(table)


def load_schema(destination: Database, ddl: str, renderer: Optional[DdlRenderer] = None) -> list[str]:
    """
    Create every table in ``ddl`` that the destination does not have yet.

    Returns:
        The statements that were executed

    Raises:
        SchemaApplyError: On the first table that fails; ``applied`` lists
            the statements that succeeded before it
    """
    renderer = renderer or renderer_for(destination.dialect)
    applied: list[str] = []
    for table in parse_schema(ddl):
        if destination.has_table(table.name):
            logger.info("Table %s already exists; leaving it as is", table.name)
            continue
        logger.info("Creating table %s", table.name)
        _apply(destination, table.name, renderer.render_ddl(table), applied)
    return applied


def load_indexes(destination: Database, defs: str, renderer: Optional[DdlRenderer] = None) -> list[str]:
    """
    Create indexes and foreign keys that are not present yet.

    Re-running after a partial or complete success only creates what is
    missing.
    """
    renderer = renderer or renderer_for(destination.dialect)
    applied: list[str] = []
    for table_defs in parse_indexes(defs):
        table = table_defs.table
        with translate_db_errors(f"inspecting indexes of {table}"):
            inspector = destination.inspector()
            existing_indexes = {ix["name"] for ix in inspector.get_indexes(table)}
            existing_fks = {fk.get("name") for fk in inspector.get_foreign_keys(table)}

        statements = []
        for index in table_defs.indexes:
            if index.name in existing_indexes:
                logger.debug("Index %s already present on %s", index.name, table)
                continue
            statements.append(renderer.render_index(index))

        for fk in table_defs.foreign_keys:
            name = fk.name or f"fk_{fk.table}_{'_'.join(fk.columns)}"
            if name in existing_fks:
                continue
            stmt = renderer.render_foreign_key(fk)
            if stmt is None:
                logger.warning(
                    "%s cannot add foreign key %s to %s after creation; skipping it",
                    destination.dialect_name,
                    name,
                    table,
                )
                continue
            statements.append(stmt)

        if statements:
            logger.info("Applying %d index statement(s) to %s", len(statements), table)
            _apply(destination, table, statements, applied)
    return applied


def _reset_column(destination: Database, table: str, column: str) -> Optional[int]:
    sa_table = destination.table(table)
    quote = destination.dialect.identifier_preparer.quote
    dialect = destination.dialect_name

    with destination.session() as session:
        current = session.execute_scalar(select(func.max(sa_table.c[column])))
        next_value = int(current or 0) + 1

        if dialect == "postgresql":
            sequence = session.execute_scalar(
                text("SELECT pg_get_serial_sequence(:table, :column)"),
                {"table": quote(table), "column": column},
            )
            if sequence is None:
                return None
            session.execute_scalar(
                text("SELECT setval(:sequence, :value, false)"),
                {"sequence": sequence, "value": next_value},
            )
        elif dialect in ("mysql", "mariadb"):
            session.execute_ddl(f"ALTER TABLE {quote(table)} AUTO_INCREMENT = {next_value}")
        elif dialect == "sqlite":
            has_sequences = session.execute_scalar(
                "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
            )
            if not has_sequences:
                return None
            updated = session.execute(
                "UPDATE sqlite_sequence SET seq = :seq WHERE name = :table",
                {"seq": next_value - 1, "table": table},
            )
            if updated == 0:
                return None
        else:
            logger.debug("No sequence support for %s; leaving %s.%s alone", dialect, table, column)
            return None

    return next_value


def reset_sequences(destination: Database, tables: Optional[Iterable[str]] = None) -> dict[str, int]:
    """
    Point every autoincrement column's sequence at ``max(column) + 1``.

    Safe to run repeatedly; must run after data load so it sees the real
    maxima.

    Returns:
        ``{"table.column": next_value}`` for every sequence that was reset
    """
    names = list(tables) if tables is not None else destination.table_names()
    result: dict[str, int] = {}
    for table in names:
        ir = reflect_table(destination, table)
        for column in ir.columns:
            if not column.autoincrement:
                continue
            try:
                with translate_db_errors(f"resetting sequence of {table}.{column.name}"):
                    next_value = _reset_column(destination, table, column.name)
            except SQLAlchemyError as exc:
                raise SchemaApplyError(
                    f"Failed resetting sequence for {table}.{column.name}: {exc}",
                    table=table,
                    applied=[f"{k} -> {v}" for k, v in result.items()],
                ) from exc
            if next_value is not None:
                logger.debug("Sequence for %s.%s now starts at %d", table, column.name, next_value)
                result[f"{table}.{column.name}"] = next_value
    return result
