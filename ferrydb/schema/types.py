from __future__ import annotations

import logging
import re
from typing import Any, Optional

from sqlalchemy import types as sqltypes

from ..errors import SchemaApplyError
from .ir import TypeIR

logger = logging.getLogger(__name__)

# Checked in order; subclasses must come before their bases
# (BigInteger before Integer, Float before Numeric, Enum/Text before String).
_REFLECTED_TO_IR: list[tuple[type, str]] = [
    (sqltypes.Boolean, "boolean"),
    (sqltypes.BigInteger, "bigint"),
    (sqltypes.SmallInteger, "smallint"),
    (sqltypes.Integer, "integer"),
    (sqltypes.Float, "float"),
    (sqltypes.Numeric, "numeric"),
    (sqltypes.DateTime, "datetime"),
    (sqltypes.Date, "date"),
    (sqltypes.Time, "time"),
    (sqltypes.Interval, "interval"),
    (sqltypes.Enum, "string"),
    (sqltypes.Text, "text"),
    (sqltypes.String, "string"),
    (sqltypes.LargeBinary, "binary"),
    (sqltypes.JSON, "json"),
    (sqltypes.Uuid, "uuid"),
]

_PORTABLE_KEYWORDS = {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NULL", "TRUE", "FALSE"}
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_QUOTED_RE = re.compile(r"^'(?:[^']|'')*'$")
_CAST_RE = re.compile(r"^\(?(.*?)\)?::[\w\s]+(?:\[\])?$")


def to_ir(sa_type: Any, *, table: str = "", column: str = "") -> TypeIR:
    """Map a reflected SQLAlchemy type onto the neutral type set."""
    for base, name in _REFLECTED_TO_IR:
        if not isinstance(sa_type, base):
            continue

        if name == "numeric":
            return TypeIR(name, precision=sa_type.precision, scale=sa_type.scale)
        if name in ("datetime", "time"):
            return TypeIR(name, timezone=bool(getattr(sa_type, "timezone", False)))
        if name == "string":
            length = getattr(sa_type, "length", None)
            if isinstance(sa_type, sqltypes.Enum) and sa_type.enums:
                length = max(len(e) for e in sa_type.enums)
            if length is None:
                return TypeIR("text")
            return TypeIR(name, length=length)
        return TypeIR(name)

    logger.warning(
        "No neutral type for %s.%s (%r); it will be transferred as text",
        table,
        column,
        sa_type,
    )
    return TypeIR("text")


def from_ir(type_ir: TypeIR) -> sqltypes.TypeEngine:
    """Build the generic SQLAlchemy type a renderer compiles for its dialect."""
    name = type_ir.name
    if name == "boolean":
        return sqltypes.Boolean()
    if name == "bigint":
        return sqltypes.BigInteger()
    if name == "smallint":
        return sqltypes.SmallInteger()
    if name == "integer":
        return sqltypes.Integer()
    if name == "float":
        return sqltypes.Float()
    if name == "numeric":
        return sqltypes.Numeric(precision=type_ir.precision, scale=type_ir.scale)
    if name == "datetime":
        return sqltypes.DateTime(timezone=type_ir.timezone)
    if name == "date":
        return sqltypes.Date()
    if name == "time":
        return sqltypes.Time(timezone=type_ir.timezone)
    if name == "interval":
        return sqltypes.Interval()
    if name == "text":
        return sqltypes.Text()
    if name == "string":
        return sqltypes.String(length=type_ir.length)
    if name == "binary":
        return sqltypes.LargeBinary()
    if name == "json":
        return sqltypes.JSON()
    if name == "uuid":
        return sqltypes.Uuid()
    raise SchemaApplyError(f"Unknown neutral type {name!r}")


def portable_default(raw: Optional[str]) -> Optional[str]:
    """
    Keep a reflected server default only if every engine understands it.

    Numbers, single-quoted strings and a few SQL keywords survive (with a
    trailing PostgreSQL ``::type`` cast stripped); sequence calls and
    engine functions are dropped.
    """
    if raw is None:
        return None
    value = str(raw).strip()
    cast = _CAST_RE.match(value)
    if cast:
        value = cast.group(1).strip()
    if value.startswith("(") and value.endswith(")"):
        value = value[1:-1].strip()

    if _NUMBER_RE.match(value) or _QUOTED_RE.match(value):
        return value
    if value.upper() in _PORTABLE_KEYWORDS:
        return value.upper()
    return None
