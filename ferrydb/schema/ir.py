"""
Engine-neutral schema representation.

Everything a dump needs to recreate a table on a different engine family:
columns with neutral types, nullability, portable defaults, the primary key,
plus indexes and foreign keys (applied in the index phase).
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Optional


@dataclass(frozen=True)
class TypeIR:
    """Neutral column type, e.g. ``TypeIR("string", length=255)``."""

    name: str
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    timezone: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        for key in ("length", "precision", "scale"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.timezone:
            data["timezone"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TypeIR":
        return cls(
            name=data["name"],
            length=data.get("length"),
            precision=data.get("precision"),
            scale=data.get("scale"),
            timezone=bool(data.get("timezone", False)),
        )


@dataclass
class ColumnIR:
    name: str
    type: TypeIR
    nullable: bool = True
    default: Optional[str] = None
    autoincrement: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.to_dict(),
            "nullable": self.nullable,
            "default": self.default,
            "autoincrement": self.autoincrement,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnIR":
        return cls(
            name=data["name"],
            type=TypeIR.from_dict(data["type"]),
            nullable=bool(data.get("nullable", True)),
            default=data.get("default"),
            autoincrement=bool(data.get("autoincrement", False)),
        )


@dataclass
class TableIR:
    name: str
    columns: list[ColumnIR]
    primary_key: list[str] = field(default_factory=list)

    def column(self, name: str) -> Optional[ColumnIR]:
        return next((c for c in self.columns if c.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "primary_key": list(self.primary_key),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TableIR":
        return cls(
            name=data["name"],
            columns=[ColumnIR.from_dict(c) for c in data["columns"]],
            primary_key=list(data.get("primary_key") or []),
        )


@dataclass
class IndexIR:
    name: str
    table: str
    columns: list[str]
    unique: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexIR":
        return cls(
            name=data["name"],
            table=data["table"],
            columns=list(data["columns"]),
            unique=bool(data.get("unique", False)),
        )


@dataclass
class ForeignKeyIR:
    name: Optional[str]
    table: str
    columns: list[str]
    ref_table: str
    ref_columns: list[str]
    ondelete: Optional[str] = None
    onupdate: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ForeignKeyIR":
        return cls(
            name=data.get("name"),
            table=data["table"],
            columns=list(data["columns"]),
            ref_table=data["ref_table"],
            ref_columns=list(data["ref_columns"]),
            ondelete=data.get("ondelete"),
            onupdate=data.get("onupdate"),
        )


@dataclass
class TableIndexesIR:
    """Index-phase definitions for one table."""

    table: str
    indexes: list[IndexIR] = field(default_factory=list)
    foreign_keys: list[ForeignKeyIR] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "indexes": [i.to_dict() for i in self.indexes],
            "foreign_keys": [fk.to_dict() for fk in self.foreign_keys],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TableIndexesIR":
        return cls(
            table=data["table"],
            indexes=[IndexIR.from_dict(i) for i in data.get("indexes") or []],
            foreign_keys=[ForeignKeyIR.from_dict(fk) for fk in data.get("foreign_keys") or []],
        )
