"""
Persisted transfer progress.

The session file is the only artifact a resumed run trusts. It is written
after every committed chunk and phase, always atomically, and only by the
orchestrating thread.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from .config import MIN_CHUNKSIZE, Direction
from .dump import atomic_write
from .errors import EncodeError, ResumeStateError
from .transfer.codec import decode_value, encode_value

logger = logging.getLogger(__name__)

# Fields a resumed invocation may change; everything else comes from the file.
RESUME_OVERRIDES = frozenset({"current_chunksize", "disable_compression", "debug"})


@dataclass
class TableCursor:
    """Watermark of one table: last committed key (inclusive), chunks and rows so far."""

    last_key: Any = None
    chunk: int = 0
    rows: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"last_key": encode_value(self.last_key), "chunk": self.chunk, "rows": self.rows}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TableCursor":
        return cls(
            last_key=decode_value(data.get("last_key")),
            chunk=int(data.get("chunk", 0)),
            rows=int(data.get("rows", 0)),
        )


@dataclass
class SessionState:
    dump_path: str
    database_url: str
    direction: Direction
    current_chunksize: int
    tables: list[str] = field(default_factory=list)
    completed_tables: list[str] = field(default_factory=list)
    table_cursors: dict[str, TableCursor] = field(default_factory=dict)
    schema_done: bool = False
    indexes_done: bool = False
    sequences_done: bool = False
    skip_schema: bool = False
    indexes_first: bool = False
    disable_compression: bool = False
    debug: bool = False

    def cursor(self, table: str) -> TableCursor:
        return self.table_cursors.setdefault(table, TableCursor())

    def is_completed(self, table: str) -> bool:
        return table in self.completed_tables

    def mark_completed(self, table: str) -> None:
        if not self.is_completed(table):
            self.completed_tables.append(table)

    def checkpoint(self, table: str, last_key: Any, chunk: int, rows: int) -> None:
        cursor = self.cursor(table)
        cursor.last_key = last_key
        cursor.chunk = chunk
        cursor.rows += rows

    def pending_tables(self) -> list[str]:
        return [t for t in self.tables if not self.is_completed(t)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "dump_path": self.dump_path,
            "database_url": self.database_url,
            "direction": self.direction.value,
            "current_chunksize": self.current_chunksize,
            "tables": list(self.tables),
            "completed_tables": list(self.completed_tables),
            "table_cursors": {name: c.to_dict() for name, c in self.table_cursors.items()},
            "schema_done": self.schema_done,
            "indexes_done": self.indexes_done,
            "sequences_done": self.sequences_done,
            "skip_schema": self.skip_schema,
            "indexes_first": self.indexes_first,
            "disable_compression": self.disable_compression,
            "debug": self.debug,
        }


def canonical_key(key: str) -> str:
    """``"default-chunksize"`` / ``"Schema_Done"`` -> ``"default_chunksize"`` / ``"schema_done"``."""
    return str(key).strip().replace("-", "_").lower()


def _normalize(data: Any) -> Any:
    if isinstance(data, dict):
        return {canonical_key(k): _normalize(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_normalize(v) for v in data]
    return data


def _from_dict(raw: Mapping[str, Any]) -> SessionState:
    # Table names are data, not keys: keep cursor keys verbatim.
    cursors_raw = {}
    for key, value in raw.items():
        if canonical_key(key) == "table_cursors" and isinstance(value, dict):
            cursors_raw = {name: _normalize(c) for name, c in value.items()}
    data = {k: v for k, v in _normalize(dict(raw)).items() if k != "table_cursors"}

    known = {
        "dump_path", "database_url", "direction", "current_chunksize", "default_chunksize",
        "tables", "completed_tables", "schema_done", "indexes_done", "sequences_done",
        "skip_schema", "indexes_first", "disable_compression", "debug",
    }
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown session keys: %s", ", ".join(unknown))

    missing = [k for k in ("dump_path", "database_url", "direction") if not data.get(k)]
    if missing:
        raise ResumeStateError(f"Session is missing required field(s): {', '.join(missing)}")

    try:
        direction = Direction(data["direction"])
    except ValueError:
        raise ResumeStateError(f"Session has unknown direction {data['direction']!r}") from None

    try:
        chunksize = int(data.get("current_chunksize") or data.get("default_chunksize") or 0)
        state = SessionState(
            dump_path=str(data["dump_path"]),
            database_url=str(data["database_url"]),
            direction=direction,
            current_chunksize=max(MIN_CHUNKSIZE, chunksize),
            tables=[str(t) for t in data.get("tables") or []],
            completed_tables=[],
            table_cursors={name: TableCursor.from_dict(c) for name, c in cursors_raw.items()},
            schema_done=bool(data.get("schema_done", False)),
            indexes_done=bool(data.get("indexes_done", False)),
            sequences_done=bool(data.get("sequences_done", False)),
            skip_schema=bool(data.get("skip_schema", False)),
            indexes_first=bool(data.get("indexes_first", False)),
            disable_compression=bool(data.get("disable_compression", False)),
            debug=bool(data.get("debug", False)),
        )
    except (TypeError, ValueError, AttributeError, EncodeError) as exc:
        raise ResumeStateError(f"Session file has invalid values: {exc}") from exc

    for table in data.get("completed_tables") or []:
        state.mark_completed(str(table))
    return state


class SessionStore:
    """
    Loads and saves SessionState as JSON.

    Usage:
        store = SessionStore("/dumps/app/session.json")
        state = store.load()          # None if there is no session yet
        store.save(state)
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    def load(self) -> Optional[SessionState]:
        """
        Raises:
            ResumeStateError: If the file exists but is unreadable or incompatible.
                Inspect or delete it; it is never silently ignored.
        """
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ResumeStateError(
                f"Cannot read session file {self.path}: {exc}. Inspect or remove it before retrying."
            ) from exc
        if not isinstance(raw, dict):
            raise ResumeStateError(f"Session file {self.path} does not contain a JSON object")
        return _from_dict(raw)

    def save(self, state: SessionState) -> None:
        document = json.dumps(state.to_dict(), indent=2, sort_keys=True)
        atomic_write(self.path, document.encode("utf-8"))


def load(path: str | os.PathLike) -> Optional[SessionState]:
    return SessionStore(path).load()


def save(state: SessionState, path: str | os.PathLike) -> None:
    SessionStore(path).save(state)


def merge_resume_options(state: SessionState, overrides: Mapping[str, Any]) -> SessionState:
    """
    Apply the options a resumed invocation may change.

    Only chunksize, compression and debug can be overridden; ``dump_path``,
    ``direction`` and completed-table history always come from ``state``.
    """
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        key = canonical_key(key)
        if key == "default_chunksize":
            key = "current_chunksize"
        if value is None:
            continue
        if key not in RESUME_OVERRIDES:
            logger.debug("Ignoring resume override %s; it is fixed by the session", key)
            continue
        if key == "current_chunksize":
            value = max(MIN_CHUNKSIZE, int(value))
        changes[key] = value
    return replace(
        state,
        tables=list(state.tables),
        completed_tables=list(state.completed_tables),
        table_cursors={k: replace(v) for k, v in state.table_cursors.items()},
        **changes,
    )
