"""
On-disk layout of a dump::

    <root>/schemas/schema.json              all tables, in transfer order
    <root>/schemas/<table>.table.json       one table
    <root>/data/<table>.<seq>.chunk         one chunk (header line + payload)
    <root>/indexes/<table>.indexes.json     indexes and foreign keys of one table

Every file is written to a temporary name and renamed into place, so a
crash never leaves a half-written file under its final name.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Iterator

from .errors import ChunkIntegrityError, ConfigurationError
from .transfer.codec import checksum, decode_value, encode_value
from .transfer.models import Chunk

logger = logging.getLogger(__name__)

SCHEMA_FILE = "schema.json"
CHUNK_SUFFIX = ".chunk"
_CHUNK_RE = re.compile(r"^(?P<table>.+)\.(?P<seq>\d{6,})\.chunk$")


def atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temp file in the same directory and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def _check_table_name(table: str) -> str:
    if not table or table in (".", "..") or "/" in table or "\\" in table or "\x00" in table:
        raise ConfigurationError(f"Table name {table!r} cannot be stored in a dump directory")
    return table


class DumpDirectory:
    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root)
        self.schemas = self.root / "schemas"
        self.data = self.root / "data"
        self.indexes = self.root / "indexes"

    def create(self) -> None:
        for path in (self.schemas, self.data, self.indexes):
            path.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        return self.root.is_dir()

    # schemas

    def table_schema_path(self, table: str) -> Path:
        return self.schemas / f"{_check_table_name(table)}.table.json"

    def write_table_schema(self, table: str, document: str) -> None:
        atomic_write(self.table_schema_path(table), document.encode("utf-8"))

    def read_table_schema(self, table: str) -> str:
        return self.table_schema_path(table).read_text(encoding="utf-8")

    def write_schema(self, document: str) -> None:
        atomic_write(self.schemas / SCHEMA_FILE, document.encode("utf-8"))

    def read_schema(self) -> str:
        return (self.schemas / SCHEMA_FILE).read_text(encoding="utf-8")

    def has_schema(self) -> bool:
        return (self.schemas / SCHEMA_FILE).is_file()

    def schema_tables(self) -> list[str]:
        """Table names in the order the combined schema lists them."""
        document = json.loads(self.read_schema())
        return [t["name"] for t in document.get("tables", [])]

    # indexes

    def indexes_path(self, table: str) -> Path:
        return self.indexes / f"{_check_table_name(table)}.indexes.json"

    def write_indexes(self, table: str, document: str) -> None:
        atomic_write(self.indexes_path(table), document.encode("utf-8"))

    def read_indexes(self, table: str) -> str | None:
        path = self.indexes_path(table)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    # data

    def chunk_path(self, table: str, seq: int) -> Path:
        return self.data / f"{_check_table_name(table)}.{seq:06d}{CHUNK_SUFFIX}"

    def data_tables(self) -> list[str]:
        """Tables that have at least one chunk file, sorted by name."""
        names = set()
        if self.data.is_dir():
            for entry in self.data.iterdir():
                match = _CHUNK_RE.match(entry.name)
                if match:
                    names.add(match.group("table"))
        return sorted(names)

    def chunk_seqs(self, table: str) -> list[int]:
        """Chunk sequence numbers present for ``table``, ascending."""
        seqs = []
        if self.data.is_dir():
            for entry in self.data.iterdir():
                match = _CHUNK_RE.match(entry.name)
                if match and match.group("table") == table:
                    seqs.append(int(match.group("seq")))
        return sorted(seqs)

    def clear_table_data(self, table: str, after_seq: int = 0) -> int:
        """Remove chunks of ``table`` numbered above ``after_seq`` (all of them by default)."""
        removed = 0
        for seq in self.chunk_seqs(table):
            if seq <= after_seq:
                continue
            self.chunk_path(table, seq).unlink()
            removed += 1
        if removed:
            logger.debug("Removed %d stale chunk file(s) for %s", removed, table)
        return removed

    def write_chunk(self, chunk: Chunk) -> Path:
        header = {
            "table": chunk.table,
            "seq": chunk.seq,
            "range_start": encode_value(chunk.range_start),
            "range_end": encode_value(chunk.range_end),
            "row_count": chunk.row_count,
            "checksum": chunk.checksum,
            "compressed": chunk.compressed,
        }
        line = json.dumps(header, separators=(",", ":"), sort_keys=True).encode("utf-8")
        path = self.chunk_path(chunk.table, chunk.seq)
        atomic_write(path, line + b"\n" + chunk.payload)
        return path

    def read_chunk(self, table: str, seq: int) -> Chunk:
        """
        Raises:
            ChunkIntegrityError: If the file is malformed or its checksum does not match
        """
        path = self.chunk_path(table, seq)
        raw = path.read_bytes()
        line, sep, payload = raw.partition(b"\n")
        if not sep:
            raise ChunkIntegrityError(f"{path}: missing chunk header")
        try:
            header: dict[str, Any] = json.loads(line.decode("utf-8"))
            chunk = Chunk(
                table=header["table"],
                seq=int(header["seq"]),
                range_start=decode_value(header.get("range_start")),
                range_end=decode_value(header.get("range_end")),
                row_count=int(header["row_count"]),
                payload=payload,
                checksum=header["checksum"],
                compressed=bool(header["compressed"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise ChunkIntegrityError(f"{path}: malformed chunk header: {exc}") from exc

        if chunk.table != table or chunk.seq != seq:
            raise ChunkIntegrityError(f"{path}: header names {chunk.table}#{chunk.seq}")
        if checksum(payload) != chunk.checksum:
            raise ChunkIntegrityError(f"{path}: checksum mismatch")
        return chunk

    def iter_chunks(self, table: str, after_seq: int = 0) -> Iterator[Chunk]:
        for seq in self.chunk_seqs(table):
            if seq > after_seq:
                yield self.read_chunk(table, seq)
