from __future__ import annotations

from pathlib import Path

import pytest

from ferrydb.dump import DumpDirectory
from ferrydb.errors import ChunkIntegrityError, ConfigurationError
from ferrydb.transfer.codec import TransferCodec, checksum
from ferrydb.transfer.models import Chunk


def _chunk(table: str, seq: int, start: int, end: int) -> Chunk:
    payload = TransferCodec().encode(["id"], [(i,) for i in range(start, end + 1)])
    return Chunk(
        table=table,
        seq=seq,
        range_start=start,
        range_end=end,
        row_count=end - start + 1,
        payload=payload,
        checksum=checksum(payload),
        compressed=True,
    )


def test_layout(tmp_path: Path) -> None:
    dump = DumpDirectory(tmp_path / "dump")
    dump.create()

    dump.write_table_schema("users", "{}")
    dump.write_schema('{"tables": [{"name": "users"}, {"name": "orders"}]}')
    dump.write_indexes("users", "{}")
    dump.write_chunk(_chunk("users", 1, 1, 5))

    assert (tmp_path / "dump/schemas/users.table.json").is_file()
    assert (tmp_path / "dump/schemas/schema.json").is_file()
    assert (tmp_path / "dump/indexes/users.indexes.json").is_file()
    assert (tmp_path / "dump/data/users.000001.chunk").is_file()
    assert dump.schema_tables() == ["users", "orders"]


def test_chunk_round_trip(tmp_path: Path) -> None:
    dump = DumpDirectory(tmp_path)
    written = _chunk("orders", 2, 11, 20)

    dump.write_chunk(written)
    read = dump.read_chunk("orders", 2)

    assert read == written


def test_chunk_listing_is_ordered_per_table(tmp_path: Path) -> None:
    dump = DumpDirectory(tmp_path)
    for seq in (3, 1, 2):
        dump.write_chunk(_chunk("orders", seq, seq * 10, seq * 10 + 9))
    dump.write_chunk(_chunk("order.items", 1, 1, 2))

    assert dump.chunk_seqs("orders") == [1, 2, 3]
    assert dump.chunk_seqs("order.items") == [1]
    assert dump.data_tables() == ["order.items", "orders"]
    assert [c.seq for c in dump.iter_chunks("orders", after_seq=1)] == [2, 3]


def test_clear_table_data(tmp_path: Path) -> None:
    dump = DumpDirectory(tmp_path)
    for seq in (1, 2, 3):
        dump.write_chunk(_chunk("orders", seq, seq, seq))

    assert dump.clear_table_data("orders", after_seq=1) == 2
    assert dump.chunk_seqs("orders") == [1]
    assert dump.clear_table_data("orders") == 1
    assert dump.chunk_seqs("orders") == []


def test_tampered_chunk_fails_checksum(tmp_path: Path) -> None:
    dump = DumpDirectory(tmp_path)
    path = dump.write_chunk(_chunk("users", 1, 1, 5))
    path.write_bytes(path.read_bytes() + b"x")

    with pytest.raises(ChunkIntegrityError, match="checksum mismatch"):
        dump.read_chunk("users", 1)


def test_chunk_without_header_is_rejected(tmp_path: Path) -> None:
    dump = DumpDirectory(tmp_path)
    dump.create()
    dump.chunk_path("users", 1).write_bytes(b"garbage")

    with pytest.raises(ChunkIntegrityError):
        dump.read_chunk("users", 1)


def test_missing_index_file_reads_as_none(tmp_path: Path) -> None:
    assert DumpDirectory(tmp_path).read_indexes("users") is None


@pytest.mark.parametrize("name", ["", "..", "a/b", "a\\b"])
def test_unsafe_table_names_are_rejected(tmp_path: Path, name: str) -> None:
    with pytest.raises(ConfigurationError):
        DumpDirectory(tmp_path).chunk_path(name, 1)
