from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class TableSpec:
    """
    What the data phase needs to know about a table.

    Only tables with exactly one primary-key column are chunked by key
    range; everything else is moved as one unordered chunk.
    """
    name: str
    columns: tuple[str, ...]
    primary_key: tuple[str, ...] = ()

    @property
    def chunkable(self) -> bool:
        return len(self.primary_key) == 1

    @property
    def key(self) -> Optional[str]:
        return self.primary_key[0] if self.chunkable else None

    @property
    def key_index(self) -> Optional[int]:
        if not self.chunkable:
            return None
        return self.columns.index(self.primary_key[0])


@dataclass
class RowRange:
    """
    Rows fetched for one chunk. ``range_start`` and ``range_end`` are the
    first and last primary-key values in the chunk, both inclusive; they are
    None on the unordered single-chunk path.
    """
    table: str
    rows: list[tuple[Any, ...]]
    range_start: Any = None
    range_end: Any = None

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class Chunk:
    """The unit of transfer and of resumability."""
    table: str
    seq: int
    range_start: Any
    range_end: Any
    row_count: int
    payload: bytes = field(repr=False)
    checksum: str
    compressed: bool
