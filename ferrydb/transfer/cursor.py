from __future__ import annotations

import logging
from typing import Any, Protocol, Union

from .models import RowRange, TableSpec

logger = logging.getLogger(__name__)


class EndOfTable:
    """Sentinel returned once a table has been fully covered."""

    def __repr__(self) -> str:
        return "END_OF_TABLE"


END_OF_TABLE = EndOfTable()


class RangeReader(Protocol):
    def read_range(self, spec: TableSpec, after_key: Any, size: int) -> list[tuple[Any, ...]]:
        ...

    def read_all(self, spec: TableSpec) -> list[tuple[Any, ...]]:
        ...


class ChunkCursor:
    """
    Walks a table in primary-key order, one range at a time.

    ``next()`` never moves the watermark; only ``commit()`` does, after the
    range has been written and checkpointed. Retrying a failed range is
    therefore just calling ``next()`` again, possibly with a smaller size,
    and a resumed cursor starts strictly after the persisted key.

    Tables without a single-column primary key are returned as one range
    holding every row (bounded by available memory).
    """

    def __init__(
        self,
        reader: RangeReader,
        spec: TableSpec,
        after_key: Any = None,
        chunk: int = 0,
    ) -> None:
        self.reader = reader
        self.spec = spec
        self.after_key = after_key
        self.chunk = chunk
        self._exhausted = False

        if not spec.chunkable and chunk > 0:
            # The single unordered chunk already committed.
            self._exhausted = True

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def next(self, size: int) -> Union[RowRange, EndOfTable]:
        if self._exhausted:
            return END_OF_TABLE
        if size < 1:
            raise ValueError("size must be >= 1")

        if not self.spec.chunkable:
            logger.debug("Table %s has no single-column primary key; reading it whole", self.spec.name)
            rows = self.reader.read_all(self.spec)
            if not rows:
                return END_OF_TABLE
            return RowRange(table=self.spec.name, rows=rows)

        rows = self.reader.read_range(self.spec, self.after_key, size)
        if not rows:
            return END_OF_TABLE

        idx = self.spec.key_index
        return RowRange(
            table=self.spec.name,
            rows=rows,
            range_start=rows[0][idx],
            range_end=rows[-1][idx],
        )

    def commit(self, row_range: RowRange) -> None:
        """Advance past ``row_range``; call only once it is durably applied."""
        if row_range.table != self.spec.name:
            raise ValueError(f"Range for {row_range.table!r} committed on cursor for {self.spec.name!r}")
        self.chunk += 1
        if self.spec.chunkable:
            self.after_key = row_range.range_end
        else:
            self._exhausted = True
