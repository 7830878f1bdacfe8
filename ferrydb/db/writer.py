import logging
from typing import Any, Optional, Sequence

from sqlalchemy import Table
from sqlalchemy.engine import Engine

from .helpers import translate_db_errors
from .tx import ChunkTransaction

logger = logging.getLogger(__name__)


def _batches(rows: Sequence[Any], size: int):
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class ChunkWriter:
    """
    Applies one decoded chunk to a destination table in a single transaction.

    Rows are sent in executemany batches of ``batch_size``; either every
    batch commits or the whole chunk rolls back. Transient driver failures
    surface as ConnectivityError so the caller can retry with a smaller
    batch in a new transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def apply(
        self,
        table: Table,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        batch_size: int,
        clear_range: Optional[tuple[str, Any, Any]] = None,
        *,
        clear_all: bool = False,
    ) -> int:
        """
        Insert ``rows`` into ``table``.

        ``clear_range`` is ``(key, start, end)``; rows with ``start <= key <= end``
        are deleted first, in the same transaction. A resumed push uses it for
        a chunk that may have committed before its checkpoint was saved.
        ``clear_all`` empties the table first instead; it is used for tables
        without a usable key, which travel as a single chunk.

        Returns:
            Number of rows written

        Raises:
            ConnectivityError: On transient failures (chunk rolled back)
            SQLAlchemyError: On anything else (chunk rolled back)
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        stmt = table.insert()
        written = 0
        with translate_db_errors(f"writing chunk to {table.name}"):
            tx = ChunkTransaction.begin(self.engine)
            try:
                removed = 0
                if clear_all:
                    removed = tx.delete_all(table)
                elif clear_range is not None:
                    removed = tx.delete_range(table, *clear_range)
                if removed:
                    logger.info("Replaced %d previously applied row(s) in %s", removed, table.name)
                for batch in _batches(rows, batch_size):
                    params = [dict(zip(columns, row)) for row in batch]
                    written += tx.insert_rows(stmt, params)
                tx.commit()
            except Exception:
                if not tx.closed:
                    tx.rollback()
                raise

        logger.debug("Wrote %d rows to %s", written, table.name)
        return written
