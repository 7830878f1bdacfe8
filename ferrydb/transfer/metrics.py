import logging

from ..metrics.registry import (
    FERRYDB_CHUNK_LATENCY_SECONDS,
    FERRYDB_CHUNK_RETRIES_TOTAL,
    FERRYDB_CHUNKS_TOTAL,
    FERRYDB_CHUNKSIZE,
    FERRYDB_ROWS_TOTAL,
)

logger = logging.getLogger(__name__)


def observe_chunk(table: str, direction: str, status: str, rows: int, latency_s: float) -> None:
    """Record one chunk attempt. Metric failures never mask transfer errors."""
    try:
        FERRYDB_CHUNKS_TOTAL.labels(table=table, direction=direction, status=status).inc()
        FERRYDB_CHUNK_LATENCY_SECONDS.labels(direction=direction).observe(latency_s)
        if status == "success" and rows:
            FERRYDB_ROWS_TOTAL.labels(table=table, direction=direction).inc(rows)
    except Exception:
        logger.debug("Failed to record chunk metrics", exc_info=True)


def observe_retry(table: str, direction: str) -> None:
    try:
        FERRYDB_CHUNK_RETRIES_TOTAL.labels(table=table, direction=direction).inc()
    except Exception:
        logger.debug("Failed to record retry metric", exc_info=True)


def observe_chunksize(direction: str, size: int) -> None:
    try:
        FERRYDB_CHUNKSIZE.labels(direction=direction).set(size)
    except Exception:
        logger.debug("Failed to record chunksize metric", exc_info=True)
