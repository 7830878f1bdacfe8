from __future__ import annotations

from ferrydb.metrics.registry import (
    FERRYDB_CHUNK_LATENCY_SECONDS,
    FERRYDB_CHUNK_RETRIES_TOTAL,
    FERRYDB_CHUNKS_TOTAL,
    FERRYDB_CHUNKSIZE,
    FERRYDB_ROWS_TOTAL,
)
from ferrydb.transfer.metrics import observe_chunk, observe_chunksize, observe_retry


def _chunks(table: str, direction: str, status: str) -> float:
    return FERRYDB_CHUNKS_TOTAL.labels(table=table, direction=direction, status=status)._value.get()


def _rows(table: str, direction: str) -> float:
    return FERRYDB_ROWS_TOTAL.labels(table=table, direction=direction)._value.get()


def _latency_sample_count(direction: str) -> int:
    for family in FERRYDB_CHUNK_LATENCY_SECONDS.labels(direction=direction).collect():
        for sample in family.samples:
            if sample.name.endswith("_count"):
                return int(sample.value)
    return 0


class TestChunkMetrics:
    def test_successful_chunk_counts_rows(self) -> None:
        initial_chunks = _chunks("metrics_a", "pull", "success")
        initial_rows = _rows("metrics_a", "pull")
        initial_samples = _latency_sample_count("pull")

        observe_chunk("metrics_a", "pull", "success", 250, 0.02)

        assert _chunks("metrics_a", "pull", "success") == initial_chunks + 1
        assert _rows("metrics_a", "pull") == initial_rows + 250
        assert _latency_sample_count("pull") == initial_samples + 1

    def test_failed_chunk_does_not_count_rows(self) -> None:
        initial_rows = _rows("metrics_b", "push")
        initial_errors = _chunks("metrics_b", "push", "error")

        observe_chunk("metrics_b", "push", "error", 0, 0.5)

        assert _chunks("metrics_b", "push", "error") == initial_errors + 1
        assert _rows("metrics_b", "push") == initial_rows

    def test_retry_counter(self) -> None:
        counter = FERRYDB_CHUNK_RETRIES_TOTAL.labels(table="metrics_c", direction="push")
        initial = counter._value.get()

        observe_retry("metrics_c", "push")

        assert counter._value.get() == initial + 1


class TestChunksizeGauge:
    def test_gauge_tracks_latest_value(self) -> None:
        observe_chunksize("pull", 640)
        observe_chunksize("pull", 320)

        assert FERRYDB_CHUNKSIZE.labels(direction="pull")._value.get() == 320
