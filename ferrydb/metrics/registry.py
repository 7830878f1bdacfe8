from prometheus_client import Counter, Gauge, Histogram

FERRYDB_CHUNKS_TOTAL = Counter(
    "ferrydb_chunks_total",
    "Chunks transferred, by outcome",
    ["table", "direction", "status"],
)

FERRYDB_ROWS_TOTAL = Counter(
    "ferrydb_rows_total",
    "Rows committed to the dump directory or the destination",
    ["table", "direction"],
)

FERRYDB_CHUNK_RETRIES_TOTAL = Counter(
    "ferrydb_chunk_retries_total",
    "Chunk attempts retried after a transient failure",
    ["table", "direction"],
)

FERRYDB_CHUNK_LATENCY_SECONDS = Histogram(
    "ferrydb_chunk_latency_seconds",
    "Time to read, encode and write one chunk",
    ["direction"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

FERRYDB_CHUNKSIZE = Gauge(
    "ferrydb_chunksize",
    "Current adaptive chunksize",
    ["direction"],
)
