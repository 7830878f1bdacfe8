"""
Pull and Push operations.

An operation walks ``Init -> Schema -> Data -> Index -> Sequence -> Done``
(Index before Data with ``indexes_first``). Every phase and every committed
chunk is recorded in the session file before the next one starts, so an
interrupted run can be resumed from its last committed boundary.

Tables are transferred concurrently, one table per worker thread. Workers
never touch the session file: they hand each committed chunk to the
orchestrating thread and wait until it has been checkpointed.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Optional, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError

from . import filters
from .config import Direction, TransferConfig
from .db.connector import Database
from .dump import DumpDirectory
from .errors import (
    ConfigurationError,
    ConnectivityError,
    EncodeError,
    ResumeStateError,
    SchemaApplyError,
    TableTransferError,
    TransferFailed,
    TransferInterrupted,
)
from .schema.codec import (
    dump_indexes_individual,
    dump_schema,
    dump_table_schema,
    load_indexes,
    load_schema,
    reset_sequences,
)
from .state import SessionState, SessionStore
from .transfer.codec import TransferCodec, checksum
from .transfer.cursor import END_OF_TABLE, ChunkCursor
from .transfer.metrics import observe_chunk, observe_chunksize, observe_retry
from .transfer.models import Chunk
from .transfer.sizing import ChunkSizer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Phase(str, Enum):
    INIT = "init"
    SCHEMA = "schema"
    INDEX = "index"
    DATA = "data"
    SEQUENCE = "sequence"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TransferReport:
    direction: Direction
    tables: list[str]
    rows: dict[str, int]
    chunks: dict[str, int]
    elapsed: float
    phases: list[Phase] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(self.rows.values())


@dataclass
class ChunkCommitted:
    """Sent by a worker after a chunk is durable; the worker blocks on ``ack``."""

    table: str
    seq: int
    last_key: Any
    rows: int
    ack: threading.Event = field(default_factory=threading.Event, repr=False)
    saved: bool = False


@dataclass
class TableFinished:
    table: str
    completed: bool = False
    error: Optional[TableTransferError] = None


class Operation:
    """
    Base for PullOperation and PushOperation.

    Usage:
        op = factory(config, Database.from_url(config.database_url))
        report = op.run()

    Raises (from run):
        TransferFailed: A table failed; the session file stays resumable
        TransferInterrupted: stop() or Ctrl-C; in-flight chunks were checkpointed
        SchemaApplyError, ConnectivityError, ConfigurationError: A schema,
            index or sequence phase could not complete
    """

    direction: Direction

    def __init__(
        self,
        config: TransferConfig,
        connector: Database,
        state: Optional[SessionState] = None,
    ) -> None:
        if config.direction != self.direction:
            raise ConfigurationError(
                f"{type(self).__name__} cannot run a {config.direction.value} configuration"
            )
        if state is not None and state.direction != self.direction:
            raise ResumeStateError(
                f"Session was recorded by a {state.direction.value}; cannot resume it as a {self.direction.value}"
            )

        self.config = config
        self.connector = connector
        self.state = state
        self.resumed = state is not None
        self.store = SessionStore(config.session_path)
        self.dump = DumpDirectory(state.dump_path if state is not None else config.dump_path)

        self.phase = Phase.INIT
        self.phases: list[Phase] = []
        self.sizer: Optional[ChunkSizer] = None

        self._stop = threading.Event()
        self._messages: queue.Queue[Union[ChunkCommitted, TableFinished]] = queue.Queue()
        self._started = 0.0

    # lifecycle

    def stop(self) -> None:
        """Ask workers to stop at their next chunk boundary."""
        if not self._stop.is_set():
            logger.info("Stop requested; finishing in-flight chunks")
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> TransferReport:
        self._started = time.monotonic()
        try:
            self._init()

            if self.state.skip_schema:
                logger.info("Skipping schema phase")
            elif not self.state.schema_done:
                self._enter(Phase.SCHEMA)
                self.schema_phase(self.state.tables)
                self.state.schema_done = True
                self._save()

            if self.state.indexes_first:
                self._index_phase()

            self._enter(Phase.DATA)
            self._data_phase()

            if not self.state.indexes_first:
                self._index_phase()

            if not self.state.sequences_done:
                self._enter(Phase.SEQUENCE)
                self.sequence_phase(self.state.tables)
                self.state.sequences_done = True
                self._save()
        except TransferInterrupted:
            raise
        except BaseException:
            self.phase = Phase.FAILED
            raise

        self._enter(Phase.DONE)
        report = self.report()
        logger.info(
            "%s finished: %d table(s), %d row(s) in %.1fs",
            self.direction.value.capitalize(),
            len(report.tables),
            report.total_rows,
            report.elapsed,
        )
        return report

    def report(self) -> TransferReport:
        state = self.state
        tables = list(state.tables) if state is not None else []
        return TransferReport(
            direction=self.direction,
            tables=tables,
            rows={t: state.table_cursors[t].rows for t in tables if t in state.table_cursors},
            chunks={t: state.table_cursors[t].chunk for t in tables if t in state.table_cursors},
            elapsed=time.monotonic() - self._started,
            phases=list(self.phases),
        )

    def _enter(self, phase: Phase) -> None:
        logger.debug("Entering %s phase", phase.value)
        self.phase = phase
        self.phases.append(phase)

    def _save(self) -> None:
        if self.sizer is not None:
            self.state.current_chunksize = self.sizer.current
        self.store.save(self.state)

    def _init(self) -> None:
        self._enter(Phase.INIT)
        if self.state is None:
            config = self.config
            self.state = SessionState(
                dump_path=config.dump_path,
                database_url=config.database_url,
                direction=self.direction,
                current_chunksize=config.default_chunksize,
                skip_schema=config.skip_schema,
                indexes_first=config.indexes_first,
                disable_compression=config.disable_compression,
                debug=config.debug,
            )
        else:
            logger.info(
                "Resuming %s of %s: %d of %d table(s) already complete",
                self.direction.value,
                self.state.dump_path,
                len(self.state.completed_tables),
                len(self.state.tables),
            )

        if not self.state.tables:
            self.state.tables = filters.select(
                self.available_tables(),
                regex=self.config.table_filter,
                include_list=self.config.tables,
                exclude_list=self.config.exclude_tables,
            )
        logger.info("Tables to transfer: %s", ", ".join(self.state.tables) or "(none)")

        self.sizer = ChunkSizer(
            self.state.current_chunksize,
            ceiling=max(self.config.max_chunksize, self.state.current_chunksize),
            grow_after=self.config.grow_after,
        )
        observe_chunksize(self.direction.value, self.sizer.current)
        self._save()

    def _index_phase(self) -> None:
        if self.state.indexes_done:
            return
        self._enter(Phase.INDEX)
        self.index_phase(self.state.tables)
        self.state.indexes_done = True
        self._save()

    # data phase

    def worker_count(self, pending: int) -> int:
        return max(1, min(self.config.workers, pending))

    def _data_phase(self) -> None:
        pending = self.state.pending_tables()
        if not pending:
            logger.info("All tables already transferred")
            return

        # Starting points are read here, before any worker can report progress.
        starts = {}
        for table in pending:
            cursor = self.state.table_cursors.get(table)
            starts[table] = (cursor.last_key, cursor.chunk) if cursor is not None else (None, 0)

        workers = self.worker_count(len(pending))
        logger.info("Transferring %d table(s) with %d worker(s)", len(pending), workers)

        failures: list[TableTransferError] = []
        interrupted = False
        remaining = len(pending)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ferrydb") as pool:
            for table in pending:
                after_key, chunk = starts[table]
                pool.submit(self._run_table, table, after_key, chunk)
            try:
                while remaining:
                    message = self._messages.get()
                    # remaining must drop before _handle can raise
                    if isinstance(message, TableFinished):
                        remaining -= 1
                    self._handle(message, failures)
            except KeyboardInterrupt:
                interrupted = True
                self.stop()
                logger.warning("Interrupted; waiting for in-flight chunks to be checkpointed")
                self._drain(remaining, failures)
            except BaseException:
                self.stop()
                self._drain(remaining, failures)
                raise

        self._save()
        if failures:
            self.phase = Phase.FAILED
            for failure in failures:
                logger.error("Table failed: %s", failure.describe())
            raise TransferFailed(
                f"{len(failures)} table(s) failed: {', '.join(f.table for f in failures)}",
                report=self.report(),
                failures=failures,
            )
        if interrupted or self.state.pending_tables():
            raise TransferInterrupted(
                f"Stopped with {len(self.state.pending_tables())} table(s) pending; resume from {self.store.path}"
            )

    def _drain(self, remaining: int, failures: list[TableTransferError]) -> None:
        """Release every worker after a stop; progress that cannot be saved is dropped."""
        while remaining:
            message = self._messages.get()
            if isinstance(message, TableFinished):
                remaining -= 1
            try:
                self._handle(message, failures)
            except Exception:
                logger.exception("Could not record progress of %s while stopping", message.table)

    def _handle(self, message: Union[ChunkCommitted, TableFinished], failures: list[TableTransferError]) -> None:
        """Apply one worker message to the session."""
        if isinstance(message, ChunkCommitted):
            try:
                self.state.checkpoint(message.table, message.last_key, message.seq, message.rows)
                self._save()
                message.saved = True
            finally:
                message.ack.set()
            return

        if message.error is not None:
            failures.append(message.error)
            if message.error.fatal:
                self.stop()
        elif message.completed:
            self.state.mark_completed(message.table)
            self.sizer.reset_streak()
            self._save()
            logger.info("Table %s complete (%d rows)", message.table, self.state.cursor(message.table).rows)

    def _run_table(self, table: str, after_key: Any, chunk: int) -> None:
        outcome = TableFinished(table)
        try:
            outcome.completed = self.transfer_table(table, after_key, chunk)
        except TableTransferError as exc:
            outcome.error = exc
        except Exception as exc:
            logger.exception("Unexpected error transferring %s", table)
            error = TableTransferError(table, f"unexpected error: {exc}", fatal=True)
            error.__cause__ = exc
            outcome.error = error
        finally:
            self._messages.put(outcome)

    def _commit(self, table: str, seq: int, last_key: Any, rows: int) -> bool:
        """Hand a durable chunk to the orchestrator and wait for its checkpoint."""
        message = ChunkCommitted(table=table, seq=seq, last_key=last_key, rows=rows)
        self._messages.put(message)
        message.ack.wait()
        if not message.saved:
            self.stop()
        return message.saved

    def _attempt(
        self,
        table: str,
        action: Callable[[int], T],
        range_start: Any = None,
        range_end: Any = None,
    ) -> T:
        """
        Run ``action(chunksize)`` until it succeeds.

        Transient failures halve the chunksize and retry the same range; the
        table fails fatally once ``max_retries`` retries are used up. Encoding
        and non-transient database errors fail only this table (the whole run
        in debug mode).
        """
        failures = 0
        while True:
            started = time.monotonic()
            try:
                result = action(self.sizer.current)
            except ConnectivityError as exc:
                observe_chunk(table, self.direction.value, "retry", 0, time.monotonic() - started)
                failures += 1
                if failures > self.config.max_retries:
                    raise TableTransferError(
                        table,
                        f"giving up after {failures} attempts: {exc}",
                        range_start=range_start,
                        range_end=range_end,
                        fatal=True,
                    ) from exc
                size = self.sizer.record_failure()
                observe_retry(table, self.direction.value)
                observe_chunksize(self.direction.value, size)
                logger.warning(
                    "Transient failure on %s (attempt %d of %d), retrying with chunksize %d: %s",
                    table,
                    failures,
                    self.config.max_retries + 1,
                    size,
                    exc,
                )
                if self.config.retry_backoff:
                    time.sleep(min(self.config.retry_backoff * 2 ** (failures - 1), 30.0))
                continue
            except (EncodeError, SQLAlchemyError) as exc:
                observe_chunk(table, self.direction.value, "error", 0, time.monotonic() - started)
                raise TableTransferError(
                    table,
                    str(exc),
                    range_start=range_start,
                    range_end=range_end,
                    fatal=self.state.debug and isinstance(exc, EncodeError),
                ) from exc
            return result

    @contextlib.contextmanager
    def _table_errors(self, table: str, range_start: Any = None) -> Iterator[None]:
        """Turn errors raised outside the retry loop into table failures."""
        try:
            yield
        except (EncodeError, SQLAlchemyError, ConnectivityError) as exc:
            fatal = isinstance(exc, ConnectivityError) or (self.state.debug and isinstance(exc, EncodeError))
            raise TableTransferError(table, str(exc), range_start=range_start, fatal=fatal) from exc

    def _chunk_done(self, table: str, rows: int, latency_s: float) -> None:
        observe_chunk(table, self.direction.value, "success", rows, latency_s)
        observe_chunksize(self.direction.value, self.sizer.record_success())

    # per-direction behavior

    def available_tables(self) -> list[str]:
        raise NotImplementedError

    def schema_phase(self, tables: list[str]) -> None:
        raise NotImplementedError

    def index_phase(self, tables: list[str]) -> None:
        raise NotImplementedError

    def sequence_phase(self, tables: list[str]) -> None:
        raise NotImplementedError

    def transfer_table(self, table: str, after_key: Any, chunk: int) -> bool:
        """Move one table; returns False if stopped before the table was complete."""
        raise NotImplementedError


class PullOperation(Operation):
    """Source database -> dump directory."""

    direction = Direction.PULL

    @property
    def source(self) -> Database:
        return self.connector

    def available_tables(self) -> list[str]:
        return self.source.table_names()

    def schema_phase(self, tables: list[str]) -> None:
        self.dump.create()
        for table in tables:
            logger.info("Dumping schema of %s", table)
            self.dump.write_table_schema(table, dump_table_schema(self.source, table))
        self.dump.write_schema(dump_schema(self.source, tables))

    def index_phase(self, tables: list[str]) -> None:
        self.dump.create()
        for table, document in dump_indexes_individual(self.source, tables).items():
            logger.info("Dumping indexes of %s", table)
            self.dump.write_indexes(table, document)

    def sequence_phase(self, tables: list[str]) -> None:
        # Sequences are derived from the loaded data when pushing.
        logger.debug("Nothing to do for sequences on pull")

    def transfer_table(self, table: str, after_key: Any, chunk: int) -> bool:
        self.dump.create()
        if chunk == 0:
            self.dump.clear_table_data(table)

        with self._table_errors(table, after_key):
            spec = self.source.table_spec(table)
        cursor = ChunkCursor(self.source, spec, after_key=after_key, chunk=chunk)
        codec = TransferCodec(compress=not self.state.disable_compression)

        def pull_chunk(size: int):
            row_range = cursor.next(size)
            if row_range is END_OF_TABLE:
                return row_range, None
            payload = codec.encode(spec.columns, row_range.rows)
            written = Chunk(
                table=table,
                seq=cursor.chunk + 1,
                range_start=row_range.range_start,
                range_end=row_range.range_end,
                row_count=row_range.row_count,
                payload=payload,
                checksum=checksum(payload),
                compressed=codec.compress,
            )
            self.dump.write_chunk(written)
            return row_range, written

        logger.info("Pulling %s", table)
        while not self.stopped:
            started = time.monotonic()
            row_range, written = self._attempt(table, pull_chunk, range_start=cursor.after_key)
            if row_range is END_OF_TABLE:
                # A chunk written before a crash may lie beyond the new end.
                self.dump.clear_table_data(table, after_seq=cursor.chunk)
                return True
            self._chunk_done(table, row_range.row_count, time.monotonic() - started)
            if not self._commit(table, written.seq, row_range.range_end, row_range.row_count):
                return False
            cursor.commit(row_range)
        return False


class PushOperation(Operation):
    """Dump directory -> destination database."""

    direction = Direction.PUSH

    @property
    def destination(self) -> Database:
        return self.connector

    def worker_count(self, pending: int) -> int:
        if self.destination.dialect_name == "sqlite":
            # SQLite allows a single writer.
            return 1
        return super().worker_count(pending)

    def available_tables(self) -> list[str]:
        if not self.dump.exists():
            raise ConfigurationError(f"Dump directory {self.dump.root} does not exist")
        if self.dump.has_schema():
            return self.dump.schema_tables()
        return self.dump.data_tables()

    def schema_phase(self, tables: list[str]) -> None:
        for table in tables:
            try:
                document = self.dump.read_table_schema(table)
            except FileNotFoundError:
                raise SchemaApplyError(f"No schema for {table} in {self.dump.root}", table=table) from None
            load_schema(self.destination, document)

    def index_phase(self, tables: list[str]) -> None:
        for table in tables:
            document = self.dump.read_indexes(table)
            if document is None:
                logger.debug("No index file for %s", table)
                continue
            load_indexes(self.destination, document)

    def sequence_phase(self, tables: list[str]) -> None:
        reset = reset_sequences(self.destination, tables)
        logger.info("Reset %d sequence(s)", len(reset))

    def transfer_table(self, table: str, after_key: Any, chunk: int) -> bool:
        with self._table_errors(table, after_key):
            spec = self.destination.table_spec(table)
        seqs = [seq for seq in self.dump.chunk_seqs(table) if seq > chunk]
        first = True

        logger.info("Pushing %s (%d chunk(s))", table, len(seqs))
        for seq in seqs:
            if self.stopped:
                return False
            started = time.monotonic()
            with self._table_errors(table, after_key):
                loaded = self.dump.read_chunk(table, seq)
                columns, rows = TransferCodec(compress=loaded.compressed).decode(loaded.payload)

            clear_range = None
            clear_all = False
            if self.resumed and first:
                if spec.chunkable and loaded.range_start is not None:
                    clear_range = (spec.key, loaded.range_start, loaded.range_end)
                elif not spec.chunkable and chunk == 0:
                    # the single chunk may have committed without its checkpoint
                    clear_all = True
            first = False

            written = self._attempt(
                table,
                lambda size: self.destination.write_rows(
                    table, columns, rows, size, clear_range, clear_all=clear_all
                ),
                range_start=loaded.range_start,
                range_end=loaded.range_end,
            )
            self._chunk_done(table, written, time.monotonic() - started)
            if not self._commit(table, seq, loaded.range_end, written):
                return False
            after_key = loaded.range_end
        return True


def factory(
    config: TransferConfig,
    connector: Database,
    state: Optional[SessionState] = None,
) -> Operation:
    if config.direction == Direction.PULL:
        return PullOperation(config, connector, state)
    return PushOperation(config, connector, state)
