from __future__ import annotations

from typing import Any


class FerryError(Exception):
    """Base exception for ferrydb errors."""


class ConfigurationError(FerryError):
    """Invalid or missing input, raised before any transfer starts."""


class ConnectivityError(FerryError):
    """Transient failure talking to a database; retried with a smaller chunksize."""


class EncodeError(FerryError):
    """A value or payload could not be encoded or decoded."""


class ChunkIntegrityError(EncodeError):
    """A chunk file failed its checksum or could not be parsed."""


class SchemaApplyError(FerryError):
    """DDL could not be applied to the destination."""

    def __init__(self, message: str, *, table: str | None = None, applied: list[str] | None = None) -> None:
        super().__init__(message)
        self.table = table
        self.applied = list(applied or [])


class ResumeStateError(FerryError):
    """The session file is corrupt or incompatible with this invocation."""


class TableTransferError(FerryError):
    """Failure confined to the data phase of a single table."""

    def __init__(
        self,
        table: str,
        message: str,
        *,
        range_start: Any = None,
        range_end: Any = None,
        fatal: bool = False,
    ) -> None:
        super().__init__(message)
        self.table = table
        self.range_start = range_start
        self.range_end = range_end
        # fatal failures stop the whole run, not just this table
        self.fatal = fatal

    def describe(self) -> str:
        if self.range_start is None and self.range_end is None:
            return f"{self.table}: {self}"
        return f"{self.table} [{self.range_start!r} .. {self.range_end!r}]: {self}"


class TransferFailed(FerryError):
    """The operation ended in the Failed state."""

    def __init__(self, message: str, *, report: Any = None, failures: list[TableTransferError] | None = None) -> None:
        super().__init__(message)
        self.report = report
        self.failures = list(failures or [])


class TransferInterrupted(FerryError):
    """The operation stopped at a chunk boundary after an interrupt."""
