from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import ConfigurationError

MIN_CHUNKSIZE = 10
DEFAULT_CHUNKSIZE = 1000
SESSION_FILENAME = "session.json"


class Direction(str, Enum):
    PULL = "pull"
    PUSH = "push"


@dataclass(frozen=True)
class TransferConfig:
    """
    Immutable description of one transfer.

    Built once by the CLI (or by library callers) and never mutated.
    Pull reads ``database_url`` into ``dump_path``; Push reads ``dump_path``
    into ``database_url``.
    """

    direction: Direction
    database_url: str
    dump_path: str
    skip_schema: bool = False
    indexes_first: bool = False
    disable_compression: bool = False
    default_chunksize: int = DEFAULT_CHUNKSIZE
    table_filter: Optional[str] = None
    tables: Optional[tuple[str, ...]] = None
    exclude_tables: frozenset[str] = field(default_factory=frozenset)
    debug: bool = False
    workers: int = 1
    max_chunksize: Optional[int] = None
    grow_after: int = 5
    max_retries: int = 5
    retry_backoff: float = 0.5
    session_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        try:
            object.__setattr__(self, "direction", Direction(self.direction))
        except ValueError:
            raise ConfigurationError(f"Unknown direction: {self.direction!r}") from None

        if not self.database_url:
            raise ConfigurationError("database_url is required")
        if not self.dump_path:
            raise ConfigurationError("dump_path is required")

        if not isinstance(self.default_chunksize, int) or self.default_chunksize < MIN_CHUNKSIZE:
            raise ConfigurationError(
                f"default_chunksize must be an integer >= {MIN_CHUNKSIZE}, got {self.default_chunksize!r}"
            )

        if self.max_chunksize is None:
            object.__setattr__(self, "max_chunksize", max(self.default_chunksize * 10, self.default_chunksize))
        elif self.max_chunksize < self.default_chunksize:
            raise ConfigurationError("max_chunksize must be >= default_chunksize")

        if self.workers < 1:
            raise ConfigurationError("workers must be >= 1")
        if self.grow_after < 1:
            raise ConfigurationError("grow_after must be >= 1")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be >= 1")
        if self.retry_backoff < 0:
            raise ConfigurationError("retry_backoff must be >= 0")

        if self.table_filter is not None:
            try:
                re.compile(self.table_filter)
            except re.error as exc:
                raise ConfigurationError(f"Invalid table filter {self.table_filter!r}: {exc}") from exc

        if self.tables is not None:
            object.__setattr__(self, "tables", tuple(self.tables))
        object.__setattr__(self, "exclude_tables", frozenset(self.exclude_tables or ()))

        if self.session_path is None:
            object.__setattr__(self, "session_path", os.path.join(self.dump_path, SESSION_FILENAME))

    @property
    def compress(self) -> bool:
        return not self.disable_compression
