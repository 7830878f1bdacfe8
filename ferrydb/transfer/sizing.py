from __future__ import annotations

import logging
import threading

from ..config import MIN_CHUNKSIZE

logger = logging.getLogger(__name__)


class ChunkSizer:
    """
    Adaptive chunksize shared by every worker of one operation.

    A transient failure halves the size (never below ``floor``); ``grow_after``
    consecutive successes double it (never above ``ceiling``).
    """

    def __init__(
        self,
        initial: int,
        *,
        floor: int = MIN_CHUNKSIZE,
        ceiling: int | None = None,
        grow_after: int = 5,
    ) -> None:
        if ceiling is None:
            ceiling = max(initial, floor)
        if floor < 1 or ceiling < floor:
            raise ValueError("chunksize bounds must satisfy 1 <= floor <= ceiling")
        self.floor = floor
        self.ceiling = ceiling
        self.grow_after = grow_after
        self._size = min(max(initial, floor), ceiling)
        self._streak = 0
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        with self._lock:
            return self._size

    def record_failure(self) -> int:
        with self._lock:
            self._streak = 0
            previous = self._size
            self._size = max(self.floor, self._size // 2)
            if self._size != previous:
                logger.info("Chunksize reduced %d -> %d", previous, self._size)
            return self._size

    def record_success(self) -> int:
        with self._lock:
            self._streak += 1
            if self._streak >= self.grow_after and self._size < self.ceiling:
                previous = self._size
                self._size = min(self.ceiling, self._size * 2)
                self._streak = 0
                logger.debug("Chunksize increased %d -> %d", previous, self._size)
            return self._size

    def reset_streak(self) -> None:
        with self._lock:
            self._streak = 0
