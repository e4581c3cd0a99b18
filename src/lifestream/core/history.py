"""
Fixed-capacity sample history.

:class:`SampleHistory` is a thread-safe ring buffer: once full, each new item
overwrites the oldest one, so memory stays bounded no matter how long a
collector runs. Reads always return items oldest-first.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TimestampedSample(Generic[T]):
    """A value paired with the instant it was observed."""

    timestamp: datetime
    value: T


class SampleHistory(Generic[T]):
    """Thread-safe circular buffer of ``capacity`` items."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive.")
        self._buffer: List[Optional[T]] = [None] * capacity
        self._lock = threading.Lock()
        self._head = 0  # next write position
        self._count = 0

    @property
    def capacity(self) -> int:
        return len(self._buffer)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def __len__(self) -> int:
        return self.count

    def add(self, item: T) -> None:
        """Append ``item``, overwriting the oldest entry when full."""

        with self._lock:
            self._buffer[self._head] = item
            self._head = (self._head + 1) % len(self._buffer)
            if self._count < len(self._buffer):
                self._count += 1

    def to_list(self) -> List[T]:
        """Return every stored item, oldest first."""

        with self._lock:
            return self._window(self._count)

    def get_recent(self, n: int) -> List[T]:
        """Return the newest ``min(n, count)`` items, oldest first."""

        with self._lock:
            if n <= 0 or self._count == 0:
                return []
            return self._window(min(n, self._count))

    def get_latest(self) -> Optional[T]:
        """Return the newest item or ``None`` when empty."""

        with self._lock:
            if self._count == 0:
                return None
            return self._buffer[(self._head - 1) % len(self._buffer)]

    def clear(self) -> None:
        with self._lock:
            self._buffer = [None] * len(self._buffer)
            self._head = 0
            self._count = 0

    def _window(self, size: int) -> List[T]:
        # The newest ``size`` items end just before ``_head``; this holds both
        # before and after the buffer has wrapped.
        capacity = len(self._buffer)
        start = (self._head - size) % capacity
        return [self._buffer[(start + offset) % capacity] for offset in range(size)]  # type: ignore[misc]
