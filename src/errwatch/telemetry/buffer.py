"""CircularEventBuffer — fixed-capacity ring of recent error events."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterator

from errwatch.core.types import ErrorEvent

DEFAULT_CAPACITY = 1000


class CircularEventBuffer:
    """Overwrite-oldest ring buffer queried by "since timestamp".

    Once full, each append silently drops the oldest entry. There is no
    eviction callback and the capacity never changes.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._events: deque[ErrorEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[ErrorEvent]:
        return iter(self.snapshot())

    def append(self, event: ErrorEvent) -> None:
        with self._lock:
            self._events.append(event)

    def since(self, timestamp: float) -> list[ErrorEvent]:
        """Return buffered events with ``timestamp >= since``, oldest first."""
        with self._lock:
            return [
                e for e in self._events
                if e.timestamp is not None and e.timestamp >= timestamp
            ]

    def snapshot(self) -> list[ErrorEvent]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
