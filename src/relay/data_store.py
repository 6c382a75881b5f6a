"""
Latest-sample snapshot and bounded history

Pure data, no I/O. Written by the connection manager, read by the
broadcaster and the HTTP layer from other threads.
"""

import threading
from collections import deque
from typing import Optional, Tuple

from relay.models import SensorSample

DEFAULT_HISTORY_SIZE = 100


class HistoryBuffer:
    """Fixed-capacity FIFO of samples, oldest first."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE):
        if capacity < 1:
            raise ValueError(f"History capacity must be positive, got {capacity}")
        self._items = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._items.maxlen

    def append(self, sample: SensorSample):
        """Append a sample, evicting the oldest when full."""
        with self._lock:
            self._items.append(sample)

    def snapshot(self) -> Tuple[SensorSample, ...]:
        """Immutable copy of the current contents."""
        with self._lock:
            return tuple(self._items)

    def clear(self):
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class DataStore:
    """
    Holds the most recent sample and the history buffer.

    Example:
        store = DataStore(history_size=100)
        store.record(sample)
        store.latest()            # -> sample
        store.history_snapshot()  # -> (..., sample)
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._latest: Optional[SensorSample] = None
        self._history = HistoryBuffer(history_size)
        self._lock = threading.Lock()

    def set_latest(self, sample: SensorSample):
        with self._lock:
            self._latest = sample

    def latest(self) -> Optional[SensorSample]:
        """Most recent sample, or None before the first one"""
        with self._lock:
            return self._latest

    def append_history(self, sample: SensorSample):
        self._history.append(sample)

    def history_snapshot(self) -> Tuple[SensorSample, ...]:
        return self._history.snapshot()

    def record(self, sample: SensorSample):
        """Set latest and append to history as one update."""
        with self._lock:
            self._latest = sample
            self._history.append(sample)

    def snapshot(self) -> Tuple[Optional[SensorSample], Tuple[SensorSample, ...]]:
        """Latest sample and history, read consistently."""
        with self._lock:
            return self._latest, self._history.snapshot()

    @property
    def history_size(self) -> int:
        return self._history.capacity

    def __len__(self) -> int:
        return len(self._history)
