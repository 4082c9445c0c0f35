"""Metrics History Store - bounded, time-ordered snapshot buffer.

Producers may push from any thread. Readers get list copies, so analysis
works on a stable view while new snapshots keep arriving.
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from whenever import Instant

    from agent_optimizer.models import MetricsSnapshot

logger = logging.getLogger("agent_optimizer.history")

DEFAULT_CAPACITY = 1000


class MetricsHistory:
    """Keeps the most recent `capacity` snapshots ordered by timestamp."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            msg = f"capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self._capacity = capacity
        self._snapshots: deque[MetricsSnapshot] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._total_recorded = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total_recorded(self) -> int:
        """Snapshots accepted since construction, including evicted ones."""
        return self._total_recorded

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def append(self, snapshot: MetricsSnapshot) -> None:
        """Record a snapshot, evicting the oldest beyond capacity."""
        with self._lock:
            if not self._snapshots or snapshot.instant >= self._snapshots[-1].instant:
                self._snapshots.append(snapshot)
                self._total_recorded += 1
                return

            # Late arrival: keep the buffer sorted
            instants = [s.instant for s in self._snapshots]
            index = bisect.bisect_right(instants, snapshot.instant)
            if len(self._snapshots) == self._capacity:
                if index == 0:
                    logger.debug("Dropping snapshot %s older than history", snapshot.timestamp)
                    return
                self._snapshots.popleft()
                index -= 1
            self._snapshots.insert(index, snapshot)
            self._total_recorded += 1
            logger.debug("Inserted out-of-order snapshot %s", snapshot.timestamp)

    def latest(self) -> MetricsSnapshot | None:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def snapshot(self) -> list[MetricsSnapshot]:
        """Copy of the whole buffer, oldest first."""
        with self._lock:
            return list(self._snapshots)

    def recent(self, count: int) -> list[MetricsSnapshot]:
        """The newest `count` snapshots, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            items = list(self._snapshots)
        return items[-count:]

    def window(self, since: Instant) -> list[MetricsSnapshot]:
        """Snapshots captured at or after `since`, oldest first."""
        with self._lock:
            items = list(self._snapshots)
        return [s for s in items if s.instant >= since]

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()
