"""
Request-Rate Buckets
=====================
Rolling requests-per-second per (route pattern, method) in constant memory.

Each series is a ring of counters, one per tick interval, plus a running total:

    window 1000 ms / interval 100 ms  →  10 slots

    observe()  → slots[index] += 1, total += 1
    tick()     → index = (index + 1) % slots; total -= slots[index]; slots[index] = 0

The total therefore always equals the sum of the slots and counts the requests
seen during the trailing window. A request landing just before a tick is
attributed to the window rather than to a wall-clock second; that is the
approximation this structure trades for O(1) updates.
"""

import threading
from typing import Dict, List, Tuple

import numpy as np

DEFAULT_INTERVAL_MS = 100
DEFAULT_WINDOW_MS = 1000


class BucketSeries:
    __slots__ = ("slots", "total")

    def __init__(self, slot_count: int):
        self.slots = np.zeros(slot_count, dtype=np.int64)
        self.total = 0


class RateBucketTracker:
    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS, interval_ms: int = DEFAULT_INTERVAL_MS):
        if interval_ms <= 0 or window_ms < interval_ms or window_ms % interval_ms:
            raise ValueError("window_ms must be a positive multiple of interval_ms")
        self.window_ms = window_ms
        self.interval_ms = interval_ms
        self.slot_count = window_ms // interval_ms
        self._index = 0
        self._series: Dict[Tuple[str, str], BucketSeries] = {}
        # Request observation and the ticker both write; serialize them.
        self._lock = threading.Lock()

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    def register(self, path: str, method: str) -> None:
        key = (path, method.upper())
        with self._lock:
            if key not in self._series:
                self._series[key] = BucketSeries(self.slot_count)

    def observe(self, path: str, method: str) -> None:
        series = self._series.get((path, method.upper()))
        if series is None:
            return
        with self._lock:
            series.slots[self._index] += 1
            series.total += 1

    def tick(self) -> None:
        with self._lock:
            self._index = (self._index + 1) % self.slot_count
            for series in self._series.values():
                series.total -= int(series.slots[self._index])
                series.slots[self._index] = 0

    def count(self, path: str, method: str) -> int:
        series = self._series.get((path, method.upper()))
        return series.total if series is not None else 0

    def snapshot(self) -> List[Dict]:
        return [
            {"method": method, "path": path, "rps": series.total}
            for (path, method), series in list(self._series.items())
        ]
