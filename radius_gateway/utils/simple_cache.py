from __future__ import annotations

import threading
import time
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Simple in-memory TTL cache with basic hit/miss counters.

    - Thread-safe via a single RLock
    - When ``maxsize`` is reached, expired entries go first, then the
      entry closest to expiry
    """

    def __init__(self, ttl_seconds: float, maxsize: int | None = None) -> None:
        self._ttl = max(0.0, float(ttl_seconds))
        self._maxsize = maxsize if (isinstance(maxsize, int) and maxsize > 0) else None
        self._data: dict[K, tuple[float, V]] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get(self, key: K) -> V | None:
        now = time.monotonic()
        with self._lock:
            item = self._data.get(key)
            if item is None:
                self.misses += 1
                return None
            exp, val = item
            if exp < now:
                self.misses += 1
                del self._data[key]
                return None
            self.hits += 1
            return val

    def set(self, key: K, value: V, *, ttl: float | None = None) -> None:
        exp_ttl = self._ttl if ttl is None else float(ttl)
        if exp_ttl <= 0:
            return
        now = time.monotonic()
        with self._lock:
            if (
                self._maxsize is not None
                and key not in self._data
                and len(self._data) >= self._maxsize
            ):
                expired = [k for k, (e, _v) in self._data.items() if e < now]
                for k in expired:
                    del self._data[k]
                    self.evictions += 1
                if len(self._data) >= self._maxsize:
                    oldest = min(self._data, key=lambda k: self._data[k][0])
                    del self._data[oldest]
                    self.evictions += 1
            self._data[key] = (now + exp_ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0
