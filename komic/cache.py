"""Small in-process TTL cache, one instance per app (see app.state.url_codes)."""

from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 5 * 60


class TTLCache(Generic[V]):
    """Maps keys to values that expire ttl seconds after being set.

    Expired entries are ignored by get() and removed by sweep(), which
    set() also runs once per ttl.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self._items: dict[Hashable, tuple[float, V]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._items)

    def get(self, key: Hashable) -> Optional[V]:
        now = self.clock()
        with self._lock:
            hit = self._items.get(key)
            if hit is None or now - hit[0] >= self.ttl:
                return None
            return hit[1]

    def set(self, key: Hashable, value: V) -> None:
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.ttl:
                self._sweep_locked(now)
            self._items[key] = (now, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self.clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, (stamp, _) in self._items.items() if now - stamp >= self.ttl]
        for key in expired:
            del self._items[key]
        self._last_sweep = now
        return len(expired)
