"""Result cache and request quota shared by the vendor adapters."""

import time
from collections import deque
from typing import Any, Callable, Hashable


class TTLCache:
    """TTL cache with max size enforcement, evicting oldest entries first.

    Safe for single-threaded asyncio (no await between check and set).
    """

    def __init__(self, ttl: float, max_size: int = 2000, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._data: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._data.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at < self._ttl:
            return value
        del self._data[key]
        return None

    def set(self, key: Hashable, value: Any) -> None:
        if self._ttl <= 0:
            return
        self._data[key] = (self._clock(), value)
        if len(self._data) > self._max_size:
            self._evict()

    def pop(self, key: Hashable) -> Any | None:
        """Remove and return a live value, or None."""
        value = self.get(key)
        self._data.pop(key, None)
        return value

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (ts, _) in self._data.items() if now - ts >= self._ttl]:
            del self._data[key]
        overflow = len(self._data) - self._max_size
        if overflow > 0:
            oldest = sorted(self._data, key=lambda k: self._data[k][0])[:overflow]
            for key in oldest:
                del self._data[key]

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class RequestQuota:
    """Sliding one-minute window of request timestamps.

    Synchronous, safe for single-threaded asyncio (no lock needed).
    """

    WINDOW = 60.0

    def __init__(self, limit_per_minute: int, clock: Callable[[], float] = time.monotonic):
        self._limit = limit_per_minute
        self._clock = clock
        self._stamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        window_start = now - self.WINDOW
        while self._stamps and self._stamps[0] <= window_start:
            self._stamps.popleft()

    def try_acquire(self) -> bool:
        """Record a request if the window has room. Returns False when over limit."""
        if self._limit <= 0:
            return True
        now = self._clock()
        self._prune(now)
        if len(self._stamps) >= self._limit:
            return False
        self._stamps.append(now)
        return True

    def retry_after(self) -> float:
        """Seconds until the oldest request in the window expires."""
        if not self._stamps:
            return 0.0
        return max(0.0, self._stamps[0] + self.WINDOW - self._clock())

    def is_idle(self) -> bool:
        self._prune(self._clock())
        return not self._stamps

    @property
    def remaining(self) -> int:
        if self._limit <= 0:
            return 0
        self._prune(self._clock())
        return max(0, self._limit - len(self._stamps))
