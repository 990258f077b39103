"""Atomic fixed-window counters backing the rate limiter."""

import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis

from api_cache.utils.logger import get_logger


class CounterStore(Protocol):
    """An increment/decay primitive: counters that expire ``decay_seconds`` after creation."""

    def increment(self, key: str, amount: int, decay_seconds: int) -> int: ...

    def get(self, key: str) -> int: ...

    def ttl(self, key: str) -> int: ...

    def clear(self, key: str) -> None: ...


class InMemoryCounterStore:
    """Process-local counter store.

    Windows start on the first increment and reset once ``decay_seconds``
    have elapsed. All operations hold one lock, so concurrent increments
    from threads never lose updates.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.time
        self.lock = threading.Lock()
        self._counters: Dict[str, Tuple[int, float]] = {}

    def _live(self, key: str, now: float) -> Optional[Tuple[int, float]]:
        entry = self._counters.get(key)
        if entry is not None and entry[1] <= now:
            del self._counters[key]
            return None
        return entry

    def increment(self, key: str, amount: int, decay_seconds: int) -> int:
        with self.lock:
            now = self.clock()
            entry = self._live(key, now)
            if entry is None:
                entry = (0, now + decay_seconds)
            count = entry[0] + amount
            self._counters[key] = (count, entry[1])
            return count

    def get(self, key: str) -> int:
        with self.lock:
            entry = self._live(key, self.clock())
            return entry[0] if entry else 0

    def ttl(self, key: str) -> int:
        """Whole seconds until the window resets, 0 when no window is open."""
        with self.lock:
            now = self.clock()
            entry = self._live(key, now)
            if entry is None:
                return 0
            remaining = entry[1] - now
            return max(0, int(remaining) + (1 if remaining % 1 else 0))

    def clear(self, key: str) -> None:
        with self.lock:
            self._counters.pop(key, None)


class RedisCounterStore:
    """Counter store on Redis ``INCRBY``/``EXPIRE``, atomic across processes."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        if client is None:
            client = redis.Redis.from_url(redis_url or "redis://localhost:6379/0", decode_responses=True)
        self.redis = client
        self.logger = get_logger("throttling.redis")

    def increment(self, key: str, amount: int, decay_seconds: int) -> int:
        pipe = self.redis.pipeline(transaction=True)
        pipe.incrby(key, amount)
        # Only the first increment of a window sets the expiry
        pipe.expire(key, decay_seconds, nx=True)
        count, _ = pipe.execute()
        return int(count)

    def get(self, key: str) -> int:
        value = self.redis.get(key)
        return int(value) if value is not None else 0

    def ttl(self, key: str) -> int:
        # Redis returns -2 for missing keys and -1 for keys without expiry
        return max(0, int(self.redis.ttl(key)))

    def clear(self, key: str) -> None:
        self.redis.delete(key)
