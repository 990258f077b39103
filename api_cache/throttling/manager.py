"""
RateLimitService: fixed-window attempt counting per client.
"""

import sys
from typing import Any, Optional, Protocol

from api_cache.core.config import as_configuration
from api_cache.database.models import RateLimitState
from api_cache.throttling.counters import CounterStore, InMemoryCounterStore
from api_cache.utils.logger import get_logger

UNLIMITED = sys.maxsize


class RateLimiter(Protocol):
    """Rate-limit operations the cache manager forwards to."""

    def allow_request(self, client_name: str) -> bool: ...

    def get_remaining_attempts(self, client_name: str) -> int: ...

    def get_available_in(self, client_name: str) -> int: ...

    def increment_attempts(self, client_name: str, amount: int = 1) -> None: ...

    def clear(self, client_name: str) -> None: ...


class RateLimitService:
    """Counts attempts per client in fixed windows of ``rate_limit_decay_seconds``.

    Limits come from the client configuration:
    {
        "clients": {
            "openai": {"rate_limit_max_attempts": 60, "rate_limit_decay_seconds": 60},
            "pixabay": {"rate_limit_max_attempts": None}
        }
    }
    A ``None`` (or negative) maximum means unlimited; the counter is then never read.

    ``increment_attempts`` is bookkeeping only. Callers check ``allow_request``
    before a live call and record the call afterwards.
    """

    def __init__(self, config: Any = None, store: Optional[CounterStore] = None):
        self.config = as_configuration(config)
        self.store = store if store is not None else InMemoryCounterStore()
        self.key_prefix = self.config.config["rate_limit"]["key_prefix"]
        self.logger = get_logger("throttling.manager")

    def get_rate_limit_key(self, client_name: str) -> str:
        return f"{self.key_prefix}:rate-limit:{client_name}"

    def get_max_attempts(self, client_name: str) -> Optional[int]:
        value = self.config.client_config(client_name).get("rate_limit_max_attempts")
        return None if value is None else int(value)

    def get_decay_seconds(self, client_name: str) -> int:
        return int(self.config.client_config(client_name).get("rate_limit_decay_seconds", 60))

    def _is_unlimited(self, max_attempts: Optional[int]) -> bool:
        return max_attempts is None or max_attempts < 0

    def get_remaining_attempts(self, client_name: str) -> int:
        """Attempts left in the current window; ``sys.maxsize`` when unlimited."""
        max_attempts = self.get_max_attempts(client_name)
        if self._is_unlimited(max_attempts):
            return UNLIMITED
        count = self.store.get(self.get_rate_limit_key(client_name))
        return max(0, max_attempts - count)

    def allow_request(self, client_name: str) -> bool:
        """Check whether a live request may be made now."""
        remaining = self.get_remaining_attempts(client_name)
        allowed = remaining > 0
        if allowed:
            self.logger.debug("Rate limit check for %s: %d attempts remaining", client_name, remaining)
        else:
            self.logger.warning(
                "Rate limit exceeded for %s (max %s), available in %ds",
                client_name,
                self.get_max_attempts(client_name),
                self.get_available_in(client_name),
            )
        return allowed

    def increment_attempts(self, client_name: str, amount: int = 1) -> None:
        """Record ``amount`` attempts; opens a window if none is active. Never raises on overflow."""
        if self._is_unlimited(self.get_max_attempts(client_name)):
            return
        count = self.store.increment(
            self.get_rate_limit_key(client_name), amount, self.get_decay_seconds(client_name)
        )
        self.logger.debug("Rate limit incremented for %s by %d (window count %d)", client_name, amount, count)

    def get_available_in(self, client_name: str) -> int:
        """Seconds until the window resets if currently limited, else 0."""
        if self.get_remaining_attempts(client_name) > 0:
            return 0
        return self.store.ttl(self.get_rate_limit_key(client_name))

    def clear(self, client_name: str) -> None:
        """Reset the client's window immediately."""
        self.store.clear(self.get_rate_limit_key(client_name))
        self.logger.debug("Rate limit state cleared for %s", client_name)

    def get_state(self, client_name: str) -> RateLimitState:
        return RateLimitState(
            client=client_name,
            remaining=self.get_remaining_attempts(client_name),
            max_attempts=self.get_max_attempts(client_name),
            decay_seconds=self.get_decay_seconds(client_name),
            available_in=self.get_available_in(client_name),
        )
