"""
Time-boxed result cache.

One instance per cached result, owned by whoever computes the result. The
clock is injected so expiry can be driven by tests.
"""

import time
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Holds a single value until `ttl_seconds` have passed since it was set."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[T] = None
        self._set_at: Optional[float] = None

    def is_valid(self) -> bool:
        if self._set_at is None:
            return False
        return self._clock() - self._set_at < self.ttl_seconds

    def get(self) -> Optional[T]:
        """Cached value, or None once expired or never set."""
        if not self.is_valid():
            return None
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._set_at = self._clock()

    def clear(self) -> None:
        self._value = None
        self._set_at = None

    def last_updated(self) -> Optional[float]:
        """Clock reading at the last `set`, or None."""
        return self._set_at

    def remaining_ttl(self) -> float:
        """Seconds until expiry; 0 when empty or expired."""
        if self._set_at is None:
            return 0.0
        return max(0.0, self.ttl_seconds - (self._clock() - self._set_at))
