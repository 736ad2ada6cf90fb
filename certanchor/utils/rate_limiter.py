"""
In-memory token bucket rate limiter for the public verification endpoints.
For multi-instance deployments, consider Redis/Memorystore.
"""
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, Tuple


@dataclass
class TokenBucket:
    """Token bucket for one client key."""
    tokens: float
    last_update: float


@dataclass
class RateLimiter:
    """
    Thread-safe token bucket limiter keyed by an arbitrary string (client IP).

    `clock` is injectable so tests can advance time without sleeping.
    """
    max_requests: int
    window_seconds: int
    clock: Callable[[], float] = time.monotonic
    idle_ttl_seconds: int = 3600
    _buckets: Dict[str, TokenBucket] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _last_cleanup: float = field(default=0.0, init=False, repr=False)

    @property
    def refill_rate(self) -> float:
        """Tokens regained per second."""
        return self.max_requests / self.window_seconds

    def _take(self, key: str, now: float) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(tokens=float(self.max_requests), last_update=now)
            self._buckets[key] = bucket
            return bucket

        elapsed = max(0.0, now - bucket.last_update)
        bucket.tokens = min(float(self.max_requests), bucket.tokens + elapsed * self.refill_rate)
        bucket.last_update = now
        return bucket

    def _evict_idle(self, now: float) -> None:
        if now - self._last_cleanup < self.idle_ttl_seconds:
            return
        cutoff = now - self.idle_ttl_seconds
        for key in [k for k, b in self._buckets.items() if b.last_update < cutoff]:
            del self._buckets[key]
        self._last_cleanup = now

    def is_allowed(self, key: str) -> Tuple[bool, int]:
        """
        Consume one token for `key`.

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        with self._lock:
            now = self.clock()
            self._evict_idle(now)
            bucket = self._take(key, now)

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True, 0

            retry_after = int((1 - bucket.tokens) / self.refill_rate) + 1
            return False, retry_after

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)


@lru_cache()
def get_verify_rate_limiter() -> RateLimiter:
    """Limiter shared by all verification endpoints, sized from settings."""
    from certanchor.config import get_settings

    settings = get_settings()
    return RateLimiter(
        max_requests=settings.verify_rate_limit_requests,
        window_seconds=settings.verify_rate_limit_window_seconds,
    )
