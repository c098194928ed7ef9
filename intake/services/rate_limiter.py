# intake/services/rate_limiter.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import redis

from intake.core.config import (
    RATE_LIMIT_BACKEND,
    RATE_LIMIT_MAX,
    RATE_LIMIT_WINDOW_SEC,
    REDIS_URL,
)
logger = logging.getLogger("intake.rate_limit")


class RateLimitStore(Protocol):
    def hit(self, key: str, *, window: float, limit: int, now: float) -> bool:
        """Atomically count one call for `key`; return False when over the limit."""
        ...


@dataclass
class _Window:
    count: int
    window_start: float


class MemoryRateLimitStore:
    """
    Fixed-window counters in a process-local dict.

    Only correct for a single process; run several workers behind
    `RedisRateLimitStore` instead.
    """

    SWEEP_EVERY = 500  # calls between stale-entry sweeps

    def __init__(self) -> None:
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._calls = 0

    def hit(self, key: str, *, window: float, limit: int, now: float) -> bool:
        with self._lock:
            self._calls += 1
            if self._calls % self.SWEEP_EVERY == 0:
                self._sweep(window, now)

            rec = self._windows.get(key)
            if rec is None or now - rec.window_start >= window:
                self._windows[key] = _Window(count=1, window_start=now)
                return True
            if rec.count >= limit:
                return False
            rec.count += 1
            return True

    def _sweep(self, window: float, now: float) -> None:
        stale = [k for k, w in self._windows.items() if now - w.window_start >= window]
        for k in stale:
            self._windows.pop(k, None)
        if stale:
            logger.debug("rate_limit: swept %d stale windows", len(stale))

    def snapshot(self, key: str) -> Optional[_Window]:
        with self._lock:
            rec = self._windows.get(key)
            return _Window(rec.count, rec.window_start) if rec else None

    def __len__(self) -> int:
        return len(self._windows)


# KEYS[1]=counter key, ARGV[1]=window ms, ARGV[2]=limit
_REDIS_HIT = """
local cur = redis.call('GET', KEYS[1])
if not cur then
  redis.call('SET', KEYS[1], 1, 'PX', ARGV[1])
  return 1
end
if tonumber(cur) >= tonumber(ARGV[2]) then
  return 0
end
redis.call('INCR', KEYS[1])
return 1
"""


class RedisRateLimitStore:
    """Shared counters for multi-process deployments; the key TTL is the window."""

    def __init__(self, client=None, *, url: str = REDIS_URL, prefix: str = "intake:rl:") -> None:
        if client is None:
            client = redis.Redis.from_url(url)
        self._client = client
        self._prefix = prefix
        self._script = client.register_script(_REDIS_HIT)

    def hit(self, key: str, *, window: float, limit: int, now: float) -> bool:
        # `now` is implied by the server clock through the key expiry
        res = self._script(keys=[self._prefix + key], args=[int(window * 1000), limit])
        return bool(int(res))


class RateLimiter:
    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        *,
        window: float = RATE_LIMIT_WINDOW_SEC,
        limit: int = RATE_LIMIT_MAX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else MemoryRateLimitStore()
        self.window = window
        self.limit = limit
        self._clock = clock

    def allow(self, fingerprint: str) -> bool:
        allowed = self.store.hit(fingerprint, window=self.window, limit=self.limit, now=self._clock())
        if not allowed:
            # fingerprint is already a digest; safe to log a prefix
            logger.info("rate_limit: denied fp=%s", fingerprint[:12])
        return allowed


_default: Optional[RateLimiter] = None
_default_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    global _default
    with _default_lock:
        if _default is None:
            if RATE_LIMIT_BACKEND == "redis":
                store: RateLimitStore = RedisRateLimitStore()
            else:
                store = MemoryRateLimitStore()
            _default = RateLimiter(store)
            logger.info(
                "rate_limit: backend=%s window=%ss max=%d",
                RATE_LIMIT_BACKEND, RATE_LIMIT_WINDOW_SEC, RATE_LIMIT_MAX,
            )
        return _default
