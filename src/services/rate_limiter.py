"""
Sliding-window rate limiting of login attempts per client.

The limiter keeps, per client key, the timestamps of admitted attempts inside
the trailing window. A check prunes expired timestamps, rejects when the
remaining count has reached the cap and otherwise records the attempt. Check
and record happen atomically per key so concurrent requests from one client
cannot both take the last slot.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, List, Optional
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.clients.base import StorageError

logger = logging.getLogger(__name__)


class AttemptTracker(ABC):
    """Storage of attempt timestamps keyed by client."""

    @abstractmethod
    async def check_and_record(self, key: str, now: float, window_seconds: float, max_attempts: int) -> bool:
        """Prune, compare against the cap and record ``now`` if admitted, atomically."""

    @abstractmethod
    async def oldest_attempt(self, key: str, now: float, window_seconds: float) -> Optional[float]:
        """Return the oldest live timestamp for ``key``, if any."""

    async def close(self) -> None:
        pass


class InMemoryAttemptTracker(AttemptTracker):
    """
    Per-process attempt tracker.

    The number of tracked keys is bounded: the least recently seen key is
    evicted past ``max_keys``, and keys whose attempts have all expired are
    swept every ``sweep_interval`` checks.
    """

    def __init__(self, max_keys: int = 10000, sweep_interval: int = 1000):
        self.max_keys = max_keys
        self.sweep_interval = sweep_interval
        self._attempts: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._checks_since_sweep = 0

    @staticmethod
    def _prune(timestamps: List[float], now: float, window_seconds: float) -> List[float]:
        return [t for t in timestamps if now - t < window_seconds]

    async def check_and_record(self, key: str, now: float, window_seconds: float, max_attempts: int) -> bool:
        with self._lock:
            recent = self._prune(self._attempts.get(key, []), now, window_seconds)

            if len(recent) >= max_attempts:
                self._attempts[key] = recent
                self._attempts.move_to_end(key)
                allowed = False
            else:
                recent.append(now)
                self._attempts[key] = recent
                self._attempts.move_to_end(key)
                allowed = True

            while len(self._attempts) > self.max_keys:
                evicted, _ = self._attempts.popitem(last=False)
                logger.debug(f"Evicted attempt history for {evicted}")

            self._checks_since_sweep += 1
            if self._checks_since_sweep >= self.sweep_interval:
                self._sweep_locked(now, window_seconds)

            return allowed

    async def oldest_attempt(self, key: str, now: float, window_seconds: float) -> Optional[float]:
        with self._lock:
            recent = self._prune(self._attempts.get(key, []), now, window_seconds)
            return recent[0] if recent else None

    def sweep(self, now: float, window_seconds: float) -> int:
        """Drop keys with no live attempts. Returns the number of keys removed."""
        with self._lock:
            return self._sweep_locked(now, window_seconds)

    def _sweep_locked(self, now: float, window_seconds: float) -> int:
        self._checks_since_sweep = 0
        expired = [
            key for key, timestamps in self._attempts.items()
            if not self._prune(timestamps, now, window_seconds)
        ]
        for key in expired:
            del self._attempts[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired attempt histories")
        return len(expired)

    def __len__(self) -> int:
        return len(self._attempts)


# Prune, count and record in one round trip so the check is atomic per key.
_CHECK_AND_RECORD_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local max_attempts = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
if redis.call('ZCARD', key) >= max_attempts then
    return 0
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('EXPIRE', key, math.ceil(window) + 60)
return 1
"""


class RedisAttemptTracker(AttemptTracker):
    """
    Attempt tracker shared across service instances.

    Each client key is a sorted set of attempt timestamps scored by time.
    """

    def __init__(self, redis_url: str, key_prefix: str = "face_auth:login_attempts:", client=None):
        self.key_prefix = key_prefix
        self._redis = client if client is not None else redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=1.0,
            socket_connect_timeout=1.0,
        )
        self._check_and_record = self._redis.register_script(_CHECK_AND_RECORD_SCRIPT)
        logger.info("Redis attempt tracker initialized")

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def check_and_record(self, key: str, now: float, window_seconds: float, max_attempts: int) -> bool:
        try:
            result = await self._check_and_record(
                keys=[self._key(key)],
                args=[now, window_seconds, max_attempts, f"{now}:{uuid4().hex}"]
            )
        except RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            raise StorageError(f"Attempt tracker unavailable: {e}") from e
        return int(result) == 1

    async def oldest_attempt(self, key: str, now: float, window_seconds: float) -> Optional[float]:
        try:
            oldest = await self._redis.zrangebyscore(
                self._key(key), f"({now - window_seconds}", "+inf", start=0, num=1, withscores=True
            )
        except RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            raise StorageError(f"Attempt tracker unavailable: {e}") from e
        if not oldest:
            return None
        return float(oldest[0][1])

    async def close(self) -> None:
        await self._redis.aclose()


class RateLimiter:
    """Caps login attempts per client key within a trailing time window."""

    def __init__(
        self,
        tracker: Optional[AttemptTracker] = None,
        window_seconds: float = 300,
        max_attempts: int = 10,
        clock: Callable[[], float] = time.time
    ):
        if window_seconds <= 0:
            raise ValueError(f"Window must be positive, got: {window_seconds}")
        if max_attempts < 1:
            raise ValueError(f"Max attempts must be at least 1, got: {max_attempts}")
        self.tracker = tracker if tracker is not None else InMemoryAttemptTracker()
        self.window_seconds = window_seconds
        self.max_attempts = max_attempts
        self.clock = clock

    @property
    def window_minutes(self) -> int:
        return max(1, math.ceil(self.window_seconds / 60))

    async def check_and_record(self, client_key: str, now: Optional[float] = None) -> bool:
        """
        Admit or reject an attempt from ``client_key``.

        Admitted attempts are recorded whatever the outcome of the login that
        follows. Rejected attempts are not recorded, so a blocked client is
        admitted again as soon as its oldest attempt leaves the window.
        """
        now = self.clock() if now is None else now
        allowed = await self.tracker.check_and_record(client_key, now, self.window_seconds, self.max_attempts)
        if not allowed:
            logger.warning(f"Rate limit exceeded for client {client_key}")
        return allowed

    async def retry_after(self, client_key: str, now: Optional[float] = None) -> float:
        """Seconds until the oldest live attempt of ``client_key`` leaves the window."""
        now = self.clock() if now is None else now
        oldest = await self.tracker.oldest_attempt(client_key, now, self.window_seconds)
        if oldest is None:
            return 0.0
        return max(0.0, oldest + self.window_seconds - now)

    async def close(self) -> None:
        await self.tracker.close()
