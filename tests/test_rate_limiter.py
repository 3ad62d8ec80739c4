"""
Tests for login rate limiting.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.clients.base import StorageError
from src.services.rate_limiter import (
    InMemoryAttemptTracker,
    RateLimiter,
    RedisAttemptTracker
)

WINDOW = 300
MAX_ATTEMPTS = 10


class TestRateLimiter:
    """Test cases for RateLimiter over the in-memory tracker."""

    @pytest.fixture
    def limiter(self):
        return RateLimiter(
            tracker=InMemoryAttemptTracker(),
            window_seconds=WINDOW,
            max_attempts=MAX_ATTEMPTS
        )

    def test_init_validation(self):
        with pytest.raises(ValueError, match="Window must be positive"):
            RateLimiter(window_seconds=0)
        with pytest.raises(ValueError, match="Max attempts must be at least 1"):
            RateLimiter(max_attempts=0)

    def test_window_minutes(self, limiter):
        assert limiter.window_minutes == 5
        assert RateLimiter(window_seconds=90).window_minutes == 2
        assert RateLimiter(window_seconds=10).window_minutes == 1

    @pytest.mark.asyncio
    async def test_eleventh_attempt_in_window_rejected(self, limiter):
        for i in range(MAX_ATTEMPTS):
            assert await limiter.check_and_record("10.0.0.1", now=1000.0 + i) is True

        assert await limiter.check_and_record("10.0.0.1", now=1000.0 + MAX_ATTEMPTS) is False

    @pytest.mark.asyncio
    async def test_admitted_again_after_window_elapses_from_earliest(self, limiter):
        for i in range(MAX_ATTEMPTS):
            await limiter.check_and_record("10.0.0.1", now=1000.0 + i)

        # Still inside the window of the earliest attempt
        assert await limiter.check_and_record("10.0.0.1", now=1000.0 + WINDOW - 1) is False
        # The earliest attempt has fully aged out
        assert await limiter.check_and_record("10.0.0.1", now=1000.0 + WINDOW) is True
        # Only one slot was freed
        assert await limiter.check_and_record("10.0.0.1", now=1000.0 + WINDOW) is False

    @pytest.mark.asyncio
    async def test_rejected_attempts_do_not_extend_lockout(self, limiter):
        for i in range(MAX_ATTEMPTS):
            await limiter.check_and_record("10.0.0.1", now=1000.0 + i)

        # Hammering while blocked must not push the unblock time further out
        for t in range(20, WINDOW, 20):
            assert await limiter.check_and_record("10.0.0.1", now=1000.0 + t) is False

        assert await limiter.check_and_record("10.0.0.1", now=1000.0 + WINDOW + MAX_ATTEMPTS) is True

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, limiter):
        for i in range(MAX_ATTEMPTS):
            await limiter.check_and_record("10.0.0.1", now=1000.0 + i)

        assert await limiter.check_and_record("10.0.0.1", now=1011.0) is False
        assert await limiter.check_and_record("10.0.0.2", now=1011.0) is True

    @pytest.mark.asyncio
    async def test_retry_after(self, limiter):
        assert await limiter.retry_after("10.0.0.1", now=1000.0) == 0.0

        for i in range(MAX_ATTEMPTS):
            await limiter.check_and_record("10.0.0.1", now=1000.0 + i)

        assert await limiter.retry_after("10.0.0.1", now=1100.0) == pytest.approx(200.0)

    @pytest.mark.asyncio
    async def test_uses_clock_when_now_omitted(self):
        clock = Mock(return_value=5000.0)
        limiter = RateLimiter(window_seconds=WINDOW, max_attempts=1, clock=clock)

        assert await limiter.check_and_record("10.0.0.1") is True
        assert await limiter.check_and_record("10.0.0.1") is False

        clock.return_value = 5000.0 + WINDOW
        assert await limiter.check_and_record("10.0.0.1") is True

    @pytest.mark.asyncio
    async def test_concurrent_attempts_admit_exactly_the_cap(self, limiter):
        results = await asyncio.gather(*[
            limiter.check_and_record("10.0.0.1", now=1000.0) for _ in range(25)
        ])

        assert sum(results) == MAX_ATTEMPTS


class TestInMemoryAttemptTracker:
    """Test cases for key bounding in the in-memory tracker."""

    @pytest.mark.asyncio
    async def test_least_recent_key_evicted_past_max_keys(self):
        tracker = InMemoryAttemptTracker(max_keys=2)

        await tracker.check_and_record("a", 1000.0, WINDOW, MAX_ATTEMPTS)
        await tracker.check_and_record("b", 1001.0, WINDOW, MAX_ATTEMPTS)
        await tracker.check_and_record("a", 1002.0, WINDOW, MAX_ATTEMPTS)
        await tracker.check_and_record("c", 1003.0, WINDOW, MAX_ATTEMPTS)

        assert len(tracker) == 2
        assert await tracker.oldest_attempt("b", 1004.0, WINDOW) is None
        assert await tracker.oldest_attempt("a", 1004.0, WINDOW) == 1000.0

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_keys(self):
        tracker = InMemoryAttemptTracker()

        await tracker.check_and_record("old", 1000.0, WINDOW, MAX_ATTEMPTS)
        await tracker.check_and_record("new", 1200.0, WINDOW, MAX_ATTEMPTS)

        removed = tracker.sweep(1000.0 + WINDOW, WINDOW)

        assert removed == 1
        assert len(tracker) == 1

    @pytest.mark.asyncio
    async def test_periodic_sweep(self):
        tracker = InMemoryAttemptTracker(sweep_interval=3)

        await tracker.check_and_record("a", 1000.0, WINDOW, MAX_ATTEMPTS)
        await tracker.check_and_record("b", 1001.0, WINDOW, MAX_ATTEMPTS)
        assert len(tracker) == 2

        # Third check triggers a sweep; a and b have expired by then
        await tracker.check_and_record("c", 2000.0, WINDOW, MAX_ATTEMPTS)

        assert len(tracker) == 1


class TestRedisAttemptTracker:
    """Test cases for the Redis tracker with a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = Mock()
        client.register_script.return_value = AsyncMock(return_value=1)
        client.zrangebyscore = AsyncMock(return_value=[])
        client.aclose = AsyncMock()
        return client

    @pytest.fixture
    def tracker(self, redis_client):
        return RedisAttemptTracker("redis://localhost:6379/0", client=redis_client)

    @pytest.mark.asyncio
    async def test_check_and_record_admitted(self, tracker, redis_client):
        allowed = await tracker.check_and_record("10.0.0.1", 1000.0, WINDOW, MAX_ATTEMPTS)

        assert allowed is True
        script = redis_client.register_script.return_value
        kwargs = script.call_args.kwargs
        assert kwargs["keys"] == ["face_auth:login_attempts:10.0.0.1"]
        assert kwargs["args"][:3] == [1000.0, WINDOW, MAX_ATTEMPTS]

    @pytest.mark.asyncio
    async def test_check_and_record_rejected(self, tracker, redis_client):
        redis_client.register_script.return_value.return_value = 0

        assert await tracker.check_and_record("10.0.0.1", 1000.0, WINDOW, MAX_ATTEMPTS) is False

    @pytest.mark.asyncio
    async def test_redis_error_maps_to_storage_error(self, tracker, redis_client):
        redis_client.register_script.return_value.side_effect = RedisConnectionError("down")

        with pytest.raises(StorageError, match="Attempt tracker unavailable"):
            await tracker.check_and_record("10.0.0.1", 1000.0, WINDOW, MAX_ATTEMPTS)

    @pytest.mark.asyncio
    async def test_oldest_attempt(self, tracker, redis_client):
        redis_client.zrangebyscore.return_value = [("1000.0:abc", 1000.0)]

        assert await tracker.oldest_attempt("10.0.0.1", 1100.0, WINDOW) == 1000.0
        redis_client.zrangebyscore.assert_called_once_with(
            "face_auth:login_attempts:10.0.0.1", f"({1100.0 - WINDOW}", "+inf",
            start=0, num=1, withscores=True
        )

    @pytest.mark.asyncio
    async def test_close(self, tracker, redis_client):
        await tracker.close()

        redis_client.aclose.assert_awaited_once()
