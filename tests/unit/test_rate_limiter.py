"""Unit tests for video_research.rate_limiter."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from video_research.rate_limiter import AdaptiveRateLimiter


class TestInit:
    def test_default_values(self) -> None:
        limiter = AdaptiveRateLimiter()
        assert limiter.base_delay == 0.0
        assert limiter.max_delay == 30.0
        assert limiter.window_seconds == 300.0
        assert limiter.slowdown_error_rate == 0.5
        assert limiter.recovery_error_rate == 0.2


class TestRecordOutcome:
    """record_outcome tracks per-provider error rates."""

    def test_no_history_means_zero_error_rate(self) -> None:
        assert AdaptiveRateLimiter().error_rate("youtube") == 0.0

    def test_error_rate(self) -> None:
        limiter = AdaptiveRateLimiter()
        limiter.record_outcome("youtube", success=True)
        limiter.record_outcome("youtube", success=False)
        assert limiter.error_rate("youtube") == 0.5

    def test_providers_are_independent(self) -> None:
        limiter = AdaptiveRateLimiter()
        for _ in range(3):
            limiter.record_outcome("deepgram", success=False)
        assert limiter.error_rate("youtube") == 0.0
        assert limiter.stats("youtube")["multiplier"] == 1.0

    def test_slows_down_after_repeated_failures(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=1.0, step=2.0)
        for _ in range(3):
            limiter.record_outcome("youtube", success=False)
        assert limiter.stats("youtube")["multiplier"] == 2.0
        assert limiter.current_delay("youtube") == 2.0

    def test_needs_minimum_samples_before_slowing(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=1.0)
        limiter.record_outcome("youtube", success=False)
        limiter.record_outcome("youtube", success=False)
        assert limiter.current_delay("youtube") == 1.0

    def test_recovers_when_errors_subside(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=1.0, step=2.0)
        for _ in range(3):
            limiter.record_outcome("youtube", success=False)
        for _ in range(20):
            limiter.record_outcome("youtube", success=True)
        assert limiter.stats("youtube")["multiplier"] == 1.0

    def test_delay_is_capped(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=1.0, max_delay=3.0, step=2.0)
        for _ in range(10):
            limiter.record_outcome("youtube", success=False)
        assert limiter.current_delay("youtube") == 3.0

    def test_unpaced_provider_backs_off_after_failures(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=0.0, step=2.0)
        assert limiter.current_delay("youtube") == 0.0
        for _ in range(3):
            limiter.record_outcome("youtube", success=False)
        assert limiter.current_delay("youtube") == 1.0


class TestAcquire:
    @pytest.mark.asyncio()
    async def test_first_attempt_does_not_sleep(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=5.0)
        with patch(
            "video_research.rate_limiter.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            await limiter.acquire("youtube")
        sleep.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_back_to_back_attempts_are_spaced(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=5.0)
        with patch(
            "video_research.rate_limiter.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            await limiter.acquire("youtube")
            await limiter.acquire("youtube")
        sleep.assert_awaited_once()
        assert 0 < sleep.await_args.args[0] <= 5.0

    @pytest.mark.asyncio()
    async def test_concurrent_attempts_queue_behind_each_other(self) -> None:
        limiter = AdaptiveRateLimiter(base_delay=5.0)
        with patch(
            "video_research.rate_limiter.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            await asyncio.gather(*(limiter.acquire("youtube") for _ in range(3)))
        waits = sorted(call.args[0] for call in sleep.await_args_list)
        assert waits == [pytest.approx(5.0, abs=0.5), pytest.approx(10.0, abs=0.5)]


class TestReset:
    def test_reset_one_provider(self) -> None:
        limiter = AdaptiveRateLimiter()
        limiter.record_outcome("youtube", success=False)
        limiter.record_outcome("deepgram", success=False)
        limiter.reset("youtube")
        assert limiter.error_rate("youtube") == 0.0
        assert limiter.error_rate("deepgram") == 1.0

    def test_reset_all(self) -> None:
        limiter = AdaptiveRateLimiter()
        limiter.record_outcome("youtube", success=False)
        limiter.reset()
        assert limiter.stats("youtube")["window_size"] == 0
