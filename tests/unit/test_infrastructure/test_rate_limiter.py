"""Unit tests for RateGovernor."""

import random
from unittest.mock import AsyncMock

import pytest

from portal_crawler.infrastructure.rate_limiter import (
    RateGovernor,
    RateGovernorConfig,
)


class TestRateGovernorConfig:
    """Tests for RateGovernorConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = RateGovernorConfig()

        assert config.base_delay == 3.0
        assert config.jitter == 1.0


class TestRateGovernor:
    """Tests for RateGovernor."""

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    def test_delay_within_jitter_bounds(self):
        governor = RateGovernor(RateGovernorConfig(base_delay=2.0, jitter=0.5), rng=random.Random(7))

        delays = [governor.next_delay() for _ in range(200)]

        assert all(2.0 <= d <= 2.5 for d in delays)
        assert len(set(delays)) > 1

    def test_no_jitter_is_exact(self):
        governor = RateGovernor(RateGovernorConfig(base_delay=1.5, jitter=0))

        assert governor.next_delay() == 1.5

    def test_negative_base_clamped(self):
        governor = RateGovernor(RateGovernorConfig(jitter=0))

        assert governor.next_delay(-4) == 0.0

    @pytest.mark.asyncio
    async def test_wait_sleeps_and_returns_delay(self, sleep):
        governor = RateGovernor(RateGovernorConfig(base_delay=3.0, jitter=1.0), sleep=sleep, rng=random.Random(1))

        delay = await governor.wait()

        sleep.assert_awaited_once_with(delay)
        assert 3.0 <= delay <= 4.0

    @pytest.mark.asyncio
    async def test_override_base_delay(self, sleep):
        governor = RateGovernor(RateGovernorConfig(base_delay=3.0, jitter=0), sleep=sleep)

        assert await governor.wait(0.25) == 0.25
        sleep.assert_awaited_once_with(0.25)

    @pytest.mark.asyncio
    async def test_zero_delay_does_not_sleep(self, sleep):
        governor = RateGovernor(RateGovernorConfig(base_delay=0, jitter=0), sleep=sleep)

        assert await governor.wait() == 0.0
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stats(self, sleep):
        governor = RateGovernor(RateGovernorConfig(base_delay=1.0, jitter=0), sleep=sleep)

        await governor.wait()
        await governor.wait(2.0)

        assert governor.get_stats() == {"total_waits": 2, "total_wait_time": 3.0}
