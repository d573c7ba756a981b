"""
Request pacing.

Spaces out page fetches with a base delay plus bounded random jitter so the
crawler does not hit the portals at a fixed cadence. Pacing is independent
of the fetch escalator's own retry pauses.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateGovernorConfig:
    """Configuration for the rate governor."""
    # Delay used when the caller does not pass one (seconds)
    base_delay: float = 3.0

    # Upper bound of the uniform jitter added to every wait (seconds)
    jitter: float = 1.0


class RateGovernor:
    """
    Sleeps between requests.

    The sleep function and random source are injectable so tests can run
    without real delays.
    """

    def __init__(
        self,
        config: Optional[RateGovernorConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or RateGovernorConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()

        # Statistics
        self._total_waits = 0
        self._total_wait_time = 0.0

    def next_delay(self, base_delay: Optional[float] = None) -> float:
        base = self.config.base_delay if base_delay is None else base_delay
        jitter = self._rng.uniform(0, self.config.jitter) if self.config.jitter > 0 else 0.0
        return max(0.0, base) + jitter

    async def wait(self, base_delay: Optional[float] = None) -> float:
        """
        Wait before the next request.

        Args:
            base_delay: Base delay in seconds (defaults to config.base_delay)

        Returns:
            Actual delay applied (seconds)
        """
        delay = self.next_delay(base_delay)
        if delay > 0:
            logger.debug(f"Pacing: waiting {delay:.2f}s")
            await self._sleep(delay)

        self._total_waits += 1
        self._total_wait_time += delay
        return delay

    def get_stats(self) -> dict:
        return {
            "total_waits": self._total_waits,
            "total_wait_time": self._total_wait_time,
        }
