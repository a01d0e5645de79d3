"""Rate-limit coordinator shared by every GitHub request."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from devpulse.config import RateLimitConfig
from devpulse.models import ResponseMeta

logger = logging.getLogger(__name__)


class RateLimiter:
    """Waits for the rate-limit window to reset when remaining calls run low.

    The sleep function, clock and jitter source are injectable so tests can
    simulate reset times without sleeping.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        jitter: Callable[[], float] | None = None,
    ) -> None:
        self._config = config if config is not None else RateLimitConfig()
        self._sleep = sleep
        self._clock = clock
        self._jitter = jitter if jitter is not None else self._random_jitter

    def _random_jitter(self) -> float:
        return random.uniform(0, self._config.max_jitter_ms) / 1000.0

    def delay_for(self, meta: ResponseMeta) -> float:
        """Seconds to wait before the next request; 0 when no wait is needed."""
        if meta.rate_remaining is None or meta.rate_remaining > self._config.threshold:
            return 0.0
        if meta.rate_reset_at is None:
            return 0.0
        remaining = (meta.rate_reset_at - self._clock()).total_seconds()
        if remaining <= 0:
            return 0.0
        return remaining + self._jitter()

    async def wait(self, meta: ResponseMeta) -> None:
        delay = self.delay_for(meta)
        if delay <= 0:
            return
        logger.info(
            "Rate limit low (%s/%s remaining), sleeping %.1fs until %s",
            meta.rate_remaining,
            meta.rate_limit,
            delay,
            meta.rate_reset_at.strftime("%H:%M:%S") if meta.rate_reset_at else "?",
        )
        await self._sleep(delay)
