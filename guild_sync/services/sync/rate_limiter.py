"""
Per-provider request spacing.

Every outbound provider request goes through ``acquire(source)``, which
suspends the caller until the provider's minimum interval has elapsed since
the previous grant. Grants to one source are strictly serialized; different
sources do not block each other. The limiter never denies, it only delays.

When a provider answers 429 the adapter calls ``on_rate_limit`` with the
server's Retry-After so the next grant is pushed out accordingly.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional

from guild_sync.core import metrics

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval limiter keyed by provider source id."""

    def __init__(
        self,
        intervals: Dict[str, float],
        default_interval: float = 1.0,
        max_retry_after: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            intervals: Minimum seconds between grants, per source id
            default_interval: Interval for sources not listed in ``intervals``
            max_retry_after: Upper bound applied to provider Retry-After values
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep (injectable for tests)
        """
        self.intervals = dict(intervals)
        self.default_interval = default_interval
        self.max_retry_after = max_retry_after
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_grant: Dict[str, float] = {}
        self._not_before: Dict[str, float] = {}

    def interval_for(self, source: str) -> float:
        return self.intervals.get(source, self.default_interval)

    def _lock_for(self, source: str) -> asyncio.Lock:
        lock = self._locks.get(source)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[source] = lock
        return lock

    async def acquire(self, source: str) -> float:
        """
        Wait for the next grant to ``source``.

        Returns:
            Seconds spent waiting
        """
        async with self._lock_for(source):
            now = self._clock()
            ready_at = now

            last = self._last_grant.get(source)
            if last is not None:
                ready_at = max(ready_at, last + self.interval_for(source))

            not_before = self._not_before.pop(source, None)
            if not_before is not None:
                ready_at = max(ready_at, not_before)

            waited = max(0.0, ready_at - now)
            if waited > 0:
                await self._sleep(waited)

            self._last_grant[source] = self._clock()
            metrics.rate_limiter_wait_seconds.labels(source=source).observe(waited)
            return waited

    def on_rate_limit(self, source: str, retry_after: Optional[float] = None):
        """
        Push the next grant for ``source`` out after a provider 429.

        Without a Retry-After the next grant waits one extra interval.
        """
        delay = retry_after if retry_after else self.interval_for(source)
        delay = min(delay, self.max_retry_after)
        not_before = self._clock() + delay
        self._not_before[source] = max(self._not_before.get(source, 0.0), not_before)
        logger.warning(f"⏳ Rate limited by {source}, next request in {delay:.1f}s")

    def reset(self, source: Optional[str] = None):
        """Forget grant history for one source, or for all of them."""
        if source is None:
            self._last_grant.clear()
            self._not_before.clear()
        else:
            self._last_grant.pop(source, None)
            self._not_before.pop(source, None)
