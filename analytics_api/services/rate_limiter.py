"""
Visitor Analytics: Fixed-window rate limiter.

Per-key (client IP) request counter. The first request of a window sets the
count to 1; later requests increment it until the limit is reached, after
which requests are rejected until the window resets. Rejected requests do
not increment the counter.

State is process-local: a multi-process deployment grants each process its
own quota unless the counters move to a shared store.
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger("analytics.rate_limit")


@dataclass
class RateLimitRecord:
    count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """Fixed-window counter keyed by client IP. Construct once per process."""

    def __init__(
        self,
        limit: int = 100,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it may proceed."""
        now = self._clock()
        with self._lock:
            record = self._records.get(key)

            if record is None or now >= record.window_reset_at:
                if self.limit <= 0:
                    return RateLimitDecision(False, 0, math.ceil(self.window_seconds))
                self._records[key] = RateLimitRecord(
                    count=1, window_reset_at=now + self.window_seconds
                )
                return RateLimitDecision(True, self.limit - 1)

            if record.count >= self.limit:
                retry_after = max(1, math.ceil(record.window_reset_at - now))
                return RateLimitDecision(False, 0, retry_after)

            record.count += 1
            return RateLimitDecision(True, self.limit - record.count)

    def sweep(self) -> int:
        """Drop records whose window has expired. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, r in self._records.items() if now >= r.window_reset_at]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug("Swept %d expired rate-limit records", len(expired))
        return len(expired)

    @property
    def tracked_keys(self) -> int:
        """Number of keys currently held in memory."""
        return len(self._records)


async def periodic_sweep(limiter: RateLimiter, interval: int = 300) -> None:
    """Sweep expired records every ``interval`` seconds until cancelled."""
    while True:
        try:
            await asyncio.sleep(interval)
            limiter.sweep()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Rate-limit sweep error: %s", e)
