"""In-memory fixed-window rate limiter keyed by client identifier.

Counters live in a dict keyed by (client_key, window_bucket), where the
bucket is the current timestamp truncated to the window length. Buckets for
windows that have passed are swept every SWEEP_INTERVAL checks and whenever
the window rolls over, so memory stays bounded by the number of clients
active in the current minute.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    count: int = 0
    retry_after: Optional[float] = None  # seconds until the window rolls over


class FixedWindowRateLimiter:
    """Per-client request counter over fixed one-minute windows."""

    SWEEP_INTERVAL = 1000  # sweep stale buckets every N checks

    def __init__(
        self,
        limit_per_minute: int,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.limit_per_minute = limit_per_minute
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: Dict[Tuple[str, int], int] = {}
        self._lock = threading.Lock()
        self._check_count = 0
        self._current_window = -1

    @property
    def enabled(self) -> bool:
        return self.limit_per_minute > 0

    def check(self, client_key: str) -> RateLimitResult:
        """Count a request for client_key and report whether it is within the limit."""
        if not self.enabled:
            return RateLimitResult(allowed=True)

        now = self._clock()
        window = int(now // self.window_seconds)

        with self._lock:
            self._check_count += 1
            if window != self._current_window or self._check_count % self.SWEEP_INTERVAL == 0:
                self._current_window = window
                self._sweep_stale(window)

            bucket = (client_key, window)
            count = self._buckets.get(bucket, 0) + 1
            self._buckets[bucket] = count

        if count > self.limit_per_minute:
            retry_after = (window + 1) * self.window_seconds - now
            logger.warning(
                event="rate_limit_exceeded",
                client=client_key,
                count=count,
                limit=self.limit_per_minute,
            )
            return RateLimitResult(allowed=False, count=count, retry_after=max(0.0, retry_after))

        return RateLimitResult(allowed=True, count=count)

    def _sweep_stale(self, window: int) -> None:
        """Drop buckets of past windows. Must hold _lock."""
        stale_keys: List[Tuple[str, int]] = [key for key in self._buckets if key[1] < window]
        for key in stale_keys:
            del self._buckets[key]

    def bucket_count(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._check_count = 0
            self._current_window = -1
