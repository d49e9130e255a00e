"""
Per-IP sliding window rate limiting for comment submissions.

The ledger maps a client IP to the timestamps of its recent accepted
requests. A background sweep prunes the whole ledger once per window so
idle IPs do not accumulate.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class SlidingWindowRateLimiter:
    """
    Sliding window counter keyed by client IP.

    Allows at most `max_requests` accepted requests per IP within any
    `window_seconds` interval. A `max_requests` of 0 disables limiting.

    Usage:
        limiter = SlidingWindowRateLimiter(window_seconds=60, max_requests=5)
        if not limiter.allow("203.0.113.7"):
            reject()
    """

    window_seconds: float
    max_requests: int
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    _entries: dict[str, deque[float]] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def allow(self, ip: str) -> bool:
        """
        Check whether the given IP is within the rate limit.

        Rejected requests are not recorded, so a client that keeps
        hammering is let back in as soon as its oldest accepted request
        leaves the window.

        Returns:
            True if the request is allowed
        """
        if not self.enabled:
            return True

        with self._lock:
            now = self.clock()
            timestamps = self._entries.setdefault(ip, deque())
            self._prune(timestamps, now - self.window_seconds)

            if len(timestamps) >= self.max_requests:
                logger.info("Rate limit exceeded for %s", ip)
                return False

            timestamps.append(now)
            return True

    def sweep(self) -> int:
        """
        Prune every IP and drop those with no timestamps left.

        Returns:
            Number of IP entries removed
        """
        with self._lock:
            cutoff = self.clock() - self.window_seconds
            removed = 0
            for ip in list(self._entries):
                timestamps = self._entries[ip]
                self._prune(timestamps, cutoff)
                if not timestamps:
                    del self._entries[ip]
                    removed += 1
            return removed

    def tracked_ips(self) -> int:
        with self._lock:
            return len(self._entries)

    async def run_sweeper(self) -> None:
        """Sweep the ledger once per window until cancelled."""
        if not self.enabled or self.window_seconds <= 0:
            return
        while True:
            await asyncio.sleep(self.window_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("Rate limit sweep removed %d idle IPs", removed)

    @staticmethod
    def _prune(timestamps: deque[float], cutoff: float) -> None:
        # Timestamps are appended in clock order, so expired ones sit at the left
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()
