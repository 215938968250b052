"""Sliding window rate limiter for outbound API requests.

Two independent throttles guard every dispatch:
- a burst cap: at most `requests_per_window` requests inside the trailing
  `window_ms`
- a spacing floor: at least `min_delay_ms` between two consecutive dispatches

Admission runs under an asyncio.Lock, so callers sharing one limiter are
admitted one at a time. The admitted slot stays reserved while the request
is in flight: it becomes a recorded timestamp on success and is released
on failure. Reserved slots count toward the window.
"""

import asyncio
import bisect
import time
from collections.abc import Awaitable, Callable

from src.logging.audit import get_audit_logger

# Extra wait past the moment the oldest request leaves the window
WINDOW_BUFFER_MS = 100


class SlidingWindowRateLimiter:
    """Process-local limiter for one remote API account."""

    def __init__(
        self,
        requests_per_window: int = 20,
        window_ms: int = 60000,
        min_delay_ms: int = 1500,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_window < 1:
            raise ValueError("requests_per_window must be at least 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if min_delay_ms < 0:
            raise ValueError("min_delay_ms must not be negative")

        self.requests_per_window = requests_per_window
        self.window_ms = window_ms
        self.min_delay_ms = min_delay_ms

        # Monotonic clock readings in seconds, oldest first
        self.request_timestamps: list[float] = []
        self.last_request_time: float | None = None
        self._in_flight: list[float] = []

        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def occupancy(self) -> int:
        """Recorded plus in-flight requests currently inside the window."""
        return len(self.request_timestamps) + len(self._in_flight)

    def _prune(self, now: float) -> None:
        window_start = now - self.window_ms / 1000
        del self.request_timestamps[:bisect.bisect_right(self.request_timestamps, window_start)]
        del self._in_flight[:bisect.bisect_right(self._in_flight, window_start)]

    def _oldest(self) -> float:
        candidates = [ts[0] for ts in (self.request_timestamps, self._in_flight) if ts]
        return min(candidates)

    async def enforce_rate_limit(self) -> float:
        """Wait until a request may be dispatched and reserve its slot.

        Returns the reserved slot (the dispatch instant). Pass it to
        `record_successful_request` or `release` once the attempt resolves.
        """
        logger = get_audit_logger()

        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if self.occupancy < self.requests_per_window:
                    break

                wait_ms = self.window_ms - (now - self._oldest()) * 1000 + WINDOW_BUFFER_MS
                logger.debug(
                    "Rate limit window full, waiting",
                    extra={"audit_data": {
                        "wait_ms": round(wait_ms, 1),
                        "requests_in_window": self.occupancy,
                        "requests_per_window": self.requests_per_window,
                    }},
                )
                await self._sleep(wait_ms / 1000)

            if self.last_request_time is not None:
                since_last_ms = (self._clock() - self.last_request_time) * 1000
                if since_last_ms < self.min_delay_ms:
                    await self._sleep((self.min_delay_ms - since_last_ms) / 1000)

            slot = max(self._clock(), self.last_request_time or 0.0)
            self._in_flight.append(slot)
            self.last_request_time = slot
            return slot

    def record_successful_request(self, slot: float) -> None:
        """Turn a reserved slot into a recorded request timestamp."""
        self._discard_in_flight(slot)
        bisect.insort(self.request_timestamps, slot)

    def release(self, slot: float) -> None:
        """Drop the reservation of an attempt that failed."""
        self._discard_in_flight(slot)

    def _discard_in_flight(self, slot: float) -> None:
        # The slot may already have aged out of the window
        if slot in self._in_flight:
            self._in_flight.remove(slot)

    def reset(self) -> None:
        """Clear all limiter state. Useful for testing."""
        self.request_timestamps.clear()
        self._in_flight.clear()
        self.last_request_time = None
