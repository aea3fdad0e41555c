"""
Per-provider rate limiter and request serializer

Each courier adapter owns one ProviderRateLimiter. All outbound calls from
that adapter pass through slot(), which admits them one at a time in
submission order (asyncio.Lock wakes waiters FIFO). Inside the slot every
transport attempt calls wait_for_turn() before sending and record_request()
afterwards, whatever the outcome.

Admission:
1. Window older than time_window -> reset count and window start.
2. Count at max_requests -> sleep out the rest of the window, then reset.
3. Keep at least time_window / max_requests between consecutive requests.

State is in-process only. Replicas of the service each get their own
budget, so N replicas can send N times the configured volume upstream.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Request budget for one provider."""
    max_requests: int = 30        # Requests per window
    time_window: float = 60.0     # Window length in seconds

    @property
    def min_interval(self) -> float:
        """Minimum spacing between two requests."""
        return self.time_window / self.max_requests


class ProviderRateLimiter:
    """
    Sliding-window counter plus minimum spacing for a single provider.

    clock and sleep are injectable so tests can drive time deterministically.
    """

    def __init__(
        self,
        name: str,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._queue = asyncio.Lock()

        self.request_count = 0
        self.window_start = clock()
        self.last_request_time: Optional[float] = None

    @asynccontextmanager
    async def slot(self):
        """Hold the provider queue for one logical request (all its retries)."""
        async with self._queue:
            yield self

    async def wait_for_turn(self) -> None:
        """Block until the next request may be sent."""
        cfg = self.config
        now = self._clock()

        if now - self.window_start > cfg.time_window:
            self.request_count = 0
            self.window_start = now

        if self.request_count >= cfg.max_requests:
            wait_time = cfg.time_window - (now - self.window_start)
            if wait_time > 0:
                logger.warning(
                    f"[RATE_LIMIT] {self.name}: {self.request_count}/{cfg.max_requests} "
                    f"used, waiting {wait_time:.2f}s for window reset"
                )
                await self._sleep(wait_time)
            now = self._clock()
            self.request_count = 0
            self.window_start = now

        if self.last_request_time is not None:
            elapsed = now - self.last_request_time
            if elapsed < cfg.min_interval:
                wait_time = cfg.min_interval - elapsed
                logger.debug(f"[RATE_LIMIT] {self.name}: Throttling {wait_time:.2f}s (min interval)")
                await self._sleep(wait_time)

    def record_request(self) -> None:
        """Count a completed transport call against the window."""
        self.request_count += 1
        self.last_request_time = self._clock()

    def get_status(self) -> Dict[str, Any]:
        """Current limiter state for diagnostics."""
        now = self._clock()
        return {
            "provider": self.name,
            "requests_in_window": self.request_count,
            "max_requests": self.config.max_requests,
            "window_seconds": self.config.time_window,
            "window_elapsed": round(now - self.window_start, 3),
            "queued": self._queue.locked(),
        }
