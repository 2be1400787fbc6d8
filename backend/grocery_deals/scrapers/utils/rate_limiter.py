"""Fixed-window request governor for source APIs."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class FixedWindowRateLimiter:
    """Admits at most ``max_requests`` calls per ``window_seconds`` window.

    When the window is full, ``acquire()`` suspends the calling task until the
    window resets. Nothing is raised; callers simply wait. Clock and sleep are
    injectable so tests can drive the window without real delays.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the limiter.

        Args:
            max_requests: Calls admitted per window
            window_seconds: Window length in seconds
            clock: Monotonic clock returning seconds
            sleep: Coroutine used to wait for the window to reset
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.request_count = 0
        self.window_start = clock()
        self.window_started_at = datetime.now(timezone.utc)

    def _reset_window(self) -> None:
        self.request_count = 0
        self.window_start = self._clock()
        self.window_started_at = datetime.now(timezone.utc)

    async def acquire(self) -> None:
        """Take one slot in the current window, waiting for the next one if full."""
        async with self._lock:
            now = self._clock()
            if now - self.window_start >= self.window_seconds:
                self._reset_window()

            if self.request_count >= self.max_requests:
                wait_seconds = self.window_seconds - (now - self.window_start)
                logger.info(
                    "rate_limit_reached",
                    wait_seconds=round(wait_seconds, 3),
                    max_requests=self.max_requests,
                )
                await self._sleep(wait_seconds)
                self._reset_window()

            self.request_count += 1

    def status(self) -> dict:
        """Snapshot of the current window."""
        return {
            "request_count": self.request_count,
            "window_start": self.window_started_at,
            "max_requests": self.max_requests,
        }
