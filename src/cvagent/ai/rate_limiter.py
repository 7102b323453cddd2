"""Client-side request pacing for the completions endpoint."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Protocol

LOGGER = logging.getLogger(__name__)

# 2 s between requests keeps us at ~30 RPM, the Groq free-tier ceiling.
DEFAULT_MIN_DELAY_SECONDS = 2.0
DEFAULT_BACKOFF_SECONDS = 60.0


class RateLimiter(Protocol):
    """Pacing contract consulted before every outbound request."""

    async def acquire(self) -> None:
        """Suspend until it is safe to issue the next request."""
        ...

    async def report_throttled(self, retry_after_seconds: float | None = None) -> None:
        """Record that the provider rejected the last request for rate limiting."""
        ...


class NoOpRateLimiter:
    """Limiter that never delays; used where throttling is undesirable (tests)."""

    async def acquire(self) -> None:
        return None

    async def report_throttled(self, retry_after_seconds: float | None = None) -> None:
        del retry_after_seconds
        return None


NOOP_RATE_LIMITER: RateLimiter = NoOpRateLimiter()


class MinIntervalRateLimiter:
    """Enforces a minimum interval between requests plus provider backoff windows.

    Both timestamps live behind a single :class:`asyncio.Condition`. ``acquire``
    re-checks the constraints every time it wakes up and stamps the request
    time while still holding the lock, so no two callers can pass on the same
    check. ``report_throttled`` wakes any waiter so the new backoff window is
    honoured before it returns.
    """

    def __init__(
        self,
        min_delay: float = DEFAULT_MIN_DELAY_SECONDS,
        *,
        default_backoff: float = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_delay = max(0.0, float(min_delay))
        self._default_backoff = max(0.0, float(default_backoff))
        self._clock = clock
        self._last_request: float | None = None
        self._backoff_until: float = 0.0
        self._condition: asyncio.Condition | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def min_delay(self) -> float:
        return self._min_delay

    @property
    def last_request(self) -> float | None:
        """Clock reading taken when the most recent ``acquire`` was granted."""

        return self._last_request

    @property
    def backoff_remaining(self) -> float:
        """Seconds left in the current backoff window (0 when none)."""

        return max(0.0, self._backoff_until - self._clock())

    async def acquire(self) -> None:
        condition = self._get_condition()
        async with condition:
            while True:
                wait = self._pending_wait(self._clock())
                if wait <= 0:
                    break
                LOGGER.debug("Rate limiter holding request for %.3fs", wait)
                try:
                    await asyncio.wait_for(condition.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass
            now = self._clock()
            self._last_request = now
            if self._backoff_until and now >= self._backoff_until:
                self._backoff_until = 0.0

    async def report_throttled(self, retry_after_seconds: float | None = None) -> None:
        seconds = self._default_backoff if retry_after_seconds is None else max(0.0, float(retry_after_seconds))
        condition = self._get_condition()
        async with condition:
            self._backoff_until = self._clock() + seconds
            LOGGER.info("Provider throttled requests; backing off for %.1fs", seconds)
            condition.notify_all()

    def _pending_wait(self, now: float) -> float:
        wait = 0.0
        if now < self._backoff_until:
            wait = self._backoff_until - now
        if self._last_request is not None:
            wait = max(wait, self._last_request + self._min_delay - now)
        return wait

    def _get_condition(self) -> asyncio.Condition:
        # Limiters are process-wide; rebind when a different event loop picks us up.
        loop = asyncio.get_running_loop()
        if self._condition is None or self._loop is not loop:
            self._condition = asyncio.Condition()
            self._loop = loop
        return self._condition


__all__ = [
    "RateLimiter",
    "NoOpRateLimiter",
    "NOOP_RATE_LIMITER",
    "MinIntervalRateLimiter",
    "DEFAULT_MIN_DELAY_SECONDS",
    "DEFAULT_BACKOFF_SECONDS",
]
