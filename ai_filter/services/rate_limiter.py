"""Per-key fixed-window rate limiter held in process memory.

Suitable for a single serving instance. Windows idle for more than twice
their own length are swept by a background task so the key space cannot
grow without bound.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

log = structlog.get_logger("rate_limiter")

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int


@dataclass
class _Window:
    window_start: float
    count: int
    window_seconds: float


class RateLimiter:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._clock = clock
        self.sweep_interval = sweep_interval
        self._windows: dict[str, _Window] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def check(self, key: str, max_requests: int, window_seconds: float) -> RateLimitResult:
        """Count one request against ``key`` and say whether it may proceed."""
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now - window.window_start >= window_seconds:
            self._windows[key] = _Window(window_start=now, count=1, window_seconds=window_seconds)
            return RateLimitResult(allowed=True, remaining=max_requests - 1)

        window.count += 1
        if window.count > max_requests:
            return RateLimitResult(allowed=False, remaining=0)

        return RateLimitResult(allowed=True, remaining=max_requests - window.count)

    def sweep(self) -> int:
        """Remove windows idle for more than twice their duration."""
        now = self._clock()
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.window_start > 2 * window.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        if expired:
            log.debug("rate_limit_sweep", removed=len(expired), remaining=len(self._windows))
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep. Must be called from a running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="rate-limit-sweep")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    def __len__(self) -> int:
        return len(self._windows)
