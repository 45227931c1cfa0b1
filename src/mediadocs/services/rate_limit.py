"""Token-bucket throttling shared by every job calling a rate-limited provider."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional

from rich.console import Console

from mediadocs.config.settings import RateLimitConfig

DEFAULT_REQUESTS_PER_MINUTE = 60


class RateLimiter:
    """Bucket of at most ``burst`` tokens refilled continuously at ``requests_per_minute``.

    Waiters queue on a lock, so concurrent jobs are served in arrival order.
    """

    def __init__(
        self,
        requests_per_minute: int,
        burst: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.burst = max(1, burst)
        self._clock = clock
        self._tokens = float(self.burst)
        self._updated = clock()
        self._lock = asyncio.Lock()

    def delay(self) -> float:
        """Seconds until a token is available; ``0.0`` when one is ready now."""

        self._refill()
        if self._tokens >= 1.0:
            return 0.0
        return (1.0 - self._tokens) * 60.0 / self.requests_per_minute

    async def acquire(self) -> float:
        """Take one token, sleeping until it exists. Returns the seconds spent waiting."""

        waited = 0.0
        async with self._lock:
            delay = self.delay()
            while delay > 0:
                await asyncio.sleep(delay)
                waited += delay
                delay = self.delay()
            self._tokens -= 1.0
        return waited

    def _refill(self) -> None:
        now = self._clock()
        earned = (now - self._updated) * self.requests_per_minute / 60.0
        self._tokens = min(float(self.burst), self._tokens + earned)
        self._updated = now


class RateLimiterRegistry:
    """One limiter per configured provider name; unknown names are not throttled."""

    def __init__(self, configuration: RateLimitConfig, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()
        self._limiters: Dict[str, RateLimiter] = {}
        for service_name, limits in configuration.services.items():
            per_minute = limits.requests_per_minute or DEFAULT_REQUESTS_PER_MINUTE
            self._limiters[service_name] = RateLimiter(per_minute, limits.burst or per_minute)

    async def apply(self, service_name: str) -> None:
        limiter = self._limiters.get(service_name)
        if limiter is None:
            return
        waited = await limiter.acquire()
        if waited:
            self._console.log(f"[yellow]Throttled {service_name} call for {waited:.1f}s[/yellow]")

    def __contains__(self, service_name: object) -> bool:
        return service_name in self._limiters


__all__ = ["DEFAULT_REQUESTS_PER_MINUTE", "RateLimiter", "RateLimiterRegistry"]
