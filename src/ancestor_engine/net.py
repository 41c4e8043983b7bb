"""Per-adapter call guards: rate limiting, backoff policy and circuit breaking.

Guards are plain objects owned by whoever builds the adapters for a job, so two
jobs running in the same process never share limiter state.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

import structlog

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


@dataclass
class RateLimitConfig:
    max_calls: int = 1
    window_seconds: float = 1.0
    min_interval: float = 0.0  # enforce spacing between calls
    max_retries: int = 3  # retries on an explicit rate-limit response
    backoff_base: float = 2.0  # seconds; doubled per attempt
    degrade_after: int = 2  # exhausted rate-limit episodes before going unavailable
    degrade_seconds: float = 300.0


class AsyncRateLimiter:
    """Sliding-window rate limiter with min-interval spacing."""

    def __init__(self, cfg: RateLimitConfig, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep) -> None:
        self.cfg = cfg
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._calls: list[float] = []  # timestamps
        self._last_call: float | None = None

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if self._last_call is not None:
                sleep_needed = max(0.0, self.cfg.min_interval - (now - self._last_call))
                if sleep_needed > 0:
                    await self._sleep(sleep_needed)
                    now = self._clock()
            cutoff = now - self.cfg.window_seconds
            self._calls = [t for t in self._calls if t > cutoff]
            # At capacity: wait until the earliest call leaves the window
            if len(self._calls) >= self.cfg.max_calls:
                wait_for = self._calls[0] + self.cfg.window_seconds - now
                if wait_for > 0:
                    await self._sleep(wait_for)
                    now = self._clock()
                    cutoff = now - self.cfg.window_seconds
                    self._calls = [t for t in self._calls if t > cutoff]
            self._calls.append(now)
            self._last_call = now

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry ``attempt`` (0-based) after a rate-limit response."""
        return self.cfg.backoff_base * (2**attempt)


class CircuitBreaker:
    """Basic circuit breaker with failure window and cooldown."""

    def __init__(
        self,
        max_failures: int = 5,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 300.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._failures: list[float] = []
        self._opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def allow_call(self) -> bool:
        now = self._clock()
        if self._opened_at is not None:
            if now - self._opened_at < self.cooldown_seconds:
                return False
            # half-open: allow one call
            self._opened_at = None
            self._failures.clear()
        cutoff = now - self.window_seconds
        self._failures = [t for t in self._failures if t >= cutoff]
        return True

    def record_success(self) -> None:
        self._failures.clear()
        self._opened_at = None

    def record_failure(self) -> None:
        now = self._clock()
        cutoff = now - self.window_seconds
        self._failures = [t for t in self._failures if t >= cutoff]
        self._failures.append(now)
        if len(self._failures) >= self.max_failures:
            self._opened_at = now


@dataclass
class AdapterGuard:
    """Everything that decides whether one adapter may be called right now."""

    name: str
    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    clock: Clock = time.monotonic
    sleep: Sleep = asyncio.sleep

    def __post_init__(self) -> None:
        self.limiter = AsyncRateLimiter(self.config, clock=self.clock, sleep=self.sleep)
        self.breaker = CircuitBreaker(clock=self.clock)
        self._rate_limit_episodes = 0
        self._degraded_until: float | None = None
        self._disabled_reason: str | None = None

    @property
    def disabled_reason(self) -> str | None:
        return self._disabled_reason

    def is_open(self) -> bool:
        """True when calls are currently permitted."""
        if self._disabled_reason is not None:
            return False
        if self._degraded_until is not None:
            if self.clock() < self._degraded_until:
                return False
            self._degraded_until = None
            self._rate_limit_episodes = 0
        return self.breaker.allow_call()

    def disable(self, reason: str) -> None:
        """Take the adapter out of service for the rest of the job."""
        if self._disabled_reason is None:
            logger.warning("source.disabled", source=self.name, reason=reason)
        self._disabled_reason = reason

    def note_rate_limited(self) -> None:
        """Record that a call gave up after exhausting its rate-limit retries."""
        self._rate_limit_episodes += 1
        if self._rate_limit_episodes >= self.config.degrade_after:
            self._degraded_until = self.clock() + self.config.degrade_seconds
            logger.warning(
                "source.degraded",
                source=self.name,
                episodes=self._rate_limit_episodes,
                seconds=self.config.degrade_seconds,
            )

    def note_success(self) -> None:
        self._rate_limit_episodes = 0
        self.breaker.record_success()

    def note_failure(self) -> None:
        self.breaker.record_failure()

    async def backoff(self, attempt: int) -> None:
        await self.sleep(self.limiter.backoff_delay(attempt))


class NetGuards:
    """Registry of adapter guards owned by a single job."""

    def __init__(self, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep) -> None:
        self._clock = clock
        self._sleep = sleep
        self._guards: Dict[str, AdapterGuard] = {}

    def get(self, key: str, default: RateLimitConfig) -> AdapterGuard:
        key = key.lower()
        if key not in self._guards:
            self._guards[key] = AdapterGuard(key, default, clock=self._clock, sleep=self._sleep)
        return self._guards[key]

    def report_status(self) -> dict:
        """Snapshot of guard state for debugging."""
        out = {}
        for key, guard in self._guards.items():
            out[key] = {
                "available": guard.is_open(),
                "disabled_reason": guard.disabled_reason,
                "circuit_open": guard.breaker.is_open,
                "rate": {
                    "max_calls": guard.config.max_calls,
                    "window_seconds": guard.config.window_seconds,
                    "min_interval": guard.config.min_interval,
                },
            }
        return out
