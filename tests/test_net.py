"""Tests for rate limiting, circuit breaking and adapter guards."""

import pytest

from ancestor_engine.net import AdapterGuard, AsyncRateLimiter, CircuitBreaker, NetGuards, RateLimitConfig


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestAsyncRateLimiter:
    """Test sliding-window limiting."""

    @pytest.mark.asyncio
    async def test_window_capacity(self, clock):
        limiter = AsyncRateLimiter(RateLimitConfig(max_calls=2, window_seconds=10), clock=clock, sleep=clock.sleep)
        await limiter.acquire()
        await limiter.acquire()
        assert clock.sleeps == []

        await limiter.acquire()
        assert clock.sleeps == [10.0]

    @pytest.mark.asyncio
    async def test_min_interval(self, clock):
        limiter = AsyncRateLimiter(
            RateLimitConfig(max_calls=100, window_seconds=1, min_interval=1.5), clock=clock, sleep=clock.sleep
        )
        await limiter.acquire()
        clock.now += 0.5
        await limiter.acquire()
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_calls_leave_window(self, clock):
        limiter = AsyncRateLimiter(RateLimitConfig(max_calls=1, window_seconds=2), clock=clock, sleep=clock.sleep)
        await limiter.acquire()
        clock.now += 3
        await limiter.acquire()
        assert clock.sleeps == []

    def test_backoff_doubles(self):
        limiter = AsyncRateLimiter(RateLimitConfig(backoff_base=2.0))
        assert [limiter.backoff_delay(a) for a in range(3)] == [2.0, 4.0, 8.0]


class TestCircuitBreaker:
    """Test failure windows and cooldown."""

    def test_opens_after_failures(self, clock):
        breaker = CircuitBreaker(max_failures=3, window_seconds=60, cooldown_seconds=300, clock=clock)
        for _ in range(3):
            breaker.record_failure()
        assert breaker.is_open
        assert not breaker.allow_call()

    def test_half_open_after_cooldown(self, clock):
        breaker = CircuitBreaker(max_failures=1, cooldown_seconds=300, clock=clock)
        breaker.record_failure()
        clock.now += 301
        assert breaker.allow_call()
        assert not breaker.is_open

    def test_old_failures_expire(self, clock):
        breaker = CircuitBreaker(max_failures=2, window_seconds=60, clock=clock)
        breaker.record_failure()
        clock.now += 61
        breaker.record_failure()
        assert not breaker.is_open

    def test_success_resets(self, clock):
        breaker = CircuitBreaker(max_failures=2, clock=clock)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert not breaker.is_open


class TestAdapterGuard:
    """Test degrade and disable behaviour."""

    def test_degrades_after_repeated_rate_limits(self, clock):
        guard = AdapterGuard("geni", RateLimitConfig(degrade_after=2, degrade_seconds=300), clock=clock, sleep=clock.sleep)
        guard.note_rate_limited()
        assert guard.is_open()
        guard.note_rate_limited()
        assert not guard.is_open()

        clock.now += 301
        assert guard.is_open()

    def test_success_clears_episodes(self, clock):
        guard = AdapterGuard("geni", RateLimitConfig(degrade_after=2), clock=clock, sleep=clock.sleep)
        guard.note_rate_limited()
        guard.note_success()
        guard.note_rate_limited()
        assert guard.is_open()

    def test_disable_is_permanent(self, clock):
        guard = AdapterGuard("familysearch", clock=clock, sleep=clock.sleep)
        guard.disable("authentication failed")
        clock.now += 10_000
        assert not guard.is_open()
        assert guard.disabled_reason == "authentication failed"

    @pytest.mark.asyncio
    async def test_backoff_sleeps(self, clock):
        guard = AdapterGuard("freebmd", RateLimitConfig(backoff_base=1.0), clock=clock, sleep=clock.sleep)
        await guard.backoff(2)
        assert clock.sleeps == [4.0]


class TestNetGuards:
    def test_one_guard_per_key(self, clock):
        guards = NetGuards(clock=clock, sleep=clock.sleep)
        first = guards.get("FamilySearch", RateLimitConfig(max_calls=5))
        assert guards.get("familysearch", RateLimitConfig()) is first
        assert first.config.max_calls == 5

    def test_report_status(self, clock):
        guards = NetGuards(clock=clock, sleep=clock.sleep)
        guards.get("geni", RateLimitConfig(max_calls=3, window_seconds=10))
        guards.get("familysearch", RateLimitConfig()).disable("authentication failed")

        status = guards.report_status()
        assert status["geni"]["available"]
        assert status["geni"]["rate"]["max_calls"] == 3
        assert not status["familysearch"]["available"]
        assert status["familysearch"]["disabled_reason"] == "authentication failed"

    def test_separate_registries_do_not_share_state(self, clock):
        a = NetGuards(clock=clock, sleep=clock.sleep)
        b = NetGuards(clock=clock, sleep=clock.sleep)
        a.get("geni", RateLimitConfig()).disable("test")
        assert b.get("geni", RateLimitConfig()).is_open()
