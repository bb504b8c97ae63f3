"""Tests for the circuit breaker and its manager."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from resilience.circuit_breaker import (
    PRESETS,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitOpenError,
    CircuitState,
    default_manager,
    with_circuit_breaker,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def succeed():
    return "ok"


async def fail():
    raise RuntimeError("down")


def make_breaker(clock: FakeClock, **config) -> CircuitBreaker:
    return CircuitBreaker("test", CircuitBreakerConfig(**config), clock=clock)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_threshold_one_opens_after_one_failure(self):
        breaker = make_breaker(FakeClock(), failure_threshold=1)

        with pytest.raises(RuntimeError):
            await breaker.execute(fail)

        assert breaker.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_rejects_without_calling(self):
        clock = FakeClock()
        breaker = make_breaker(clock, failure_threshold=1, reset_timeout=30)
        await _fail_once(breaker)
        called = []

        async def tracked():
            called.append(True)
            return "ok"

        clock.advance(10)
        with pytest.raises(CircuitOpenError) as info:
            await breaker.execute(tracked)

        assert called == []
        assert info.value.circuit_name == "test"
        assert info.value.retry_after == pytest.approx(20)

    @pytest.mark.asyncio
    async def test_half_open_observed_on_next_call(self):
        clock = FakeClock()
        breaker = make_breaker(clock, failure_threshold=1, reset_timeout=30, success_threshold=2)
        await _fail_once(breaker)

        clock.advance(31)
        # state is not advanced lazily by reads
        assert breaker.state is CircuitState.OPEN

        assert await breaker.execute(succeed) == "ok"
        assert breaker.state is CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_closes_after_success_threshold(self):
        clock = FakeClock()
        closed = []
        breaker = CircuitBreaker(
            "test",
            CircuitBreakerConfig(failure_threshold=1, reset_timeout=30, success_threshold=2),
            on_close=closed.append,
            clock=clock,
        )
        await _fail_once(breaker)
        clock.advance(30)

        await breaker.execute(succeed)
        await breaker.execute(succeed)

        assert breaker.state is CircuitState.CLOSED
        assert closed == [2]

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = make_breaker(clock, failure_threshold=3, reset_timeout=30, success_threshold=2)
        for _ in range(3):
            await _fail_once(breaker)
        assert breaker.is_open()

        clock.advance(30)
        await breaker.execute(succeed)
        await _fail_once(breaker)

        assert breaker.is_open()
        assert breaker.retry_after() == pytest.approx(30)

    @pytest.mark.asyncio
    async def test_failures_outside_window_are_forgotten(self):
        clock = FakeClock()
        breaker = make_breaker(clock, failure_threshold=2, failure_window=60)

        await _fail_once(breaker)
        clock.advance(61)
        await _fail_once(breaker)

        assert breaker.is_closed()
        assert breaker.stats().failures == 1

    @pytest.mark.asyncio
    async def test_success_in_closed_state_keeps_failures(self):
        breaker = make_breaker(FakeClock(), failure_threshold=2)
        await _fail_once(breaker)
        await breaker.execute(succeed)
        await _fail_once(breaker)
        assert breaker.is_open()


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_state_change_and_open_callbacks(self):
        changes = []
        opened = []
        breaker = CircuitBreaker(
            "cb",
            CircuitBreakerConfig(failure_threshold=1),
            on_state_change=lambda b, old, new: changes.append((b.name, old, new)),
            on_open=lambda exc, count: opened.append((str(exc), count)),
            clock=FakeClock(),
        )

        await _fail_once(breaker)

        assert changes == [("cb", CircuitState.CLOSED, CircuitState.OPEN)]
        assert opened == [("down", 1)]

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_breaker(self):
        def broken(*args):
            raise ValueError("listener bug")

        breaker = CircuitBreaker(
            "cb", CircuitBreakerConfig(failure_threshold=1), on_state_change=broken, clock=FakeClock()
        )

        await _fail_once(breaker)
        assert breaker.is_open()

    @pytest.mark.asyncio
    async def test_dispose_detaches_listeners(self):
        changes = []
        breaker = CircuitBreaker(
            "cb",
            CircuitBreakerConfig(failure_threshold=1),
            on_state_change=lambda *a: changes.append(a),
            clock=FakeClock(),
        )
        breaker.dispose()
        await _fail_once(breaker)
        assert changes == []


class TestManualControl:
    @pytest.mark.asyncio
    async def test_force_open_and_close(self):
        breaker = make_breaker(FakeClock(), reset_timeout=30)

        breaker.force_open()
        with pytest.raises(CircuitOpenError):
            await breaker.execute(succeed)

        breaker.force_close()
        assert await breaker.execute(succeed) == "ok"

    @pytest.mark.asyncio
    async def test_reset_clears_stats(self):
        breaker = make_breaker(FakeClock(), failure_threshold=1)
        await _fail_once(breaker)

        breaker.reset()

        stats = breaker.stats()
        assert stats.state is CircuitState.CLOSED
        assert stats.total_requests == 0
        assert stats.total_failures == 0
        assert stats.opened_at is None

    @pytest.mark.asyncio
    async def test_stats_counts(self):
        breaker = make_breaker(FakeClock(), failure_threshold=5)
        await breaker.execute(succeed)
        await _fail_once(breaker)

        stats = breaker.stats()
        assert stats.total_requests == 2
        assert stats.total_successes == 1
        assert stats.total_failures == 1
        assert stats.last_failure is not None


class TestDefaults:
    def test_config_defaults(self):
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.reset_timeout == 30.0
        assert config.success_threshold == 2
        assert config.failure_window == 60.0

    def test_presets(self):
        assert PRESETS["llm"].failure_threshold == 3
        assert PRESETS["llm"].reset_timeout == 60.0
        assert PRESETS["network"].reset_timeout == 15.0
        assert PRESETS["scraping"].success_threshold == 3


class TestManager:
    def test_get_or_create_is_stable(self):
        manager = CircuitBreakerManager()
        first = manager.get_breaker("network")
        assert manager.get_breaker("network") is first
        assert first.config.reset_timeout == 15.0

    def test_unknown_name_uses_defaults(self):
        breaker = CircuitBreakerManager().get_breaker("custom")
        assert breaker.config.failure_threshold == 5

    @pytest.mark.asyncio
    async def test_reset_all_and_stats(self):
        manager = CircuitBreakerManager()
        manager.get_breaker("a", CircuitBreakerConfig(failure_threshold=1))
        manager.get_breaker("b")
        await _fail_once(manager.get_breaker("a"))

        assert {s.name: s.state for s in manager.all_stats()} == {
            "a": CircuitState.OPEN,
            "b": CircuitState.CLOSED,
        }

        manager.reset_all()
        assert all(s.state is CircuitState.CLOSED for s in manager.all_stats())

    def test_dispose_all_empties_manager(self):
        manager = CircuitBreakerManager()
        manager.get_breaker("a")
        manager.dispose_all()
        assert manager.all_breakers() == {}

    def test_manager_listener_sees_every_breaker(self):
        seen = []
        manager = CircuitBreakerManager(on_state_change=lambda b, old, new: seen.append(b.name))
        manager.get_breaker("a").force_open()
        manager.get_breaker("b").force_open()
        assert seen == ["a", "b"]

    def test_default_manager_is_shared(self):
        assert default_manager() is default_manager()

    @pytest.mark.asyncio
    async def test_with_circuit_breaker(self):
        manager = CircuitBreakerManager()
        assert await with_circuit_breaker("llm", succeed, manager=manager) == "ok"
        assert manager.get_breaker("llm").stats().total_successes == 1


async def _fail_once(breaker: CircuitBreaker) -> None:
    with pytest.raises(RuntimeError):
        await breaker.execute(fail)
