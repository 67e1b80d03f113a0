"""
PM-Fit Backend - Circuit Breaker Unit Tests

Tests for circuit.py: open after repeated failures, fallback while open,
half-open trial after the reset timeout.
"""

import pytest

from pmfit.circuit import CircuitBreaker, CircuitOpenError, CircuitState
from pmfit.queue import is_retryable
from tests.conftest import FakeClock


async def _fail():
    raise RuntimeError("upstream down")


async def _ok():
    return "live"


class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("serper", failure_threshold=3, clock=FakeClock())

        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.call(_fail)

        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(_ok)

    def test_open_error_is_not_retryable(self):
        assert is_retryable(CircuitOpenError("open")) is False

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("serper", failure_threshold=3, clock=FakeClock())
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
        assert breaker.failure_count == 1

        assert await breaker.call(_ok) == "live"
        assert breaker.failure_count == 0
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_fallback_used_on_failure_and_while_open(self):
        breaker = CircuitBreaker("tavily", failure_threshold=1, clock=FakeClock())

        assert await breaker.call(_fail, fallback=lambda: "synthetic") == "synthetic"
        assert breaker.state is CircuitState.OPEN

        calls = []

        async def tracked():
            calls.append(1)
            return "live"

        assert await breaker.call(tracked, fallback=lambda: "synthetic") == "synthetic"
        assert calls == []

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        clock = FakeClock()
        breaker = CircuitBreaker("serper", failure_threshold=1, reset_timeout_seconds=30, clock=clock)
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)

        clock.advance(30)
        assert await breaker.call(_ok) == "live"
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("serper", failure_threshold=2, reset_timeout_seconds=30, clock=clock)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(_fail)

        clock.advance(31)
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
        assert breaker.state is CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.call(_ok)

    @pytest.mark.asyncio
    async def test_reset(self):
        breaker = CircuitBreaker("serper", failure_threshold=1, clock=FakeClock())
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)

        breaker.reset()
        assert breaker.state is CircuitState.CLOSED
        assert await breaker.call(_ok) == "live"
