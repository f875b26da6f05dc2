"""
Unit tests for the circuit breaker and retry helpers.
"""

from unittest.mock import AsyncMock, patch

import pytest

from edge_shared.circuit_breaker import (
    BreakerState,
    CircuitBreaker,
    CircuitBreakerManager,
    CircuitBreakerOpenException,
)
from edge_shared.retry import RetryConfig, retry_on_exception


class Transient(Exception):
    pass


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=2, recovery_timeout=30.0, expected_exception=Transient, name="t", clock=clock)


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        failing = AsyncMock(side_effect=Transient())

        for _ in range(2):
            with pytest.raises(Transient):
                await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException) as exc_info:
            await breaker.call(failing)
        assert exc_info.value.retry_in == pytest.approx(30.0)
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_not_counted(self, breaker):
        failing = AsyncMock(side_effect=KeyError("x"))

        for _ in range(5):
            with pytest.raises(KeyError):
                await breaker.call(failing)

        assert breaker.state is BreakerState.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        failing = AsyncMock(side_effect=Transient())
        with pytest.raises(Transient):
            await breaker.call(failing)

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_closes_on_success(self, breaker, clock):
        failing = AsyncMock(side_effect=Transient())
        for _ in range(2):
            with pytest.raises(Transient):
                await breaker.call(failing)

        clock.now += 30.0
        assert await breaker.call(AsyncMock(return_value=1)) == 1
        assert breaker.state is BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_reopens(self, breaker, clock):
        failing = AsyncMock(side_effect=Transient())
        for _ in range(2):
            with pytest.raises(Transient):
                await breaker.call(failing)

        clock.now += 31.0
        with pytest.raises(Transient):
            await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(failing)


class TestCircuitBreakerManager:
    """Test cases for CircuitBreakerManager."""

    def test_one_breaker_per_name(self):
        manager = CircuitBreakerManager()

        first = manager.get_circuit_breaker("tenant_authority", failure_threshold=3)
        again = manager.get_circuit_breaker("tenant_authority", failure_threshold=9)

        assert first is again
        assert first.failure_threshold == 3
        assert manager.get_circuit_breaker("identity") is not first


class TestRetry:
    """Test cases for retry_on_exception."""

    def test_backoff_is_exponential_and_capped(self):
        config = RetryConfig(base_delay=0.5, max_delay=1.5, jitter=False)
        assert [config.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[Transient(), "done"])
        func.__name__ = "read"
        wrapped = retry_on_exception((Transient,), RetryConfig(max_attempts=3, base_delay=0, jitter=False))(func)

        with patch("edge_shared.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await wrapped() == "done"

        assert func.await_count == 2
        sleep.assert_awaited_once_with(0)

    @pytest.mark.asyncio
    async def test_last_error_propagates_unchanged(self):
        error = Transient("third")
        func = AsyncMock(side_effect=[Transient("first"), Transient("second"), error])
        func.__name__ = "read"
        wrapped = retry_on_exception((Transient,), RetryConfig(max_attempts=3, base_delay=0, jitter=False))(func)

        with patch("edge_shared.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(Transient) as exc_info:
                await wrapped()

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        func = AsyncMock(side_effect=ValueError("bad"))
        func.__name__ = "read"
        wrapped = retry_on_exception((Transient,), RetryConfig(max_attempts=3, base_delay=0))(func)

        with pytest.raises(ValueError):
            await wrapped()

        assert func.await_count == 1
