"""
Per-authority circuit breakers.

A breaker opens after ``failure_threshold`` consecutive transient failures and
stays open for ``recovery_timeout`` seconds. The first call after that window
is a half-open probe: success closes the breaker, failure re-opens it.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Tuple, Type, Union

from edge_shared.logging import get_logger


ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(Exception):
    """Raised instead of calling an authority whose breaker is open."""

    def __init__(self, name: str, retry_in: float):
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"circuit '{name}' open, retry in {retry_in:.1f}s")


class CircuitBreaker:
    """Consecutive-failure breaker for one authority.

    Only ``expected_exception`` is counted. Domain errors raised from 4xx
    answers pass through and leave the state alone.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 expected_exception: ExceptionTypes = Exception,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name
        self._clock = clock
        self.logger = get_logger(f"circuit_breaker.{name}")

        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self._opened_at = 0.0

    def is_open(self) -> bool:
        return self.state is BreakerState.OPEN

    def _admit(self):
        if self.state is not BreakerState.OPEN:
            return
        elapsed = self._clock() - self._opened_at
        if elapsed < self.recovery_timeout:
            raise CircuitBreakerOpenException(self.name, self.recovery_timeout - elapsed)
        self.state = BreakerState.HALF_OPEN
        self.logger.info("Circuit half-open, probing authority")

    def _on_success(self):
        if self.state is BreakerState.HALF_OPEN:
            self.logger.info("Circuit closed after successful probe")
        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0

    def _on_failure(self, error: BaseException):
        self.consecutive_failures += 1
        if self.state is BreakerState.HALF_OPEN or self.consecutive_failures >= self.failure_threshold:
            self.state = BreakerState.OPEN
            self._opened_at = self._clock()
            self.logger.warning(
                "Circuit opened",
                consecutive_failures=self.consecutive_failures,
                threshold=self.failure_threshold,
                error=str(error),
            )

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception as exc:
            self._on_failure(exc)
            raise
        self._on_success()
        return result


class CircuitBreakerManager:
    """Breakers owned by one service instance, keyed by authority name."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_circuit_breaker(self, name: str, **settings) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it with ``settings`` on first use."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self._breakers[name] = CircuitBreaker(name=name, **settings)
        return breaker
