"""
Bounded retries for idempotent authority reads.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from edge_shared.logging import get_logger


@dataclass
class RetryConfig:
    """Exponential backoff: ``base_delay * 2**(attempt-1)`` capped at ``max_delay``."""

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.9, 1.1)
        return delay


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Retry an async callable on ``exceptions``.

    Once attempts run out the last error propagates unchanged, so callers can
    still tell a timeout from an outage.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        logger = get_logger(f"retry.{func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt >= config.max_attempts:
                        logger.error("Giving up after retries", attempts=attempt, error=str(exc))
                        raise
                    delay = config.delay_for(attempt)
                    logger.warning("Retrying", attempt=attempt, delay=round(delay, 3), error=str(exc))
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
