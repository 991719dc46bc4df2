"""
Retry mechanism for resilient upstream operations.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential"):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


async def call_with_retry(func: Callable[[], Awaitable[Any]],
                          *,
                          exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                          config: Optional[RetryConfig] = None,
                          name: Optional[str] = None) -> Any:
    """Await ``func()`` retrying on ``exceptions``.

    The last exception is re-raised unchanged once attempts are exhausted so
    callers keep seeing their own error types.
    """
    config = config or RetryConfig()
    label = name or getattr(func, "__name__", "operation")
    logger = get_logger(f"retry.{label}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func()
        except exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    function=label,
                    error=str(e)
                )
                raise

            delay = _calculate_delay(attempt, config)
            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=label,
                error=str(e)
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 1:
            logger.info("Retry succeeded", attempt=attempt, function=label)
        return result

    raise RuntimeError(f"Retry loop for {label} exited without a result")  # pragma: no cover


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay between retry attempts."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
