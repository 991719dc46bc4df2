"""
Circuit breaker pattern implementation for resilient upstream calls.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if upstream recovered


class CircuitBreakerOpenException(Exception):
    """Exception raised when circuit breaker is open."""
    pass


class CircuitBreaker:
    """Circuit breaker implementation.

    Only exceptions listed in ``expected_exceptions`` count as failures;
    anything else (a 404, a configuration problem) passes through untouched.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                 name: str = "default",
                 clock: Optional[Callable[[], float]] = None):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock or time.monotonic

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._success_count = 0

    def _can_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt a reset."""
        return (self._clock() - self._last_failure_time) >= self.recovery_timeout

    def _should_attempt_call(self) -> bool:
        """Determine if a call should be attempted based on current state."""
        if self._state == CircuitBreakerState.CLOSED:
            return True
        if self._state == CircuitBreakerState.OPEN:
            if self._can_attempt_reset():
                self._state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker transitioning to half-open")
                return True
            return False
        return True

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        if not self._should_attempt_call():
            raise CircuitBreakerOpenException(
                f"Circuit breaker '{self.name}' is OPEN - blocking call"
            )

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self._record_failure()
            raise

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._state = CircuitBreakerState.CLOSED
            self.logger.info("Circuit breaker reset to CLOSED after successful call")
        self._failure_count = 0
        self._success_count += 1
        return result

    def _record_failure(self):
        """Record a failure and update state."""
        self._failure_count += 1
        self._last_failure_time = self._clock()
        self._success_count = 0

        if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._state == CircuitBreakerState.OPEN
