"""Circuit breaker for upstream service calls."""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from rag_gateway.infra.error_handler import CircuitOpenError


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker for async upstream calls.

    Opens after `failure_threshold` consecutive counted failures and rejects
    calls with CircuitOpenError until `recovery_timeout` seconds have passed.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        counted_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        ignored_exceptions: Tuple[Type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Service name used in error messages
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before attempting recovery (half-open)
            counted_exceptions: Exception types that count as failure
            ignored_exceptions: Exception types that never count (e.g. client-side 4xx)
            clock: Monotonic time source
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.counted_exceptions = counted_exceptions
        self.ignored_exceptions = ignored_exceptions
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self.success_count = 0  # For half-open state

    def _check_state(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        elapsed = self._clock() - (self.last_failure_time or 0.0)
        if elapsed >= self.recovery_timeout:
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
            return
        remaining = max(1, int(self.recovery_timeout - elapsed))
        raise CircuitOpenError(
            f"Circuit for {self.name} is open. Retry after {remaining} seconds.",
            retry_after=remaining,
        )

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        self._check_state()

        try:
            result = await func(*args, **kwargs)
        except self.ignored_exceptions:
            raise
        except self.counted_exceptions:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.state = CircuitState.OPEN
            raise

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:  # Need 2 successes to close
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
        else:
            self.failure_count = 0
        return result
