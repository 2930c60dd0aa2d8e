"""
Resilience patterns for external service calls.

The reply generator is a remote text model; a slow or failing model must
never hold up a sender, so calls are bounded by a timeout and guarded by a
circuit breaker that fails fast while the service is down.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar('T')


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    State transitions:
        CLOSED -> OPEN (after failure_threshold failures)
        OPEN -> HALF_OPEN (after recovery_timeout)
        HALF_OPEN -> CLOSED (after success_threshold successes)
        HALF_OPEN -> OPEN (on any failure)
    """
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"            # Failing, reject requests immediately
    HALF_OPEN = "half_open"  # Testing recovery, limited requests


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 5      # Failures before opening
    recovery_timeout: float = 60.0  # Seconds before attempting recovery
    success_threshold: int = 1      # Successes to close from half-open
    call_timeout: float | None = None  # Per-call bound in seconds
    name: str = "circuit"           # For logging


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open."""

    def __init__(self, circuit_name: str, retry_after: float):
        self.circuit_name = circuit_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{circuit_name}' is OPEN. "
            f"Retry after {retry_after:.1f}s"
        )


class AsyncCircuitBreaker:
    """
    Circuit breaker for coroutine calls.

    Runs on a single event loop, so state needs no lock: transitions happen
    between awaits.

    Example:
        >>> breaker = AsyncCircuitBreaker(CircuitBreakerConfig(
        ...     failure_threshold=3,
        ...     recovery_timeout=30.0,
        ...     call_timeout=10.0,
        ... ))
        >>> reply = await breaker.call(client.generate_reply, chat_id, text)
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None

        logger.info(
            f"[{config.name}] Circuit breaker initialized: "
            f"failure_threshold={config.failure_threshold}, "
            f"recovery_timeout={config.recovery_timeout}s"
        )

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN -> HALF_OPEN once the recovery window passed."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.recovery_timeout:
                logger.info(f"[{self.config.name}] Circuit transitioning to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
        return self._state

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Await ``func`` under circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If circuit is open
            asyncio.TimeoutError: If the call exceeded ``call_timeout``
            Exception: Any exception from func (after recording)
        """
        if self.state == CircuitState.OPEN:
            elapsed = self._clock() - (self._opened_at or self._clock())
            raise CircuitBreakerOpen(
                self.config.name, max(0.0, self.config.recovery_timeout - elapsed)
            )

        try:
            if self.config.call_timeout is not None:
                result = await asyncio.wait_for(
                    func(*args, **kwargs), timeout=self.config.call_timeout
                )
            else:
                result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                logger.info(f"[{self.config.name}] Circuit closing (recovered)")
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._failure_count:
            self._failure_count = 0

    def _on_failure(self) -> None:
        self._failure_count += 1

        if self._state == CircuitState.HALF_OPEN:
            logger.warning(f"[{self.config.name}] Circuit re-opening (failed during recovery)")
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                logger.error(
                    f"[{self.config.name}] Circuit opening "
                    f"({self._failure_count} failures)"
                )
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()

    def get_metrics(self) -> dict[str, Any]:
        """Get circuit breaker metrics."""
        return {
            "name": self.config.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
        }

    def reset(self) -> None:
        """Manually reset circuit to CLOSED state."""
        logger.info(f"[{self.config.name}] Circuit manually reset")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
