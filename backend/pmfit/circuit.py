"""
PM-Fit Backend - Circuit Breaker

Stops calling an upstream that keeps failing and serves a fallback instead,
then lets a single trial call through once the reset timeout has passed.
"""

import inspect
import time
from enum import Enum
from typing import Any, Callable, Optional

from pmfit.config import log


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when the circuit is open and no fallback was given."""
    retryable = False


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    async def call(self, operation: Callable[[], Any], fallback: Optional[Callable[[], Any]] = None) -> Any:
        """Run `operation` unless the circuit is open.

        While open, `fallback` is used if given, otherwise CircuitOpenError is
        raised. Errors from `operation` are re-raised unless a fallback exists.
        """
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout_seconds:
            self._state = CircuitState.HALF_OPEN
            log("INFO", "circuit half-open, allowing trial call", circuit=self.name)

        if self._state is CircuitState.OPEN:
            if fallback is not None:
                return await _resolve(fallback())
            raise CircuitOpenError(f"circuit '{self.name}' is open")

        try:
            result = await _resolve(operation())
        except Exception as e:
            self._record_failure(e)
            if fallback is not None:
                return await _resolve(fallback())
            raise

        if self._state is CircuitState.HALF_OPEN:
            log("INFO", "circuit closed after successful trial", circuit=self.name)
        self._state = CircuitState.CLOSED
        self._failures = 0
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None

    def _record_failure(self, error: Exception) -> None:
        self._failures += 1
        if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            log(
                "WARN",
                "circuit opened",
                circuit=self.name,
                failures=self._failures,
                reset_timeout_s=self.reset_timeout_seconds,
                error=str(error),
            )


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
