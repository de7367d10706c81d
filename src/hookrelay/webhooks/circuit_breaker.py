"""Per-webhook circuit breaker.

After ``failure_threshold`` consecutive failures a webhook's circuit opens
and attempts are rejected without a network call until ``reset_timeout``
has elapsed; then a single trial attempt is let through (half-open). A
successful trial closes the circuit, a failed one re-opens it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitStats(BaseModel):
    """Snapshot of a breaker for monitoring."""

    model_config = ConfigDict(extra="forbid")

    state: CircuitState
    consecutive_failures: int
    total_failures: int
    total_successes: int
    retry_in_seconds: float | None = None


class CircuitBreaker:
    """Consecutive-failure circuit breaker for one destination."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._total_failures = 0
        self._total_successes = 0
        self._opened_at: float | None = None
        self._trial_in_progress = False

    @property
    def state(self) -> CircuitState:
        return self._state

    def can_execute(self) -> bool:
        """Whether an attempt may go out now."""
        if self._state is CircuitState.CLOSED:
            return True
        if self._state is CircuitState.OPEN:
            assert self._opened_at is not None
            if self._clock() - self._opened_at >= self._reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_progress = True
                return True
            return False
        # Half-open: one trial at a time
        if self._trial_in_progress:
            return False
        self._trial_in_progress = True
        return True

    def record_success(self) -> None:
        self._total_successes += 1
        self._consecutive_failures = 0
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit closed after successful trial")
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._trial_in_progress = False

    def record_failure(self) -> None:
        self._total_failures += 1
        self._consecutive_failures += 1
        if self._state is CircuitState.HALF_OPEN:
            self._open()
        elif self._state is CircuitState.CLOSED and self._consecutive_failures >= self._threshold:
            self._open()

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._trial_in_progress = False

    def force_open(self) -> None:
        self._open()

    def stats(self) -> CircuitStats:
        retry_in = None
        if self._state is CircuitState.OPEN and self._opened_at is not None:
            retry_in = max(0.0, self._reset_timeout - (self._clock() - self._opened_at))
        return CircuitStats(
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            retry_in_seconds=retry_in,
        )

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_progress = False
        logger.warning(
            "Circuit opened after %d consecutive failures", self._consecutive_failures
        )


class CircuitBreakerRegistry:
    """Lazily creates one breaker per webhook id."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, webhook_id: str) -> CircuitBreaker:
        breaker = self._breakers.get(webhook_id)
        if breaker is None:
            breaker = CircuitBreaker(self._failure_threshold, self._reset_timeout, self._clock)
            self._breakers[webhook_id] = breaker
        return breaker

    def stats(self, webhook_id: str) -> CircuitStats | None:
        breaker = self._breakers.get(webhook_id)
        return breaker.stats() if breaker is not None else None

    def reset(self, webhook_id: str) -> None:
        breaker = self._breakers.get(webhook_id)
        if breaker is not None:
            breaker.reset()

    def open_circuits(self) -> list[str]:
        return sorted(
            webhook_id
            for webhook_id, breaker in self._breakers.items()
            if breaker.state is CircuitState.OPEN
        )
