"""Retry decisions and backoff timing.

The scheduler is the single authority on retry versus abandon. It is pure
apart from the jitter draw: given an attempt count and a failure class it
always reaches the same decision, and with ``jitter_factor=0`` the same
delay.
"""

from __future__ import annotations

import asyncio
import random
import time
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.models import FailureClass

if TYPE_CHECKING:
    from hookrelay.config import RetrySettings
    from hookrelay.models import DeliveryResult, WebhookDelivery

NON_RETRYABLE = frozenset({FailureClass.CONFIG_INVALID, FailureClass.UNSUPPORTED_FORMAT})


@runtime_checkable
class Clock(Protocol):
    """Time source for backoff timers. Replaced by a fake clock in tests."""

    def now(self) -> datetime:
        """Current wall-clock time (UTC)."""
        ...

    def monotonic(self) -> float:
        """Monotonic seconds, for measuring durations."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by the real time and asyncio's event loop."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class RetryAction(str, Enum):
    DELIVER = "deliver"
    RETRY = "retry"
    ABANDON = "abandon"


class RetryDecision(BaseModel):
    """What to do with a delivery after an attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    action: RetryAction
    delay_s: float = Field(default=0.0, ge=0.0)
    reason: str = ""


class RetryPolicy(BaseModel):
    """Backoff parameters.

    Attributes:
        base_delay_s: Delay after the first failed attempt.
        max_delay_s: Upper bound for any delay.
        jitter_factor: Maximum relative jitter, between 0 and 1.
        retry_on_429: Whether HTTP 429 is retryable.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_delay_s: float = Field(default=1.0, gt=0.0)
    max_delay_s: float = Field(default=300.0, gt=0.0)
    jitter_factor: float = Field(default=0.1, ge=0.0, le=1.0)
    retry_on_429: bool = True

    @classmethod
    def from_settings(cls, retry: RetrySettings) -> RetryPolicy:
        return cls(
            base_delay_s=retry.base_delay_seconds,
            max_delay_s=retry.max_delay_seconds,
            jitter_factor=retry.jitter_factor,
            retry_on_429=retry.retry_on_429,
        )


class RetryScheduler:
    """Classifies attempt results and computes backoff delays.

    Example:
        ```python
        scheduler = RetryScheduler(RetryPolicy(jitter_factor=0))
        decision = scheduler.decide(delivery, result)
        if decision.action is RetryAction.RETRY:
            await clock.sleep(decision.delay_s)
        ```
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.clock: Clock = clock or SystemClock()
        self._rng = rng or random.Random()

    def is_retryable(self, result: DeliveryResult) -> bool:
        """Whether another attempt could succeed where this one failed."""
        if result.success:
            return False
        failure = result.failure_class
        if failure is None or failure in NON_RETRYABLE:
            return False
        if failure is FailureClass.HTTP_STATUS:
            status = result.status_code or 0
            if status >= 500:
                return True
            if status == 429:
                return self.policy.retry_on_429
            return False
        return True

    def backoff_delay(self, attempts: int) -> float:
        """Delay in seconds before the attempt following attempt ``attempts``.

        Jitter only ever lengthens a delay, and since ``jitter_factor <= 1``
        the lower bound of one step is never below the upper bound of the
        previous one, so delays never decrease until the cap.
        """
        exponent = max(0, attempts - 1)
        jitter = 0.0
        if self.policy.jitter_factor:
            jitter = self._rng.uniform(0.0, self.policy.jitter_factor)
        delay = self.policy.base_delay_s * (2**exponent) * (1.0 + jitter)
        return min(self.policy.max_delay_s, delay)

    def decide(self, delivery: WebhookDelivery, result: DeliveryResult) -> RetryDecision:
        """Decide the delivery's next step after its latest attempt."""
        if result.success:
            return RetryDecision(action=RetryAction.DELIVER, reason="delivered")

        if not self.is_retryable(result):
            failure = result.failure_class.value if result.failure_class else "unknown"
            return RetryDecision(
                action=RetryAction.ABANDON,
                reason=f"Non-retryable failure ({failure}): {result.error}",
            )

        if delivery.attempts >= delivery.max_attempts:
            return RetryDecision(
                action=RetryAction.ABANDON,
                reason=(
                    f"Attempts exhausted ({delivery.attempts}/{delivery.max_attempts}): "
                    f"{result.error}"
                ),
            )

        delay = self.backoff_delay(delivery.attempts)
        return RetryDecision(
            action=RetryAction.RETRY,
            delay_s=delay,
            reason=f"Retry {delivery.attempts + 1}/{delivery.max_attempts} in {delay:.2f}s",
        )
