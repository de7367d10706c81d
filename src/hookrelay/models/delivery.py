"""Delivery lifecycle models.

A WebhookDelivery is one logical attempt-sequence delivering a single event
to a single webhook. Each attempt yields an immutable DeliveryResult, which
the tracker persists as an AttemptRecord keyed by (delivery_id, attempt).
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import stable_id
from .event import ChainEvent


class DeliveryStatus(str, Enum):
    """State of a delivery.

    ``pending -> in_flight -> {delivered | failed}``; ``failed`` is resolved
    by the retry scheduler into ``pending`` (retry) or ``abandoned``.
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.ABANDONED)


class FailureClass(str, Enum):
    """Why an attempt failed. Drives the retry decision."""

    CONFIG_INVALID = "config_invalid"
    UNSUPPORTED_FORMAT = "unsupported_format"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    CIRCUIT_OPEN = "circuit_open"
    INTERNAL_ERROR = "internal_error"


class DeliveryResult(BaseModel):
    """Outcome of exactly one attempt. Never mutated after creation.

    Attributes:
        success: True only for a 2xx response.
        status_code: HTTP status, absent for transport-level failures.
        response_body: Response body, truncated to 1000 chars.
        latency_ms: Wall-clock duration of the attempt.
        error: Human-readable failure description.
        failure_class: Classification of a failure, None on success.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    latency_ms: float = Field(default=0.0, ge=0.0)
    error: str | None = None
    failure_class: FailureClass | None = None

    @classmethod
    def ok(
        cls, status_code: int, latency_ms: float, response_body: str | None = None
    ) -> "DeliveryResult":
        """Create a successful result."""
        return cls(
            success=True,
            status_code=status_code,
            latency_ms=latency_ms,
            response_body=response_body,
        )

    @classmethod
    def failure(
        cls,
        failure_class: FailureClass,
        error: str,
        latency_ms: float = 0.0,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> "DeliveryResult":
        """Create a failed result."""
        return cls(
            success=False,
            failure_class=failure_class,
            error=error,
            latency_ms=latency_ms,
            status_code=status_code,
            response_body=response_body,
        )


class WebhookDelivery(BaseModel):
    """Delivery of one event to one webhook through one subscription.

    Created and mutated only by the dispatcher; the tracker reads it.

    Attributes:
        id: Deterministic ID (see ``delivery_id``).
        subscription_id: Subscription that matched the event.
        webhook_id: Destination webhook.
        event: The event being delivered.
        payload: Formatted payload of the last attempt (for inspection).
        attempts: Number of attempts started so far.
        max_attempts: Attempt budget.
        status: Current state.
        next_retry_at: When the scheduled retry becomes due.
        last_error: Error of the most recent failed attempt.
        created_at: When the delivery was created.
        completed_at: When the delivery reached a terminal state.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    subscription_id: str
    webhook_id: str
    event: ChainEvent
    payload: dict[str, Any] | None = None
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    status: DeliveryStatus = DeliveryStatus.PENDING
    next_retry_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @staticmethod
    def delivery_id(event: ChainEvent, subscription_id: str, webhook_id: str) -> str:
        """ID for an (event, subscription, webhook) triple."""
        tx_hash, log_index = event.key
        return stable_id("dlv", tx_hash, log_index, subscription_id, webhook_id)

    @classmethod
    def create(
        cls,
        event: ChainEvent,
        subscription_id: str,
        webhook_id: str,
        max_attempts: int,
    ) -> "WebhookDelivery":
        """Create a pending delivery for a matched subscription."""
        return cls(
            id=cls.delivery_id(event, subscription_id, webhook_id),
            subscription_id=subscription_id,
            webhook_id=webhook_id,
            event=event,
            max_attempts=max(1, max_attempts),
        )

    def begin_attempt(self) -> int:
        """Move to in_flight and return the new attempt number."""
        self.attempts += 1
        self.status = DeliveryStatus.IN_FLIGHT
        self.next_retry_at = None
        return self.attempts

    def mark_delivered(self) -> "WebhookDelivery":
        self.status = DeliveryStatus.DELIVERED
        self.last_error = None
        self.completed_at = datetime.now(UTC)
        return self

    def mark_failed(self, error: str | None) -> "WebhookDelivery":
        """Record a failed attempt pending the retry decision."""
        self.status = DeliveryStatus.FAILED
        self.last_error = error
        return self

    def mark_retrying(self, next_retry_at: datetime) -> "WebhookDelivery":
        self.status = DeliveryStatus.PENDING
        self.next_retry_at = next_retry_at
        return self

    def mark_abandoned(self, error: str | None = None) -> "WebhookDelivery":
        self.status = DeliveryStatus.ABANDONED
        if error:
            self.last_error = error
        self.next_retry_at = None
        self.completed_at = datetime.now(UTC)
        return self


class AttemptRecord(BaseModel):
    """Persisted outcome of one attempt, keyed by (delivery_id, attempt)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    delivery_id: str
    webhook_id: str
    attempt: int = Field(ge=1)
    success: bool
    status_code: int | None = None
    latency_ms: float = 0.0
    error: str | None = None
    failure_class: FailureClass | None = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> tuple[str, int]:
        return (self.delivery_id, self.attempt)

    @classmethod
    def from_result(
        cls, delivery: WebhookDelivery, result: DeliveryResult
    ) -> "AttemptRecord":
        """Snapshot the delivery's current attempt and its result."""
        return cls(
            delivery_id=delivery.id,
            webhook_id=delivery.webhook_id,
            attempt=max(1, delivery.attempts),
            success=result.success,
            status_code=result.status_code,
            latency_ms=result.latency_ms,
            error=result.error,
            failure_class=result.failure_class,
        )


class DeliveryStats(BaseModel):
    """Per-webhook statistics, always derived from attempt records."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    average_response_time_ms: float = 0.0
    last_error: str | None = None


__all__ = [
    "AttemptRecord",
    "DeliveryResult",
    "DeliveryStats",
    "DeliveryStatus",
    "FailureClass",
    "WebhookDelivery",
]
