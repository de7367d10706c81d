"""Data models for hookrelay.

Event and configuration:
    - ChainEvent: Decoded contract event from the event source
    - WebhookConfig: Destination definition (URL, format, headers, limits)
    - Subscription: Routes matching events to webhooks

Delivery lifecycle:
    - WebhookDelivery: One event to one webhook, across attempts
    - DeliveryResult: Immutable outcome of a single attempt
    - AttemptRecord: Persisted form of a result
    - DeliveryStats: Per-webhook aggregates derived from attempt records
"""

from .base import generate_id, stable_id
from .delivery import (
    AttemptRecord,
    DeliveryResult,
    DeliveryStats,
    DeliveryStatus,
    FailureClass,
    WebhookDelivery,
)
from .event import ChainEvent
from .webhook import Subscription, WebhookConfig, WebhookFormat

__all__ = [
    # Helpers
    "generate_id",
    "stable_id",
    # Events and config
    "ChainEvent",
    "Subscription",
    "WebhookConfig",
    "WebhookFormat",
    # Delivery
    "AttemptRecord",
    "DeliveryResult",
    "DeliveryStats",
    "DeliveryStatus",
    "FailureClass",
    "WebhookDelivery",
]
