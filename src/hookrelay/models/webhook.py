"""Webhook and subscription definitions.

These are read-only copies of rows owned by the external config store.
Construction is deliberately permissive: a malformed row must still be
representable so the sender can report it as ``config_invalid`` instead of
the whole config load failing.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id


class WebhookFormat(str, Enum):
    """Payload formats with a built-in formatter."""

    GENERIC = "generic"
    ZAPIER = "zapier"
    MAKE = "make"
    N8N = "n8n"


class WebhookConfig(BaseModel):
    """Configuration for a registered webhook destination.

    Attributes:
        id: Unique identifier for this webhook.
        url: HTTP(S) endpoint receiving POSTs.
        format: Payload format name (see WebhookFormat).
        headers: Extra request headers; override the defaults.
        timeout_ms: Per-attempt request timeout in milliseconds.
        retry_attempts: Attempt budget for a delivery (0 still allows one).
        active: Inactive webhooks are never delivered to.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("whk"))
    url: str = Field(description="Destination URL")
    format: str = Field(default=WebhookFormat.GENERIC.value, description="Payload format name")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    timeout_ms: int = Field(default=30000, description="Request timeout in milliseconds")
    retry_attempts: int = Field(default=3, description="Maximum delivery attempts")
    active: bool = Field(default=True, description="Whether the webhook receives deliveries")

    @property
    def max_attempts(self) -> int:
        """Attempt budget for one delivery; the first attempt always happens."""
        return max(1, self.retry_attempts)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class Subscription(BaseModel):
    """Routes matching chain events to one or more webhooks.

    Empty ``contract_addresses`` or ``event_names`` match anything.

    Attributes:
        id: Unique identifier for this subscription.
        contract_addresses: Contract addresses to match (case-insensitive).
        event_names: Event names to match.
        filters: Argument filters (see hookrelay.filtering).
        webhook_ids: Webhooks that receive matching events.
        active: Inactive subscriptions never match.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("sub"))
    contract_addresses: list[str] = Field(default_factory=list)
    event_names: list[str] = Field(default_factory=list)
    filters: dict[str, Any] = Field(default_factory=dict)
    webhook_ids: list[str] = Field(default_factory=list)
    active: bool = Field(default=True)


__all__ = ["Subscription", "WebhookConfig", "WebhookFormat"]
