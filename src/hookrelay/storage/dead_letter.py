"""Dead-letter queue for abandoned deliveries.

Deliveries that are abandoned (non-retryable failure, exhausted attempts,
or shutdown) are kept here with the reason, for inspection and manual
requeue.
"""

from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.exceptions import NotFoundError
from hookrelay.models import WebhookDelivery

logger = logging.getLogger(__name__)


class DeadLetter(BaseModel):
    """An abandoned delivery and why it was abandoned."""

    model_config = ConfigDict(extra="forbid")

    delivery: WebhookDelivery
    reason: str
    dead_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def delivery_id(self) -> str:
        return self.delivery.id


class DeadLetterQueue:
    """Bounded, insertion-ordered store of dead letters.

    When ``max_size`` is reached the oldest entry is dropped.
    """

    def __init__(self, max_size: int = 10000) -> None:
        self._max_size = max_size
        self._entries: OrderedDict[str, DeadLetter] = OrderedDict()

    def add(self, delivery: WebhookDelivery, reason: str) -> DeadLetter:
        entry = DeadLetter(delivery=delivery, reason=reason)
        self._entries.pop(delivery.id, None)
        self._entries[delivery.id] = entry
        while len(self._entries) > self._max_size:
            dropped, _ = self._entries.popitem(last=False)
            logger.warning("Dead-letter queue full, dropped %s", dropped)
        logger.info("Dead-lettered %s: %s", delivery.id, reason)
        return entry

    def get(self, delivery_id: str) -> DeadLetter | None:
        return self._entries.get(delivery_id)

    def entries(self, webhook_id: str | None = None) -> list[DeadLetter]:
        return [
            e
            for e in self._entries.values()
            if webhook_id is None or e.delivery.webhook_id == webhook_id
        ]

    def remove(self, delivery_id: str) -> DeadLetter:
        """Take an entry out of the queue, e.g. to requeue it.

        Raises:
            NotFoundError: If no entry exists for the id.
        """
        entry = self._entries.pop(delivery_id, None)
        if entry is None:
            raise NotFoundError("dead letter", delivery_id)
        return entry

    def stats(self) -> dict[str, object]:
        by_webhook = Counter(e.delivery.webhook_id for e in self._entries.values())
        return {"size": len(self._entries), "by_webhook": dict(by_webhook)}

    def __len__(self) -> int:
        return len(self._entries)
