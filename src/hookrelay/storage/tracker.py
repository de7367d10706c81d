"""Attempt persistence and per-webhook statistics.

Every attempt is written as an AttemptRecord keyed by
``(delivery_id, attempt)``. Statistics are recomputed from those records
on each query, so they can always be rebuilt from the log and replaying
an attempt never double-counts it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from hookrelay.models import AttemptRecord, DeliveryStats

if TYPE_CHECKING:
    from hookrelay.models import DeliveryResult, WebhookDelivery

logger = logging.getLogger(__name__)


@runtime_checkable
class AttemptLog(Protocol):
    """Durable store of attempt records."""

    async def add(self, record: AttemptRecord) -> bool:
        """Store a record. Returns False if its key already exists."""
        ...

    async def records_for_webhook(self, webhook_id: str) -> list[AttemptRecord]:
        """All records for a webhook, oldest first."""
        ...

    async def records_for_delivery(self, delivery_id: str) -> list[AttemptRecord]:
        """All records for a delivery, ordered by attempt number."""
        ...


class InMemoryAttemptLog:
    """AttemptLog kept in process memory."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, int], AttemptRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: AttemptRecord) -> bool:
        async with self._lock:
            if record.key in self._records:
                return False
            self._records[record.key] = record
            return True

    async def records_for_webhook(self, webhook_id: str) -> list[AttemptRecord]:
        async with self._lock:
            return [r for r in self._records.values() if r.webhook_id == webhook_id]

    async def records_for_delivery(self, delivery_id: str) -> list[AttemptRecord]:
        async with self._lock:
            records = [r for r in self._records.values() if r.delivery_id == delivery_id]
        return sorted(records, key=lambda r: r.attempt)

    def __len__(self) -> int:
        return len(self._records)


def compute_stats(webhook_id: str, records: list[AttemptRecord]) -> DeliveryStats:
    """Aggregate attempt records into webhook statistics."""
    if not records:
        return DeliveryStats(webhook_id=webhook_id)

    successful = sum(1 for r in records if r.success)
    average = sum(r.latency_ms for r in records) / len(records)
    failures = [r for r in records if not r.success and r.error]
    last_error = max(failures, key=lambda r: r.recorded_at).error if failures else None

    return DeliveryStats(
        webhook_id=webhook_id,
        total_deliveries=len(records),
        successful_deliveries=successful,
        failed_deliveries=len(records) - successful,
        average_response_time_ms=round(average, 3),
        last_error=last_error,
    )


class DeliveryTracker:
    """Records attempts and answers statistics queries.

    Example:
        ```python
        tracker = DeliveryTracker()
        await tracker.track_delivery(delivery, result)
        stats = await tracker.get_delivery_stats(delivery.webhook_id)
        ```
    """

    def __init__(self, log: AttemptLog | None = None, history_limit: int = 1000) -> None:
        self._log: AttemptLog = log or InMemoryAttemptLog()
        self._history_limit = history_limit

    async def track_delivery(self, delivery: WebhookDelivery, result: DeliveryResult) -> bool:
        """Record the delivery's current attempt.

        Returns:
            True if recorded, False if this attempt was already tracked.
        """
        record = AttemptRecord.from_result(delivery, result)
        added = await self._log.add(record)
        if not added:
            logger.debug(
                "Attempt %d of %s already tracked", record.attempt, record.delivery_id
            )
        return added

    async def get_delivery_stats(self, webhook_id: str) -> DeliveryStats:
        records = await self._log.records_for_webhook(webhook_id)
        return compute_stats(webhook_id, records)

    async def get_attempts(self, delivery_id: str) -> list[AttemptRecord]:
        return await self._log.records_for_delivery(delivery_id)

    async def recent_deliveries(
        self, webhook_id: str, limit: int | None = None
    ) -> list[AttemptRecord]:
        """Most recent attempt records for a webhook, newest first."""
        limit = self._history_limit if limit is None else limit
        records = await self._log.records_for_webhook(webhook_id)
        records.sort(key=lambda r: r.recorded_at, reverse=True)
        return records[:limit]
