"""Delivery job storage.

The dispatcher keeps every delivery it owns in a JobStore instead of
module-level maps. ``add`` refuses ids it has already seen, which is what
makes redundant event ingress idempotent.
"""

from __future__ import annotations

import asyncio
import builtins
from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from hookrelay.exceptions import NotFoundError

if TYPE_CHECKING:
    from hookrelay.models import DeliveryStatus, WebhookDelivery


@runtime_checkable
class JobStore(Protocol):
    """Storage for in-progress and finished deliveries."""

    async def add(self, delivery: WebhookDelivery) -> bool:
        """Insert a delivery. Returns False if its id is already present."""
        ...

    async def get(self, delivery_id: str) -> WebhookDelivery | None: ...

    async def update(self, delivery: WebhookDelivery) -> None:
        """Persist the delivery's current state.

        Raises:
            NotFoundError: If the delivery was never added.
        """
        ...

    async def list(
        self, statuses: Iterable[DeliveryStatus] | None = None
    ) -> builtins.list[WebhookDelivery]: ...


class InMemoryJobStore:
    """JobStore kept in process memory, guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._jobs: dict[str, WebhookDelivery] = {}
        self._lock = asyncio.Lock()

    async def add(self, delivery: WebhookDelivery) -> bool:
        async with self._lock:
            if delivery.id in self._jobs:
                return False
            self._jobs[delivery.id] = delivery
            return True

    async def get(self, delivery_id: str) -> WebhookDelivery | None:
        return self._jobs.get(delivery_id)

    async def update(self, delivery: WebhookDelivery) -> None:
        async with self._lock:
            if delivery.id not in self._jobs:
                raise NotFoundError("delivery", delivery.id)
            self._jobs[delivery.id] = delivery

    async def list(
        self, statuses: Iterable[DeliveryStatus] | None = None
    ) -> builtins.list[WebhookDelivery]:
        wanted = set(statuses) if statuses is not None else None
        async with self._lock:
            return [d for d in self._jobs.values() if wanted is None or d.status in wanted]

    def __len__(self) -> int:
        return len(self._jobs)
