"""Test doubles shared across the hookrelay test suite."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from hookrelay.models import ChainEvent, Subscription, WebhookConfig
from hookrelay.storage import InMemoryConfigStore, JobStore, WebhookConfigProvider
from hookrelay.webhooks import (
    CircuitBreakerRegistry,
    Dispatcher,
    HttpClient,
    RetryPolicy,
    RetryScheduler,
    WebhookSender,
)

CONTRACT = "0x1234567890abcdef1234567890abcdef12345678"
SENDER = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
RECIPIENT = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
TX_HASH = "0x" + "ab" * 32


class FakeClock:
    """Controllable clock for backoff timers.

    With ``auto_advance`` every sleep completes immediately and moves time
    forward. Without it, sleepers stay suspended until ``advance`` passes
    their deadline.
    """

    def __init__(self, auto_advance: bool = True) -> None:
        self.auto_advance = auto_advance
        self.sleeps: list[float] = []
        self._now = datetime(2024, 1, 1, tzinfo=UTC)
        self._monotonic = 0.0
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.auto_advance:
            self.advance(seconds)
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._monotonic + seconds, future))
        await future

    def advance(self, seconds: float) -> None:
        self._monotonic += seconds
        self._now += timedelta(seconds=seconds)
        pending = []
        for deadline, future in self._sleepers:
            if deadline <= self._monotonic:
                if not future.done():
                    future.set_result(None)
            else:
                pending.append((deadline, future))
        self._sleepers = pending


class ScriptedEndpoint:
    """Mock HTTP endpoint answering with a scripted list of status codes.

    The last status repeats once the script runs out. Tracks every request
    and the peak number of concurrent requests.
    """

    def __init__(self, statuses: list[int] | None = None, delay_s: float = 0.0) -> None:
        self.statuses = list(statuses or [200])
        self.delay_s = delay_s
        self.requests: list[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            index = min(len(self.requests) - 1, len(self.statuses) - 1)
            return httpx.Response(self.statuses[index], text="ok")
        finally:
            self.in_flight -= 1

    @property
    def calls(self) -> int:
        return len(self.requests)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def make_event(log_index: int = 0, **overrides: Any) -> ChainEvent:
    data: dict[str, Any] = {
        "contract_address": CONTRACT,
        "event_name": "Transfer",
        "block_number": 18_000_000,
        "transaction_hash": TX_HASH,
        "log_index": log_index,
        "args": {"from": SENDER, "to": RECIPIENT, "value": "1000000000000000000"},
        "timestamp": datetime(2024, 1, 15, 12, 30, 45, tzinfo=UTC),
    }
    data.update(overrides)
    return ChainEvent(**data)


def make_webhook(webhook_id: str = "whk_test", **overrides: Any) -> WebhookConfig:
    data: dict[str, Any] = {
        "id": webhook_id,
        "url": "https://hooks.example.com/ingest",
        "format": "generic",
        "retry_attempts": 3,
        "timeout_ms": 5000,
    }
    data.update(overrides)
    return WebhookConfig(**data)


def make_subscription(
    webhook_ids: list[str], subscription_id: str = "sub_test", **overrides: Any
) -> Subscription:
    data: dict[str, Any] = {
        "id": subscription_id,
        "contract_addresses": [CONTRACT],
        "event_names": ["Transfer"],
        "webhook_ids": webhook_ids,
    }
    data.update(overrides)
    return Subscription(**data)


def build_dispatcher(
    endpoint: ScriptedEndpoint,
    webhooks: list[WebhookConfig],
    subscriptions: list[Subscription],
    clock: FakeClock | None = None,
    concurrency: int = 2,
    drain_timeout_s: float = 1.0,
    circuit_breakers: CircuitBreakerRegistry | None = None,
    refresh_interval_s: float = 0.0,
    store: InMemoryConfigStore | None = None,
    job_store: JobStore | None = None,
) -> Dispatcher:
    """Dispatcher over in-memory stores and a mock HTTP endpoint."""
    if store is None:
        store = InMemoryConfigStore(webhooks, subscriptions)
    provider = WebhookConfigProvider(store)
    http_client = HttpClient(transport=endpoint.transport())
    sender = WebhookSender(
        http_client, config_provider=provider, circuit_breakers=circuit_breakers
    )
    scheduler = RetryScheduler(
        RetryPolicy(base_delay_s=1.0, max_delay_s=30.0, jitter_factor=0.0),
        clock or FakeClock(),
        random.Random(7),
    )
    return Dispatcher(
        provider,
        sender,
        scheduler=scheduler,
        job_store=job_store,
        concurrency=concurrency,
        drain_timeout_s=drain_timeout_s,
        circuit_breakers=circuit_breakers,
        refresh_interval_s=refresh_interval_s,
        http_client=http_client,
    )


async def wait_until(
    predicate: Callable[[], bool | Awaitable[bool]], timeout: float = 2.0
) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    async with asyncio.timeout(timeout):
        while True:
            outcome = predicate()
            if not isinstance(outcome, bool):
                outcome = await outcome
            if outcome:
                return
            await asyncio.sleep(0.001)
