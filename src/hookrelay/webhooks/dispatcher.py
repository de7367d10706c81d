"""Bounded-concurrency delivery dispatcher.

Events come in through ``on_event``; each (event, subscription, webhook)
match becomes one WebhookDelivery with a deterministic id. A fixed pool of
worker tasks drains a queue of delivery ids, one attempt at a time. After
every attempt the result is tracked, then the retry scheduler decides:
delivered, abandoned, or retried after a backoff that runs in its own timer
task so a waiting retry never holds a worker.

Example:
    ```python
    dispatcher = Dispatcher.from_settings(config_store=store)
    await dispatcher.start()

    delivery_ids = await dispatcher.on_event(event)
    delivery = await dispatcher.wait_for(delivery_ids[0])
    print(delivery.status, delivery.attempts)

    await dispatcher.stop()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import timedelta
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from hookrelay.config import Settings
from hookrelay.exceptions import DispatcherError, NotFoundError
from hookrelay.logging import bind_context, configure_logging, unbind_context
from hookrelay.models import DeliveryResult, DeliveryStatus, FailureClass, WebhookDelivery
from hookrelay.monitoring import MetricsCollector, PerformanceMonitor
from hookrelay.storage import (
    DeadLetterQueue,
    DeliveryTracker,
    InMemoryJobStore,
    WebhookConfigProvider,
)

from .circuit_breaker import CircuitBreakerRegistry
from .http_client import HttpClient
from .retry import RetryAction, RetryPolicy, RetryScheduler
from .sender import WebhookSender

if TYPE_CHECKING:
    import httpx

    from hookrelay.models import ChainEvent
    from hookrelay.storage import ConfigStore, JobStore

    from .retry import Clock

logger = logging.getLogger(__name__)

NON_TERMINAL = (DeliveryStatus.PENDING, DeliveryStatus.IN_FLIGHT, DeliveryStatus.FAILED)
SHUTDOWN_REASON = "Dispatcher shut down before delivery completed"


class DispatcherStats(BaseModel):
    """Point-in-time view of the dispatcher."""

    model_config = ConfigDict(extra="forbid")

    running: bool
    concurrency: int
    queue_depth: int
    active_deliveries: int
    scheduled_retries: int
    outstanding: int
    created: int
    deduplicated: int
    attempts: int
    delivered: int
    abandoned: int


class Dispatcher:
    """Owns delivery jobs from creation to a terminal state."""

    def __init__(
        self,
        config_provider: WebhookConfigProvider,
        sender: WebhookSender,
        tracker: DeliveryTracker | None = None,
        scheduler: RetryScheduler | None = None,
        job_store: JobStore | None = None,
        monitor: PerformanceMonitor | None = None,
        dead_letters: DeadLetterQueue | None = None,
        concurrency: int = 4,
        drain_timeout_s: float = 30.0,
        circuit_breakers: CircuitBreakerRegistry | None = None,
        refresh_interval_s: float = 0.0,
        http_client: HttpClient | None = None,
        queue_backlog_threshold: int = 100,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config_provider: Source of webhook configs and subscriptions.
            sender: Performs single attempts.
            tracker: Records attempts (in-memory by default).
            scheduler: Retry decisions and backoff clock.
            job_store: Storage for deliveries (in-memory by default).
            monitor: Metrics sink.
            dead_letters: Receives abandoned deliveries.
            concurrency: Worker pool size, the maximum attempts in flight.
            drain_timeout_s: How long ``stop()`` waits for in-flight attempts.
            circuit_breakers: Breakers shared with the sender, for health checks.
            refresh_interval_s: Background config refresh period (0 disables).
            http_client: Client to close on ``stop()``, when the dispatcher
                owns it.
            queue_backlog_threshold: Queue depth the backlog health check
                tolerates.

        Raises:
            DispatcherError: If concurrency is below 1.
        """
        if concurrency < 1:
            raise DispatcherError(f"concurrency must be >= 1, got {concurrency}")

        self.config_provider = config_provider
        self.sender = sender
        self.tracker = tracker or DeliveryTracker()
        self.scheduler = scheduler or RetryScheduler()
        self.jobs: JobStore = job_store or InMemoryJobStore()
        self.monitor = monitor or PerformanceMonitor()
        self.dead_letters = dead_letters or DeadLetterQueue()
        self.concurrency = concurrency
        self._drain_timeout_s = drain_timeout_s
        self._breakers = circuit_breakers
        self._refresh_interval_s = refresh_interval_s
        self._owned_http_client = http_client
        self.queue_backlog_threshold = queue_backlog_threshold

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._retry_timers: dict[str, asyncio.Task[None]] = {}
        self._refresh_task: asyncio.Task[None] | None = None
        self._waiters: dict[str, asyncio.Future[WebhookDelivery]] = {}
        self._active: set[str] = set()
        self._outstanding: set[str] = set()
        self._no_active = asyncio.Event()
        self._no_active.set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._accepting = False
        self._running = False
        self._totals = {
            "created": 0,
            "deduplicated": 0,
            "attempts": 0,
            "delivered": 0,
            "abandoned": 0,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        config_store: ConfigStore | None = None,
        config_provider: WebhookConfigProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> Dispatcher:
        """Wire a dispatcher and its collaborators from settings.

        Args:
            settings: Engine settings. Uses defaults if None.
            config_store: Store to build a config provider from.
            config_provider: Existing provider; takes precedence over the store.
            transport: Optional httpx transport for the HTTP client.
            clock: Clock for backoff timers.
            rng: Random source for jitter.

        Raises:
            DispatcherError: If neither a store nor a provider is given.
        """
        if settings is None:
            settings = Settings()

        configure_logging(settings.log_level, settings.log_format)

        if config_provider is None:
            if config_store is None:
                raise DispatcherError("from_settings needs a config_store or config_provider")
            config_provider = WebhookConfigProvider(
                config_store,
                default_timeout_ms=settings.default_timeout_ms,
                default_retry_attempts=settings.default_retry_attempts,
            )

        breakers = None
        if settings.circuit_breaker_enabled:
            breakers = CircuitBreakerRegistry(
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=settings.circuit_reset_timeout_seconds,
            )

        http_client = HttpClient(transport=transport)
        sender = WebhookSender(
            http_client,
            config_provider=config_provider,
            circuit_breakers=breakers,
        )
        return cls(
            config_provider=config_provider,
            sender=sender,
            tracker=DeliveryTracker(history_limit=settings.tracker_history_limit),
            scheduler=RetryScheduler(RetryPolicy.from_settings(settings.retry), clock, rng),
            monitor=PerformanceMonitor(
                MetricsCollector(histogram_max_samples=settings.histogram_max_samples)
            ),
            concurrency=settings.max_concurrent_deliveries,
            drain_timeout_s=settings.drain_timeout_seconds,
            circuit_breakers=breakers,
            refresh_interval_s=settings.config_refresh_interval_seconds,
            http_client=http_client,
            queue_backlog_threshold=settings.queue_backlog_threshold,
        )

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Load configs if needed and start the worker pool.

        Raises:
            StorageError: If the initial config load fails.
        """
        if self._running:
            logger.warning("Dispatcher already running")
            return

        if not self.config_provider.loaded:
            await self.config_provider.load_webhook_configs()

        self._accepting = True
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"hookrelay-worker-{i}")
            for i in range(self.concurrency)
        ]
        if self._refresh_interval_s > 0:
            self._refresh_task = asyncio.create_task(
                self._refresh_loop(), name="hookrelay-config-refresh"
            )
        logger.info("Dispatcher started with %d workers", self.concurrency)
        self._publish()

    async def stop(self) -> None:
        """Shut down gracefully.

        Stops accepting work, cancels scheduled retries, waits up to the
        drain timeout for in-flight attempts, then abandons every delivery
        that has not reached a terminal state and dead-letters it.
        """
        if not self._running:
            return

        self._accepting = False
        logger.info(
            "Dispatcher stopping: %d in flight, %d queued, %d retries scheduled",
            len(self._active),
            self._queue.qsize(),
            len(self._retry_timers),
        )

        timers = list(self._retry_timers.values())
        self._retry_timers.clear()
        if self._refresh_task is not None:
            timers.append(self._refresh_task)
            self._refresh_task = None
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

        if self._active:
            try:
                async with asyncio.timeout(self._drain_timeout_s):
                    await self._no_active.wait()
            except TimeoutError:
                logger.warning(
                    "Drain timeout after %.1fs, interrupting %d attempts",
                    self._drain_timeout_s,
                    len(self._active),
                )

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._running = False

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        for delivery in await self.jobs.list(NON_TERMINAL):
            if delivery.status is DeliveryStatus.IN_FLIGHT:
                interrupted = DeliveryResult.failure(
                    FailureClass.INTERNAL_ERROR, "Attempt interrupted by shutdown"
                )
                await self.tracker.track_delivery(delivery, interrupted)
            delivery.mark_abandoned(SHUTDOWN_REASON)
            await self._close(delivery, SHUTDOWN_REASON)

        self._publish()
        if self._owned_http_client is not None:
            await self._owned_http_client.aclose()
        logger.info("Dispatcher stopped")

    async def __aenter__(self) -> Dispatcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.stop()

    # Ingress

    async def on_event(self, event: ChainEvent) -> list[str]:
        """Create deliveries for every subscription the event matches.

        Returns:
            IDs of newly created deliveries. Deliveries that already exist
            for the same event, subscription and webhook are skipped.

        Raises:
            DispatcherError: If the dispatcher is not running.
        """
        self._ensure_accepting()
        # One snapshot per event; a refresh may swap it during submit()
        snapshot = self.config_provider.snapshot
        created: list[str] = []
        for subscription in self.config_provider.matching_subscriptions(event, snapshot):
            for webhook_id in dict.fromkeys(subscription.webhook_ids):
                config = snapshot.webhooks.get(webhook_id)
                if config is not None and not config.active:
                    logger.debug("Skipping inactive webhook %s", webhook_id)
                    continue
                # A missing config still gets a delivery so it surfaces as config_invalid
                max_attempts = config.max_attempts if config is not None else 1
                delivery = WebhookDelivery.create(event, subscription.id, webhook_id, max_attempts)
                if await self.submit(delivery):
                    created.append(delivery.id)
        return created

    async def submit(self, delivery: WebhookDelivery) -> bool:
        """Enqueue a prepared delivery.

        Returns:
            False if a delivery with the same id already exists.

        Raises:
            DispatcherError: If the dispatcher is not running or the delivery
                is not pending.
        """
        self._ensure_accepting()
        if delivery.status is not DeliveryStatus.PENDING:
            raise DispatcherError(f"Cannot submit {delivery.status.value} delivery {delivery.id}")

        if not await self.jobs.add(delivery):
            self._totals["deduplicated"] += 1
            self.monitor.metrics.increment_counter("deliveries_deduplicated_total")
            logger.debug("Delivery %s already exists, skipping", delivery.id)
            return False

        self._totals["created"] += 1
        self.monitor.metrics.increment_counter(
            "deliveries_created_total", {"webhook_id": delivery.webhook_id}
        )
        self._outstanding.add(delivery.id)
        self._idle.clear()
        self._enqueue(delivery.id)
        return True

    async def requeue_dead_letter(self, delivery_id: str) -> WebhookDelivery:
        """Give an abandoned delivery a fresh attempt budget.

        Attempt numbering continues from the previous attempts so earlier
        records are kept.

        Raises:
            NotFoundError: If the id is not in the dead-letter queue.
            DispatcherError: If the dispatcher is not running.
        """
        self._ensure_accepting()
        entry = self.dead_letters.remove(delivery_id)
        delivery = entry.delivery
        config = self.config_provider.get_webhook_config(delivery.webhook_id)
        budget = config.max_attempts if config is not None else 1

        delivery.status = DeliveryStatus.PENDING
        delivery.max_attempts = delivery.attempts + budget
        delivery.completed_at = None
        delivery.next_retry_at = None
        await self.jobs.update(delivery)

        self._outstanding.add(delivery.id)
        self._idle.clear()
        self._enqueue(delivery.id)
        logger.info("Requeued dead letter %s", delivery_id)
        return delivery

    # Completion

    async def wait_for(self, delivery_id: str, timeout: float | None = None) -> WebhookDelivery:
        """Wait until a delivery reaches a terminal state.

        Raises:
            NotFoundError: If the delivery is unknown.
            TimeoutError: If ``timeout`` elapses first.
        """
        delivery = await self.jobs.get(delivery_id)
        if delivery is None:
            raise NotFoundError("delivery", delivery_id)
        if delivery.status.is_terminal:
            return delivery

        future = self._waiters.get(delivery_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._waiters[delivery_id] = future
        async with asyncio.timeout(timeout):
            return await asyncio.shield(future)

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until every delivery has reached a terminal state.

        Raises:
            TimeoutError: If ``timeout`` elapses first.
        """
        async with asyncio.timeout(timeout):
            await self._idle.wait()

    # Introspection

    def stats(self) -> DispatcherStats:
        return DispatcherStats(
            running=self._running,
            concurrency=self.concurrency,
            queue_depth=self._queue.qsize(),
            active_deliveries=len(self._active),
            scheduled_retries=len(self._retry_timers),
            outstanding=len(self._outstanding),
            **self._totals,
        )

    def open_circuits(self) -> list[str]:
        return self._breakers.open_circuits() if self._breakers is not None else []

    # Internals

    def _ensure_accepting(self) -> None:
        if not self._accepting:
            raise DispatcherError("Dispatcher is not accepting deliveries")

    def _publish(self) -> None:
        self.monitor.record_queue(self._queue.qsize(), len(self._active))

    def _enqueue(self, delivery_id: str) -> None:
        self._queue.put_nowait(delivery_id)
        self._publish()

    async def _worker(self, index: int) -> None:
        while True:
            delivery_id = await self._queue.get()
            try:
                if not self._accepting:
                    # Left pending; stop() abandons it
                    continue
                await self._process(delivery_id)
            except Exception as e:
                logger.exception("Worker %d failed on delivery %s", index, delivery_id)
                await self._abandon_after_error(delivery_id, e)
            finally:
                self._queue.task_done()

    async def _process(self, delivery_id: str) -> None:
        delivery = await self.jobs.get(delivery_id)
        if delivery is None or delivery.status.is_terminal or delivery_id in self._active:
            return

        self._active.add(delivery_id)
        self._no_active.clear()
        bind_context(delivery_id=delivery_id, webhook_id=delivery.webhook_id)
        try:
            attempt = delivery.begin_attempt()
            await self.jobs.update(delivery)
            self._totals["attempts"] += 1
            self._publish()

            try:
                result = await self.sender.send_webhook(delivery)
            except Exception as e:
                logger.exception("Sender raised during attempt %d", attempt)
                result = DeliveryResult.failure(
                    FailureClass.INTERNAL_ERROR, f"{type(e).__name__}: {e}"
                )

            await self.tracker.track_delivery(delivery, result)
            self.monitor.record_attempt(delivery.webhook_id, result, attempt)
            await self._resolve(delivery, result)
        finally:
            self._active.discard(delivery_id)
            if not self._active:
                self._no_active.set()
            unbind_context("delivery_id", "webhook_id")
            self._publish()

    async def _resolve(self, delivery: WebhookDelivery, result: DeliveryResult) -> None:
        decision = self.scheduler.decide(delivery, result)

        if decision.action is RetryAction.DELIVER:
            delivery.mark_delivered()
            logger.info("Delivered %s after %d attempts", delivery.id, delivery.attempts)
            await self._close(delivery)
            return

        delivery.mark_failed(result.error)

        if decision.action is RetryAction.ABANDON:
            delivery.mark_abandoned()
            logger.warning("Abandoned %s: %s", delivery.id, decision.reason)
            await self._close(delivery, decision.reason)
            return

        if not self._accepting:
            delivery.mark_abandoned(SHUTDOWN_REASON)
            await self._close(delivery, SHUTDOWN_REASON)
            return

        next_retry_at = self.scheduler.clock.now() + timedelta(seconds=decision.delay_s)
        delivery.mark_retrying(next_retry_at)
        await self.jobs.update(delivery)
        self._retry_timers[delivery.id] = asyncio.create_task(
            self._retry_after(delivery.id, decision.delay_s),
            name=f"hookrelay-retry-{delivery.id}",
        )
        logger.info("Scheduled %s: %s", delivery.id, decision.reason)

    async def _retry_after(self, delivery_id: str, delay_s: float) -> None:
        await self.scheduler.clock.sleep(delay_s)
        self._retry_timers.pop(delivery_id, None)
        if self._accepting:
            self._enqueue(delivery_id)

    async def _close(self, delivery: WebhookDelivery, reason: str | None = None) -> None:
        """Persist a terminal delivery and release anything waiting on it."""
        await self.jobs.update(delivery)

        status = delivery.status.value
        if delivery.status is DeliveryStatus.DELIVERED:
            self._totals["delivered"] += 1
        else:
            self._totals["abandoned"] += 1
            self.dead_letters.add(delivery, reason or delivery.last_error or "abandoned")

        if delivery.completed_at is not None:
            duration_ms = (delivery.completed_at - delivery.created_at).total_seconds() * 1000.0
            self.monitor.record_delivery_duration(
                delivery.webhook_id, max(0.0, duration_ms), status
            )

        self._outstanding.discard(delivery.id)
        if not self._outstanding:
            self._idle.set()
        future = self._waiters.pop(delivery.id, None)
        if future is not None and not future.done():
            future.set_result(delivery)

    async def _abandon_after_error(self, delivery_id: str, error: Exception) -> None:
        delivery = await self.jobs.get(delivery_id)
        if delivery is None or delivery.status.is_terminal:
            return
        reason = f"Internal error: {type(error).__name__}: {error}"
        delivery.mark_abandoned(reason)
        try:
            await self._close(delivery, reason)
        except Exception:
            logger.exception("Could not close delivery %s after error", delivery_id)

    async def _refresh_loop(self) -> None:
        while True:
            await self.scheduler.clock.sleep(self._refresh_interval_s)
            try:
                async with self.monitor.time_operation("config_refresh"):
                    await self.config_provider.refresh_configs()
            except Exception:
                logger.exception("Config refresh failed, retrying next interval")
