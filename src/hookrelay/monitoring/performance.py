"""Operation timing and delivery metrics on top of MetricsCollector."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from hookrelay.models import generate_id

from .metrics import Labels, MetricsCollector

if TYPE_CHECKING:
    from hookrelay.models import DeliveryResult

logger = logging.getLogger(__name__)

QUEUE_DEPTH_GAUGE = "dispatcher_queue_depth"
ACTIVE_DELIVERIES_GAUGE = "dispatcher_active_deliveries"


class PerformanceMonitor:
    """Records timings and delivery outcomes as metrics.

    Example:
        ```python
        monitor = PerformanceMonitor(MetricsCollector())

        async with monitor.time_operation("config_refresh"):
            await provider.refresh_configs()
        ```
    """

    def __init__(self, metrics: MetricsCollector | None = None) -> None:
        self.metrics = metrics or MetricsCollector()
        self._timers: dict[str, tuple[str, Labels, float]] = {}

    def start_timer(
        self, operation_id: str, operation: str, labels: Labels | None = None
    ) -> None:
        labels = dict(labels or {})
        self._timers[operation_id] = (operation, labels, time.perf_counter())
        self.metrics.increment_counter(
            "operation_started_total", {"operation": operation, **labels}
        )

    def end_timer(
        self,
        operation_id: str,
        success: bool = True,
        error_type: str | None = None,
    ) -> float | None:
        """Stop a timer and record its duration.

        Returns:
            Duration in milliseconds, or None for an unknown timer.
        """
        timer = self._timers.pop(operation_id, None)
        if timer is None:
            logger.warning("Timer not found for operation %s", operation_id)
            return None

        operation, labels, started = timer
        duration_ms = (time.perf_counter() - started) * 1000.0
        series_labels = {"operation": operation, **labels}
        self.metrics.record_histogram("operation_duration_ms", duration_ms, series_labels)
        if success:
            self.metrics.increment_counter("operation_success_total", series_labels)
        else:
            self.metrics.increment_counter(
                "operation_failure_total",
                {**series_labels, "error_type": error_type or "unknown"},
            )
        return duration_ms

    @asynccontextmanager
    async def time_operation(
        self, operation: str, labels: Labels | None = None
    ) -> AsyncIterator[str]:
        """Time the enclosed block.

        The timer is always ended; an exception is recorded as a failure
        with its type name and then re-raised.
        """
        operation_id = generate_id("op")
        self.start_timer(operation_id, operation, labels)
        try:
            yield operation_id
        except BaseException as e:
            self.end_timer(operation_id, success=False, error_type=type(e).__name__)
            raise
        else:
            self.end_timer(operation_id, success=True)

    def record_attempt(self, webhook_id: str, result: DeliveryResult, attempt: int) -> None:
        """Record one delivery attempt's outcome and latency."""
        status = "success" if result.success else "failure"
        labels = {
            "webhook_id": webhook_id,
            "status": status,
            "status_code": str(result.status_code) if result.status_code is not None else "none",
        }
        self.metrics.increment_counter("webhook_deliveries_total", labels)
        self.metrics.record_histogram(
            "webhook_response_time_ms", result.latency_ms, {"webhook_id": webhook_id}
        )
        if result.success:
            self.metrics.increment_counter(
                "webhook_delivery_success_total", {"webhook_id": webhook_id}
            )
        else:
            failure = result.failure_class.value if result.failure_class else "unknown"
            self.metrics.increment_counter(
                "webhook_delivery_failure_total",
                {"webhook_id": webhook_id, "failure_class": failure},
            )
        if attempt > 1:
            self.metrics.increment_counter("webhook_retries_total", {"webhook_id": webhook_id})

    def record_delivery_duration(self, webhook_id: str, duration_ms: float, status: str) -> None:
        """Record time from a delivery's creation to its terminal state."""
        self.metrics.record_histogram(
            "delivery_duration_ms", duration_ms, {"webhook_id": webhook_id, "status": status}
        )
        self.metrics.increment_counter("deliveries_completed_total", {"status": status})

    def record_queue(self, depth: int, active: int) -> None:
        self.metrics.record_gauge(QUEUE_DEPTH_GAUGE, depth)
        self.metrics.record_gauge(ACTIVE_DELIVERIES_GAUGE, active)

    def active_timer_count(self) -> int:
        return len(self._timers)
