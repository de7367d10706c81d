"""Metrics, timing and health for the delivery engine."""

from .health import HealthChecker, HealthState, HealthStatus
from .metrics import HistogramData, MetricsCollector, MetricType, series_key
from .performance import ACTIVE_DELIVERIES_GAUGE, QUEUE_DEPTH_GAUGE, PerformanceMonitor

__all__ = [
    "ACTIVE_DELIVERIES_GAUGE",
    "QUEUE_DEPTH_GAUGE",
    "HealthChecker",
    "HealthState",
    "HealthStatus",
    "HistogramData",
    "MetricType",
    "MetricsCollector",
    "PerformanceMonitor",
    "series_key",
]
