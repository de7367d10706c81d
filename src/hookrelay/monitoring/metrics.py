"""In-process metrics: counters, gauges and histograms.

Series are identified by name plus labels. Exporters read ``snapshot()``
or ``prometheus_text()``; nothing here talks to the network.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)

Labels = dict[str, str]


class MetricType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class HistogramData:
    """Running aggregates plus a bounded window of recent samples."""

    max_samples: int = 1000
    count: int = 0
    sum: float = 0.0
    min: float = math.inf
    max: float = -math.inf
    samples: deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.samples = deque(self.samples, maxlen=self.max_samples)

    def observe(self, value: float) -> None:
        self.count += 1
        self.sum += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.samples.append(value)

    @property
    def mean(self) -> float:
        return self.sum / self.count if self.count else 0.0

    def percentile(self, pct: float) -> float:
        """Nearest-rank percentile over the retained samples."""
        if not self.samples:
            return 0.0
        ordered = sorted(self.samples)
        rank = max(1, math.ceil(pct / 100.0 * len(ordered)))
        return ordered[min(rank, len(ordered)) - 1]


@dataclass
class MetricSeries:
    name: str
    type: MetricType
    labels: Labels
    value: float = 0.0
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    histogram: HistogramData | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "name": self.name,
            "type": self.type.value,
            "labels": dict(self.labels),
            "value": self.value,
            "updated_at": self.updated_at.isoformat(),
        }
        if self.histogram is not None:
            data.update(
                count=self.histogram.count,
                sum=self.histogram.sum,
                min=self.histogram.min if self.histogram.count else 0.0,
                max=self.histogram.max if self.histogram.count else 0.0,
                mean=self.histogram.mean,
                p50=self.histogram.percentile(50),
                p95=self.histogram.percentile(95),
                p99=self.histogram.percentile(99),
            )
        return data


def series_key(name: str, labels: Labels | None = None) -> str:
    """Stable key for a series: ``name{a=1,b=2}`` with sorted labels."""
    if not labels:
        return name
    rendered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}{{{rendered}}}"


class MetricsCollector:
    """Thread-safe registry of metric series.

    Example:
        ```python
        metrics = MetricsCollector()
        metrics.increment_counter("webhook_deliveries_total", {"status": "success"})
        metrics.record_histogram("webhook_response_time_ms", 42.0)
        print(metrics.prometheus_text())
        ```
    """

    def __init__(self, histogram_max_samples: int = 1000) -> None:
        self._histogram_max_samples = histogram_max_samples
        self._series: dict[str, MetricSeries] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, name: str, metric_type: MetricType, labels: Labels) -> MetricSeries:
        key = series_key(name, labels)
        series = self._series.get(key)
        if series is None or series.type is not metric_type:
            if series is not None:
                logger.warning("Metric %s changed type to %s", key, metric_type.value)
            series = MetricSeries(name=name, type=metric_type, labels=dict(labels))
            if metric_type is MetricType.HISTOGRAM:
                series.histogram = HistogramData(max_samples=self._histogram_max_samples)
            self._series[key] = series
        return series

    def increment_counter(
        self, name: str, labels: Labels | None = None, value: float = 1.0
    ) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            series = self._get_or_create(name, MetricType.COUNTER, labels or {})
            series.value += value
            series.updated_at = datetime.now(UTC)

    def record_gauge(self, name: str, value: float, labels: Labels | None = None) -> None:
        with self._lock:
            series = self._get_or_create(name, MetricType.GAUGE, labels or {})
            series.value = value
            series.updated_at = datetime.now(UTC)

    def record_histogram(self, name: str, value: float, labels: Labels | None = None) -> None:
        with self._lock:
            series = self._get_or_create(name, MetricType.HISTOGRAM, labels or {})
            assert series.histogram is not None
            series.histogram.observe(value)
            series.value = series.histogram.percentile(95)
            series.updated_at = datetime.now(UTC)

    def get_metric(self, name: str, labels: Labels | None = None) -> dict[str, object] | None:
        with self._lock:
            series = self._series.get(series_key(name, labels))
            return series.to_dict() if series is not None else None

    def get_metrics_by_name(self, name: str) -> list[dict[str, object]]:
        with self._lock:
            return [s.to_dict() for s in self._series.values() if s.name == name]

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Copy of every series, keyed by series key."""
        with self._lock:
            return {key: series.to_dict() for key, series in self._series.items()}

    def prometheus_text(self) -> str:
        """Render all series in the Prometheus text exposition format."""
        with self._lock:
            series = list(self._series.values())

        if not series:
            return "# No metrics available\n"

        groups: dict[str, list[MetricSeries]] = {}
        for s in series:
            groups.setdefault(s.name, []).append(s)

        lines: list[str] = []
        for name in sorted(groups):
            members = groups[name]
            metric_type = members[0].type
            prom_type = "summary" if metric_type is MetricType.HISTOGRAM else metric_type.value
            lines.append(f"# TYPE {name} {prom_type}")
            for s in members:
                if s.histogram is None:
                    lines.append(f"{name}{_render_labels(s.labels)} {_fmt(s.value)}")
                    continue
                for pct in (50, 95, 99):
                    labels = {**s.labels, "quantile": str(pct / 100)}
                    value = s.histogram.percentile(pct)
                    lines.append(f"{name}{_render_labels(labels)} {_fmt(value)}")
                lines.append(f"{name}_count{_render_labels(s.labels)} {s.histogram.count}")
                lines.append(f"{name}_sum{_render_labels(s.labels)} {_fmt(s.histogram.sum)}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._series.clear()

    def __len__(self) -> int:
        return len(self._series)


def _render_labels(labels: Labels) -> str:
    if not labels:
        return ""
    rendered = ",".join(f'{k}="{_escape(v)}"' for k, v in sorted(labels.items()))
    return "{" + rendered + "}"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))
