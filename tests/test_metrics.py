"""Tests for the in-process metrics collector."""

import pytest

from hookrelay.monitoring import HistogramData, MetricsCollector, series_key


class TestSeriesKey:
    def test_without_labels(self):
        assert series_key("requests_total") == "requests_total"

    def test_labels_sorted(self):
        """Label order does not change the key."""
        assert series_key("x", {"b": "2", "a": "1"}) == "x{a=1,b=2}"
        assert series_key("x", {"a": "1", "b": "2"}) == series_key("x", {"b": "2", "a": "1"})


class TestHistogramData:
    """Tests for HistogramData."""

    def test_aggregates(self):
        histogram = HistogramData()
        for value in (3.0, 1.0, 2.0):
            histogram.observe(value)

        assert histogram.count == 3
        assert histogram.sum == 6.0
        assert histogram.min == 1.0
        assert histogram.max == 3.0
        assert histogram.mean == 2.0

    def test_nearest_rank_percentiles(self):
        histogram = HistogramData()
        for value in range(1, 101):
            histogram.observe(float(value))

        assert histogram.percentile(50) == 50.0
        assert histogram.percentile(95) == 95.0
        assert histogram.percentile(99) == 99.0
        assert histogram.percentile(100) == 100.0

    def test_sample_window_bounded(self):
        """Only the newest samples feed percentiles; totals keep counting."""
        histogram = HistogramData(max_samples=3)
        for value in (100.0, 1.0, 2.0, 3.0):
            histogram.observe(value)

        assert len(histogram.samples) == 3
        assert histogram.percentile(99) == 3.0
        assert histogram.count == 4
        assert histogram.max == 100.0

    def test_empty(self):
        assert HistogramData().percentile(95) == 0.0
        assert HistogramData().mean == 0.0


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def setup_method(self):
        self.metrics = MetricsCollector()

    def test_counter_accumulates_per_label_set(self):
        self.metrics.increment_counter("deliveries_total", {"status": "success"})
        self.metrics.increment_counter("deliveries_total", {"status": "success"}, 2)
        self.metrics.increment_counter("deliveries_total", {"status": "failure"})

        assert self.metrics.get_metric("deliveries_total", {"status": "success"})["value"] == 3
        assert self.metrics.get_metric("deliveries_total", {"status": "failure"})["value"] == 1
        assert len(self.metrics.get_metrics_by_name("deliveries_total")) == 2

    def test_counter_rejects_negative(self):
        with pytest.raises(ValueError):
            self.metrics.increment_counter("x", value=-1)

    def test_gauge_overwrites(self):
        self.metrics.record_gauge("queue_depth", 5)
        self.metrics.record_gauge("queue_depth", 2)
        assert self.metrics.get_metric("queue_depth")["value"] == 2

    def test_histogram_summary(self):
        for value in (10.0, 20.0, 30.0):
            self.metrics.record_histogram("latency_ms", value)

        metric = self.metrics.get_metric("latency_ms")
        assert metric["type"] == "histogram"
        assert metric["count"] == 3
        assert metric["mean"] == 20.0
        assert metric["p50"] == 20.0
        assert metric["value"] == 30.0

    def test_unknown_metric(self):
        assert self.metrics.get_metric("missing") is None

    def test_snapshot_and_reset(self):
        self.metrics.increment_counter("a")
        self.metrics.record_gauge("b", 1, {"k": "v"})

        assert set(self.metrics.snapshot()) == {"a", "b{k=v}"}
        self.metrics.reset()
        assert len(self.metrics) == 0


class TestPrometheusText:
    """Tests for the Prometheus text rendering."""

    def test_empty(self):
        assert MetricsCollector().prometheus_text() == "# No metrics available\n"

    def test_counter_and_gauge(self):
        metrics = MetricsCollector()
        metrics.increment_counter("deliveries_total", {"webhook_id": "whk_1"})
        metrics.record_gauge("queue_depth", 2.5)

        lines = metrics.prometheus_text().splitlines()
        assert "# TYPE deliveries_total counter" in lines
        assert 'deliveries_total{webhook_id="whk_1"} 1' in lines
        assert "# TYPE queue_depth gauge" in lines
        assert "queue_depth 2.5" in lines

    def test_histogram_as_summary(self):
        metrics = MetricsCollector()
        metrics.record_histogram("latency_ms", 4.0, {"webhook_id": "whk_1"})

        lines = metrics.prometheus_text().splitlines()
        assert "# TYPE latency_ms summary" in lines
        assert 'latency_ms{quantile="0.5",webhook_id="whk_1"} 4' in lines
        assert 'latency_ms{quantile="0.99",webhook_id="whk_1"} 4' in lines
        assert 'latency_ms_count{webhook_id="whk_1"} 1' in lines
        assert 'latency_ms_sum{webhook_id="whk_1"} 4' in lines

    def test_label_values_escaped(self):
        metrics = MetricsCollector()
        metrics.increment_counter("errors_total", {"error": 'say "hi"\n'})

        assert 'errors_total{error="say \\"hi\\"\\n"} 1' in metrics.prometheus_text()
