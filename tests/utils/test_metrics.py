"""
Tests for the Prometheus metrics registry.
"""
from webhook_relay.utils.metrics import Counter, Gauge, Histogram, MetricsRegistry, metrics


class TestCounter:

    def test_inc_per_label_set(self):
        counter = Counter("test_total", "Test counter", ["result"])

        counter.inc(result="inserted")
        counter.inc(result="inserted")
        counter.inc(3, result="duplicate")

        assert counter.get(result="inserted") == 2
        assert counter.get(result="duplicate") == 3
        assert counter.get(result="other") == 0


class TestGauge:

    def test_set_replaces_value(self):
        gauge = Gauge("test_depth", "Test gauge")

        gauge.set(5)
        gauge.set(2)

        assert gauge.get() == 2


class TestHistogram:

    def test_observe_fills_cumulative_buckets(self):
        histogram = Histogram("test_seconds", "Test histogram", buckets=(0.1, 1.0))

        histogram.observe(0.05)
        histogram.observe(0.5)
        histogram.observe(5.0)

        by_le = {mv.labels["le"]: mv.value for mv in histogram.collect() if "le" in mv.labels}
        assert by_le == {"0.1": 1, "1.0": 2, "+Inf": 3}

    def test_timer_records_one_observation(self):
        histogram = Histogram("test_seconds", "Test histogram")

        with histogram.time():
            pass

        counts = [mv.value for mv in histogram.collect() if mv.labels.get("_metric") == "count"]
        assert counts == [1]


class TestMetricsRegistry:

    def test_singleton(self):
        assert MetricsRegistry() is metrics

    def test_export_format(self):
        metrics.messages_persisted.inc(result="inserted")
        metrics.queue_visible.set(4)
        metrics.persist_duration.observe(0.02)

        content = metrics.export()

        assert "# HELP webhook_messages_persisted_total" in content
        assert "# TYPE webhook_messages_persisted_total counter" in content
        assert 'webhook_messages_persisted_total{result="inserted"} 1.0' in content
        assert "webhook_queue_visible 4" in content
        assert 'webhook_persist_duration_seconds_bucket{le="0.025"} 1' in content
        assert "webhook_persist_duration_seconds_count 1" in content

    def test_reset_clears_values(self):
        metrics.messages_redriven.inc()

        metrics.reset()

        assert metrics.messages_redriven.get() == 0
