"""
Prometheus Metrics Collector

Lightweight in-process metrics for the ingestion pipeline.
Generates Prometheus text exposition format (text/plain; version=0.0.4).
"""
import time
import threading
from typing import Dict, List, Optional
from dataclasses import dataclass, field


@dataclass
class MetricValue:
    """Single metric value with optional labels."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


class _Metric:
    """Shared label handling for all metric kinds."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[List[str]] = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _label_key(labels: Dict[str, str]) -> tuple:
        return tuple(sorted(labels.items()))

    def get(self, **labels: str) -> float:
        """Current value for a label set (0.0 if never touched)."""
        with self._lock:
            return self._values.get(self._label_key(labels), 0.0)

    def collect(self) -> List[MetricValue]:
        with self._lock:
            return [
                MetricValue(value=v, labels=dict(k))
                for k, v in self._values.items()
            ]


class Counter(_Metric):
    """
    Prometheus Counter metric.

    A counter is a cumulative metric that only goes up.
    Used for: published messages, acks, redrives, rejected requests.
    """

    kind = "counter"

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        """Increment counter by amount."""
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount


class Gauge(_Metric):
    """
    Prometheus Gauge metric.

    A gauge can go up and down.
    Used for: queue depth, in-flight leases, dead letter size.
    """

    kind = "gauge"

    def set(self, value: float, **labels: str) -> None:
        """Set gauge to value."""
        with self._lock:
            self._values[self._label_key(labels)] = value


class Histogram(_Metric):
    """
    Prometheus Histogram metric.

    Samples observations and counts them in cumulative buckets.
    """

    kind = "histogram"

    # Suitable for database writes and HTTP handling (in seconds)
    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ):
        super().__init__(name, description, labels)
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._series: Dict[tuple, Dict] = {}

    def observe(self, value: float, **labels: str) -> None:
        """Record an observation."""
        key = self._label_key(labels)
        with self._lock:
            data = self._series.setdefault(key, {
                "buckets": {b: 0 for b in self.buckets},
                "sum": 0.0,
                "count": 0
            })
            data["sum"] += value
            data["count"] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    def time(self, **labels: str) -> "Timer":
        return Timer(self, **labels)

    def collect(self) -> List[MetricValue]:
        """Collect bucket, sum and count series."""
        result = []
        with self._lock:
            for key, data in self._series.items():
                base_labels = dict(key)
                for bucket in sorted(self.buckets):
                    result.append(MetricValue(
                        value=data["buckets"][bucket],
                        labels={**base_labels, "le": str(bucket)}
                    ))
                result.append(MetricValue(value=data["count"], labels={**base_labels, "le": "+Inf"}))
                result.append(MetricValue(value=data["sum"], labels={**base_labels, "_metric": "sum"}))
                result.append(MetricValue(value=data["count"], labels={**base_labels, "_metric": "count"}))
        return result


class Timer:
    """Context manager for timing code blocks."""

    def __init__(self, histogram: Histogram, **labels: str):
        self.histogram = histogram
        self.labels = labels
        self.start_time: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time is not None:
            self.histogram.observe(time.perf_counter() - self.start_time, **self.labels)


class MetricsRegistry:
    """
    Central registry for all pipeline metrics.

    Provides singleton access and Prometheus text format export.
    """

    _instance: Optional["MetricsRegistry"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsRegistry":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._metrics: Dict[str, _Metric] = {}
        self._initialized = True
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        """Initialize all pipeline metrics."""

        # ============================================
        # INGRESS METRICS
        # ============================================
        self.ingress_requests = self.counter(
            "webhook_ingress_requests_total",
            "Webhook ingress requests by outcome",
            ["outcome"]
        )

        self.ingress_duration = self.histogram(
            "webhook_ingress_duration_seconds",
            "Ingress request handling duration in seconds"
        )

        # ============================================
        # QUEUE METRICS
        # ============================================
        self.queue_visible = self.gauge(
            "webhook_queue_visible",
            "Messages visible and waiting to be received"
        )

        self.queue_in_flight = self.gauge(
            "webhook_queue_in_flight",
            "Messages received and currently leased"
        )

        self.queue_dead_letter = self.gauge(
            "webhook_queue_dead_letter",
            "Messages held in the dead letter store"
        )

        self.messages_redriven = self.counter(
            "webhook_messages_redriven_total",
            "Messages moved to the dead letter store"
        )

        # ============================================
        # CONSUMER METRICS
        # ============================================
        self.messages_persisted = self.counter(
            "webhook_messages_persisted_total",
            "Messages persisted and acked, by write result",
            ["result"]
        )

        self.consumer_failures = self.counter(
            "webhook_consumer_failures_total",
            "Consumer invocations that did not ack, by error type",
            ["error"]
        )

        self.persist_duration = self.histogram(
            "webhook_persist_duration_seconds",
            "Database sink write duration in seconds"
        )

    def counter(self, name: str, description: str, labels: Optional[List[str]] = None) -> Counter:
        """Create and register a counter."""
        metric = Counter(name, description, labels)
        self._metrics[name] = metric
        return metric

    def gauge(self, name: str, description: str, labels: Optional[List[str]] = None) -> Gauge:
        """Create and register a gauge."""
        metric = Gauge(name, description, labels)
        self._metrics[name] = metric
        return metric

    def histogram(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ) -> Histogram:
        """Create and register a histogram."""
        metric = Histogram(name, description, labels, buckets)
        self._metrics[name] = metric
        return metric

    def export(self) -> str:
        """
        Export all metrics in Prometheus text exposition format.

        Format specification:
        https://prometheus.io/docs/instrumenting/exposition_formats/
        """
        lines = []

        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.kind}")

            for mv in metric.collect():
                metric_name = name
                if isinstance(metric, Histogram):
                    if "_metric" in mv.labels:
                        metric_name = f"{name}_{mv.labels.pop('_metric')}"
                    elif "le" in mv.labels:
                        metric_name = f"{name}_bucket"

                lines.append(f"{metric_name}{self._format_labels(mv.labels)} {mv.value}")

            lines.append("")

        return "\n".join(lines)

    @staticmethod
    def _format_labels(labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(parts) + "}"

    def reset(self) -> None:
        """Reset all metrics. Useful for testing."""
        self._metrics.clear()
        self._setup_metrics()


# Global metrics instance
metrics = MetricsRegistry()
