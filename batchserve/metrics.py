"""
Metrics for the BatchServe scheduler

The scheduler reports to a ``MetricsSink`` at fixed event points: every cut
batch (size, latency, cut reason), queue depth after admission and after each
cut, per-request wait time, routed outcomes, and failures by kind. The
classification engine adds one event per API request. Two sinks are provided:
an in-memory collector for tests and introspection, and a Prometheus sink
backing the ``/metrics`` endpoint.
"""

import statistics
import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Dict, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

BATCH_SIZE_BUCKETS = (1, 2, 4, 8, 16, 32, 64, 128, 256)
LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsSink(ABC):
    """Event points emitted by the scheduler and router."""

    @abstractmethod
    def observe_batch(self, size: int, duration_seconds: float, reason: str):
        """A batch finished executing (successfully or not)."""

    @abstractmethod
    def observe_queue_depth(self, depth: int):
        """Current number of pending requests."""

    @abstractmethod
    def observe_wait(self, wait_seconds: float):
        """Time a request spent queued before being cut."""

    @abstractmethod
    def record_outcome(self, success: bool):
        """A completion handle was signalled."""

    @abstractmethod
    def record_failure(self, kind: str):
        """A failure of the given kind was reported to a caller."""

    @abstractmethod
    def record_api_request(self, status: str, inputs: int):
        """A transport-level classification request finished with ``status``."""


@dataclass
class MetricSummary:
    """Summary statistics for a metric."""

    name: str
    count: int
    min_value: float
    max_value: float
    mean: float
    median: float
    p95: float
    p99: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.count,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "mean": self.mean,
            "median": self.median,
            "p95": self.p95,
            "p99": self.p99,
        }


class InMemoryMetrics(MetricsSink):
    """
    Collects scheduler metrics in memory.

    Histories are bounded; counters are cumulative for the process lifetime.
    """

    def __init__(self, max_points_per_metric: int = 10000):
        self.max_points_per_metric = max_points_per_metric
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = defaultdict(float)
        self.histograms: Dict[str, deque] = defaultdict(
            lambda: deque(maxlen=max_points_per_metric)
        )

        self._lock = threading.RLock()

    def observe_batch(self, size: int, duration_seconds: float, reason: str):
        with self._lock:
            self.counters["batches.total"] += 1
            self.counters[f"batches.cut.{reason}"] += 1
            self.histograms["batch.size"].append(float(size))
            self.histograms["batch.duration_seconds"].append(duration_seconds)

    def observe_queue_depth(self, depth: int):
        with self._lock:
            self.gauges["queue.depth"] = float(depth)
            self.histograms["queue.depth"].append(float(depth))

    def observe_wait(self, wait_seconds: float):
        with self._lock:
            self.histograms["request.wait_seconds"].append(wait_seconds)

    def record_outcome(self, success: bool):
        with self._lock:
            self.counters["requests.success" if success else "requests.failure"] += 1

    def record_failure(self, kind: str):
        with self._lock:
            self.counters[f"failures.{kind}"] += 1

    def record_api_request(self, status: str, inputs: int):
        with self._lock:
            self.counters[f"api.requests.{status}"] += 1
            self.counters["api.inputs"] += inputs

    def get_metric_summary(self, name: str) -> Optional[MetricSummary]:
        """Get summary statistics for a histogram."""
        with self._lock:
            values = list(self.histograms.get(name, ()))

        if not values:
            return None

        count = len(values)
        sorted_values = sorted(values)
        p95 = sorted_values[min(int(0.95 * count), count - 1)]
        p99 = sorted_values[min(int(0.99 * count), count - 1)]

        return MetricSummary(
            name=name,
            count=count,
            min_value=sorted_values[0],
            max_value=sorted_values[-1],
            mean=statistics.mean(values),
            median=statistics.median(values),
            p95=p95,
            p99=p99,
        )

    def snapshot(self) -> Dict[str, Any]:
        """Counters, gauges and histogram summaries as plain data."""
        with self._lock:
            names = list(self.histograms.keys())
            data = {"counters": dict(self.counters), "gauges": dict(self.gauges)}

        summaries = {}
        for name in names:
            summary = self.get_metric_summary(name)
            if summary:
                summaries[name] = summary.to_dict()
        data["histograms"] = summaries
        return data

    def clear(self):
        """Clear all collected metrics."""
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()


class PrometheusMetrics(MetricsSink):
    """Prometheus-backed sink with its own registry."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, namespace: str = "batchserve", registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()

        self.batches = Counter(
            "batches_total",
            "Batches executed, by cut reason",
            ["reason"],
            namespace=namespace,
            registry=self.registry,
        )
        self.batch_size = Histogram(
            "batch_size",
            "Rows per executed batch",
            buckets=BATCH_SIZE_BUCKETS,
            namespace=namespace,
            registry=self.registry,
        )
        self.batch_latency = Histogram(
            "batch_duration_seconds",
            "Assembly plus forward pass time per batch",
            buckets=LATENCY_BUCKETS,
            namespace=namespace,
            registry=self.registry,
        )
        self.queue_depth = Gauge(
            "queue_depth",
            "Pending requests awaiting a cut",
            namespace=namespace,
            registry=self.registry,
        )
        self.request_wait = Histogram(
            "request_wait_seconds",
            "Time between admission and cut",
            buckets=LATENCY_BUCKETS,
            namespace=namespace,
            registry=self.registry,
        )
        self.outcomes = Counter(
            "requests_total",
            "Routed request outcomes",
            ["outcome"],
            namespace=namespace,
            registry=self.registry,
        )
        self.failures = Counter(
            "failures_total",
            "Failures reported to callers, by kind",
            ["kind"],
            namespace=namespace,
            registry=self.registry,
        )
        self.api_requests = Counter(
            "classification_requests_total",
            "Classification API requests, by status",
            ["status"],
            namespace=namespace,
            registry=self.registry,
        )
        self.api_inputs = Counter(
            "classification_inputs_total",
            "Texts received through the classification API",
            namespace=namespace,
            registry=self.registry,
        )

    def observe_batch(self, size: int, duration_seconds: float, reason: str):
        self.batches.labels(reason=reason).inc()
        self.batch_size.observe(size)
        self.batch_latency.observe(duration_seconds)

    def observe_queue_depth(self, depth: int):
        self.queue_depth.set(depth)

    def observe_wait(self, wait_seconds: float):
        self.request_wait.observe(wait_seconds)

    def record_outcome(self, success: bool):
        self.outcomes.labels(outcome="success" if success else "failure").inc()

    def record_failure(self, kind: str):
        self.failures.labels(kind=kind).inc()

    def record_api_request(self, status: str, inputs: int):
        self.api_requests.labels(status=status).inc()
        self.api_inputs.inc(inputs)

    def render(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
