"""Tests for metrics sinks."""

from batchserve.metrics import InMemoryMetrics, PrometheusMetrics


class TestInMemoryMetrics:
    def test_batch_events(self):
        metrics = InMemoryMetrics()
        metrics.observe_batch(4, 0.02, "size")
        metrics.observe_batch(2, 0.01, "tick")

        assert metrics.counters["batches.total"] == 2
        assert metrics.counters["batches.cut.size"] == 1
        assert metrics.counters["batches.cut.tick"] == 1

        summary = metrics.get_metric_summary("batch.size")
        assert summary.count == 2
        assert summary.min_value == 2.0
        assert summary.max_value == 4.0
        assert summary.mean == 3.0

    def test_queue_depth_gauge(self):
        metrics = InMemoryMetrics()
        metrics.observe_queue_depth(5)
        metrics.observe_queue_depth(1)
        assert metrics.gauges["queue.depth"] == 1.0
        assert metrics.get_metric_summary("queue.depth").max_value == 5.0

    def test_outcomes_and_failures(self):
        metrics = InMemoryMetrics()
        metrics.record_outcome(True)
        metrics.record_outcome(False)
        metrics.record_failure("backend")

        assert metrics.counters["requests.success"] == 1
        assert metrics.counters["requests.failure"] == 1
        assert metrics.counters["failures.backend"] == 1

    def test_missing_metric(self):
        assert InMemoryMetrics().get_metric_summary("nothing") is None

    def test_bounded_history(self):
        metrics = InMemoryMetrics(max_points_per_metric=3)
        for wait in range(10):
            metrics.observe_wait(float(wait))
        assert metrics.get_metric_summary("request.wait_seconds").count == 3

    def test_snapshot_and_clear(self):
        metrics = InMemoryMetrics()
        metrics.observe_batch(1, 0.5, "shutdown")

        snapshot = metrics.snapshot()
        assert snapshot["counters"]["batches.cut.shutdown"] == 1
        assert snapshot["histograms"]["batch.duration_seconds"]["count"] == 1

        metrics.clear()
        assert metrics.snapshot()["counters"] == {}


class TestPrometheusMetrics:
    def test_render(self):
        metrics = PrometheusMetrics()
        metrics.observe_batch(3, 0.05, "tick")
        metrics.observe_queue_depth(7)
        metrics.observe_wait(0.01)
        metrics.record_outcome(True)
        metrics.record_failure("queue_full")

        text = metrics.render().decode()

        assert 'batchserve_batches_total{reason="tick"} 1.0' in text
        assert "batchserve_queue_depth 7.0" in text
        assert 'batchserve_requests_total{outcome="success"} 1.0' in text
        assert 'batchserve_failures_total{kind="queue_full"} 1.0' in text
        assert "batchserve_batch_size_count 1.0" in text

    def test_api_requests(self):
        metrics = PrometheusMetrics()
        metrics.record_api_request("success", 3)
        metrics.record_api_request("queue_full", 1)

        text = metrics.render().decode()

        assert 'batchserve_classification_requests_total{status="success"} 1.0' in text
        assert 'batchserve_classification_requests_total{status="queue_full"} 1.0' in text
        assert "batchserve_classification_inputs_total 4.0" in text

    def test_private_registries(self):
        first = PrometheusMetrics()
        second = PrometheusMetrics()
        first.record_outcome(True)

        assert b'outcome="success"' not in second.render()
