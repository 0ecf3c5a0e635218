"""Tests for health and performance monitoring.

Tests cover:
- Sampling strategies
- Request and routing recording
- Snapshot aggregation
- Health scoring and status bands
- Immediate alerts
- Snapshot retention and trends
"""

from __future__ import annotations

import random

import pytest

from route_intelligence.core.config import HealthConfig, SamplingConfig
from route_intelligence.monitoring.alerts import AlertSeverity
from route_intelligence.monitoring.health import (
    ERROR_METRIC,
    RESPONSE_TIME_METRIC,
    HealthMonitor,
    HealthSnapshot,
    Sampler,
)
from route_intelligence.routing.base import PredictionResult


def make_prediction(cost=0.01, confidence=0.7):
    return PredictionResult(
        backend="openai",
        model="gpt-4o",
        predicted_cost=cost,
        predicted_response_time=1000.0,
        predicted_quality=0.8,
        confidence=confidence,
    )


@pytest.fixture
def monitor(clock, rng):
    return HealthMonitor(clock=clock, rng=rng, memory_probe=lambda: 0)


# ==============================================================================
# Sampling
# ==============================================================================


class TestSampler:
    """Tests for the sampling strategies."""

    def test_uniform(self):
        """Test the uniform strategy ignores throughput."""
        sampler = Sampler(SamplingConfig(strategy="uniform", base_rate=0.5))

        assert sampler.current_rate(5000.0) == 0.5

    def test_adaptive(self):
        """Test the adaptive rate scales down above the high-volume threshold."""
        sampler = Sampler(SamplingConfig(strategy="adaptive"))

        assert sampler.current_rate(50.0) == 1.0
        assert sampler.current_rate(200.0) == pytest.approx(0.5)
        assert sampler.current_rate(5000.0) == 0.1

    @pytest.mark.parametrize(
        ("rps", "rate"),
        [(1500.0, 0.01), (600.0, 0.05), (200.0, 0.1), (50.0, 1.0)],
    )
    def test_tiered(self, rps, rate):
        """Test the tiered rate steps."""
        sampler = Sampler(SamplingConfig(strategy="tiered"))

        assert sampler.current_rate(rps) == rate

    def test_slow_requests_are_always_sampled(self):
        """Test slow requests bypass the sampling rate."""
        sampler = Sampler(
            SamplingConfig(strategy="uniform", base_rate=0.0), random.Random(3)
        )

        assert sampler.should_sample(RESPONSE_TIME_METRIC, 6000.0, 0.0) is True
        assert sampler.should_sample(RESPONSE_TIME_METRIC, 100.0, 0.0) is False

    def test_errors_use_error_rate(self):
        """Test errors are sampled at the error sampling rate."""
        sampler = Sampler(
            SamplingConfig(strategy="uniform", base_rate=0.0, error_sampling_rate=1.0),
            random.Random(3),
        )

        assert sampler.should_sample(ERROR_METRIC, 1.0, 0.0) is True


# ==============================================================================
# Recording and Snapshots
# ==============================================================================


class TestRecording:
    """Tests for request and routing recording."""

    def test_latency_percentiles(self, monitor):
        """Test latency aggregation over recorded requests."""
        for latency in range(1, 101):
            monitor.record_request(None, float(latency), backend="openai")

        snapshot = monitor.snapshot()

        assert snapshot.total_requests == 100
        assert snapshot.avg_response_time == pytest.approx(50.5)
        assert snapshot.p50_response_time == 50
        assert snapshot.p95_response_time == 95
        assert snapshot.p99_response_time == 99
        assert snapshot.provider_distribution == {"openai": 100}
        assert snapshot.requests_per_second > 0

    def test_error_and_timeout_rates(self, monitor):
        """Test error and timeout rates."""
        monitor.record_request(None, 1000.0)
        monitor.record_request(None, 7000.0, error="timeout")

        snapshot = monitor.snapshot()

        assert snapshot.error_rate == 0.5
        assert snapshot.timeout_rate == 0.5

    def test_routing_metrics(self, monitor):
        """Test routing latency, confidence and accuracy samples."""
        monitor.record_routing(12.0, make_prediction(confidence=0.7))
        monitor.record_prediction_accuracy(make_prediction(cost=0.012), 0.01)

        snapshot = monitor.snapshot()

        assert snapshot.routing_latency == 12.0
        assert snapshot.prediction_confidence == pytest.approx(0.7)
        assert snapshot.routing_accuracy == pytest.approx(0.8)

    def test_empty_snapshot(self, monitor):
        """Test the snapshot before any request."""
        snapshot = monitor.snapshot()

        assert snapshot.total_requests == 0
        assert snapshot.error_rate == 0.0
        assert snapshot.routing_accuracy is None
        assert snapshot.prediction_confidence is None

    def test_old_metrics_leave_the_recent_window(self, monitor, clock):
        """Test that metrics older than the recent window are not aggregated."""
        monitor.record_routing(12.0, make_prediction())
        clock.advance(minutes=10)

        assert monitor.snapshot().prediction_confidence is None

    def test_sample_resources(self, clock):
        """Test memory sampling through the injected reader."""
        monitor = HealthMonitor(clock=clock, memory_probe=lambda: 1234)

        assert monitor.sample_resources() == 1234
        assert monitor.snapshot().memory_usage == 1234

    def test_snapshot_uses_latest_sample(self, clock):
        """Test snapshots report the last sampled usage instead of reading memory each time."""
        readings = iter([100, 200, 300])
        monitor = HealthMonitor(clock=clock, memory_probe=lambda: next(readings))

        assert monitor.snapshot().memory_usage == 100
        assert monitor.snapshot().memory_usage == 100

        monitor.sample_resources()

        assert monitor.snapshot().memory_usage == 200

    def test_monitoring_overhead(self, clock):
        """Test the overhead report includes the queue size."""
        monitor = HealthMonitor(clock=clock, memory_probe=lambda: 0, queue_size_probe=lambda: 3)
        monitor.record_request(None, 100.0)

        overhead = monitor.monitoring_overhead()

        assert overhead["queue_size"] == 3
        assert overhead["memory_footprint"] > 0
        assert overhead["sampling_rate"] == 1.0

    def test_reset(self, monitor):
        """Test reset clears all samples."""
        monitor.record_request(None, 9000.0, error="boom")
        monitor.reset()

        assert monitor.total_requests == 0
        assert monitor.get_alerts() == []
        assert monitor.snapshot().avg_response_time == 0.0


# ==============================================================================
# Health Scoring
# ==============================================================================


class TestHealthStatus:
    """Tests for health scoring."""

    def test_healthy_by_default(self, monitor):
        """Test an idle system is healthy."""
        status = monitor.health_status()

        assert status.status == "healthy"
        assert status.score == 100
        assert status.issues == []

    def test_high_latency_only(self, monitor):
        """Test that only high latency gives exactly 80 and a warning."""
        monitor.record_request(None, 6000.0)

        status = monitor.health_status()

        assert status.score == 80
        assert status.status == "warning"
        assert status.issues == ["High response time: 6000ms"]

    def test_critical(self, monitor):
        """Test combined penalties below 70 are critical."""
        status = monitor.health_status(HealthSnapshot(avg_response_time=6000.0, error_rate=0.5))

        assert status.score == 55
        assert status.status == "critical"

    def test_score_85_is_healthy(self, monitor):
        """Test the warning band starts below 85."""
        status = monitor.health_status(HealthSnapshot(memory_usage=2 * 1024 * 1024 * 1024))

        assert status.score == 85
        assert status.status == "healthy"
        assert status.issues == ["High memory usage: 2048MB"]

    def test_accuracy_skipped_without_samples(self, monitor):
        """Test the accuracy check only applies when samples exist."""
        assert monitor.health_status(HealthSnapshot(routing_accuracy=None)).score == 100
        assert monitor.health_status(HealthSnapshot(routing_accuracy=0.5)).score == 85

    def test_low_throughput(self, monitor):
        """Test low throughput only counts after enough requests."""
        quiet = HealthSnapshot(requests_per_second=1.0, total_requests=50)
        busy = HealthSnapshot(requests_per_second=1.0, total_requests=500)

        assert monitor.health_status(quiet).score == 100
        assert monitor.health_status(busy).score == 90

    def test_every_penalty(self, monitor):
        """Test all six penalties together."""
        snapshot = HealthSnapshot(
            avg_response_time=9000.0,
            error_rate=0.9,
            memory_usage=4 * 1024 * 1024 * 1024,
            requests_per_second=0.1,
            total_requests=1000,
            routing_accuracy=0.1,
            routing_latency=900.0,
        )

        status = monitor.health_status(snapshot)

        assert status.score == 5
        assert status.status == "critical"
        assert len(status.issues) == 6


# ==============================================================================
# Alerts
# ==============================================================================


class TestImmediateAlerts:
    """Tests for alerts raised while recording."""

    def test_latency_spike(self, monitor):
        """Test a slow request raises a high severity latency alert."""
        monitor.record_request(None, 6000.0)

        alerts = monitor.get_alerts()
        assert [a.type for a in alerts] == ["latency_spike"]
        assert alerts[0].severity == AlertSeverity.HIGH

    def test_critical_latency_spike(self, monitor):
        """Test a request over twice the threshold is critical."""
        monitor.record_request(None, 12000.0)

        assert monitor.get_alerts()[0].severity == AlertSeverity.CRITICAL

    def test_error_rate_alert(self, monitor):
        """Test a high recent error rate raises a critical alert."""
        monitor.record_request(None, 100.0, error="rate limited")

        alerts = monitor.get_alerts()
        assert [a.type for a in alerts] == ["error_rate_high"]
        assert alerts[0].severity == AlertSeverity.CRITICAL
        assert alerts[0].value == 1.0

    def test_errors_outside_recent_window_are_ignored(self, clock):
        """Test the error-rate alert only looks at the recent window."""
        monitor = HealthMonitor(
            HealthConfig(alert_cooldown_seconds=0.0), clock=clock, memory_probe=lambda: 0
        )
        monitor.record_request(None, 100.0, error="rate limited")
        clock.advance(minutes=10)
        monitor.record_request(None, 100.0)

        assert monitor.alerts.count("error_rate_high") == 1


# ==============================================================================
# Snapshots and Trends
# ==============================================================================


class TestSnapshots:
    """Tests for snapshot retention and trends."""

    def test_retention(self, clock):
        """Test snapshots older than the retention period are dropped."""
        monitor = HealthMonitor(
            HealthConfig(snapshot_retention_hours=1), clock=clock, memory_probe=lambda: 0
        )
        monitor.take_snapshot()
        clock.advance(hours=2)
        latest = monitor.take_snapshot()

        assert monitor.get_snapshots() == [latest]

    def test_trends(self, monitor, clock):
        """Test trend series over stored snapshots."""
        monitor.record_request(None, 1000.0)
        monitor.take_snapshot()
        clock.advance(minutes=1)
        monitor.record_request(None, 3000.0)
        monitor.take_snapshot()

        trends = monitor.trends(hours=1)

        assert [p["value"] for p in trends["response_time"]] == [1000.0, 2000.0]
        assert len(trends["throughput"]) == 2
        assert trends["accuracy"] == []
