"""Health and performance monitoring.

Records request latency/error samples and routing performance under adaptive
sampling, computes latency percentiles, throughput and error rates, and turns
them into a health score with alerts.

Sampling strategies:
- uniform: always the base rate
- adaptive: base rate scaled down once throughput exceeds the high-volume threshold
- tiered: fixed rate steps at 100/500/1000 requests per second

Errors and slow requests are always sampled.
"""

from __future__ import annotations

import random
import sys
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Literal

import psutil
from pydantic import BaseModel, Field

from ..core.config import HealthConfig, SamplingConfig
from ..core.logger import get_logger
from ..core.statistics import mean, percentile, relative_accuracy
from ..routing.base import CompletionRequest, LearningRecord, PredictionResult
from .alerts import AlertLog, AlertSeverity, MonitoringAlert

logger = get_logger("monitoring.health")

HealthState = Literal["healthy", "warning", "critical"]

RESPONSE_TIME_METRIC = "request_response_time"
ERROR_METRIC = "request_error"
ROUTING_LATENCY_METRIC = "routing_latency"
CONFIDENCE_METRIC = "prediction_confidence"
ACCURACY_METRIC = "prediction_accuracy"

RPS_WINDOW_SECONDS = 60
MAX_RESOURCE_SAMPLES = 1440
COST_EPSILON = 0.001

# Health score penalties
LATENCY_PENALTY = 20
ERROR_RATE_PENALTY = 25
MEMORY_PENALTY = 15
THROUGHPUT_PENALTY = 10
ACCURACY_PENALTY = 15
ROUTING_LATENCY_PENALTY = 10
CRITICAL_BELOW = 70
WARNING_BELOW = 85

# Rough per-record sizes used for the footprint estimate
METRIC_RECORD_BYTES = 200
SNAPSHOT_RECORD_BYTES = 500


@dataclass
class PerformanceMetric:
    """A single sampled measurement."""

    metric: str
    value: float
    timestamp: datetime
    backend: str | None = None
    model: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


class HealthSnapshot(BaseModel):
    """Point-in-time aggregate of system performance.

    ``routing_accuracy`` and ``prediction_confidence`` are None when no samples
    were recorded in the recent window.
    """

    timestamp: datetime = Field(default_factory=datetime.now)
    avg_response_time: float = Field(default=0.0, ge=0.0)
    p50_response_time: float = Field(default=0.0, ge=0.0)
    p95_response_time: float = Field(default=0.0, ge=0.0)
    p99_response_time: float = Field(default=0.0, ge=0.0)
    requests_per_second: float = Field(default=0.0, ge=0.0)
    total_requests: int = Field(default=0, ge=0)
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    timeout_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    memory_usage: int = Field(default=0, ge=0, description="Process RSS in bytes")
    routing_accuracy: float | None = Field(default=None)
    routing_latency: float = Field(default=0.0, ge=0.0)
    prediction_confidence: float | None = Field(default=None)
    provider_distribution: dict[str, int] = Field(default_factory=dict)


class HealthStatus(BaseModel):
    """Health score with the issues that lowered it."""

    status: HealthState
    score: int = Field(ge=0, le=100)
    issues: list[str] = Field(default_factory=list)


def process_memory_usage() -> int:
    """Resident set size of the current process in bytes."""
    return psutil.Process().memory_info().rss


class Sampler:
    """Decides which metrics to keep under the configured strategy."""

    def __init__(
        self, config: SamplingConfig | None = None, rng: random.Random | None = None
    ) -> None:
        self.config = config or SamplingConfig()
        self._rng = rng or random.Random()

    def current_rate(self, requests_per_second: float) -> float:
        strategy = self.config.strategy
        base = self.config.base_rate

        if strategy == "adaptive":
            threshold = self.config.high_volume_threshold
            if requests_per_second > threshold:
                return max(self.config.min_adaptive_rate, base * threshold / requests_per_second)
            return base

        if strategy == "tiered":
            if requests_per_second > 1000:
                return 0.01
            if requests_per_second > 500:
                return 0.05
            if requests_per_second > 100:
                return 0.1
            return base

        return base

    def should_sample(self, metric: str, value: float, requests_per_second: float) -> bool:
        if metric == ERROR_METRIC:
            return self._rng.random() < self.config.error_sampling_rate
        if metric == RESPONSE_TIME_METRIC and value > self.config.slow_request_threshold_ms:
            return True
        return self._rng.random() < self.current_rate(requests_per_second)


class HealthMonitor:
    """Tracks request and routing performance and scores system health.

    Example:
        ```python
        monitor = HealthMonitor()
        monitor.record_request(request, 1850.0, backend="openai", model="gpt-4o-mini")
        status = monitor.health_status()
        print(status.status, status.score, status.issues)
        ```
    """

    def __init__(
        self,
        config: HealthConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
        memory_probe: Callable[[], int] = process_memory_usage,
        queue_size_probe: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Health monitor configuration
            clock: Source of the current time
            rng: Random source for sampling
            memory_probe: Returns current memory usage in bytes
            queue_size_probe: Returns the pending bookkeeping queue size
        """
        self.config = config or HealthConfig()
        self.thresholds = self.config.thresholds
        self.sampler = Sampler(self.config.sampling, rng)
        self._clock = clock
        self._memory_probe = memory_probe
        self._queue_size_probe = queue_size_probe

        self._lock = threading.RLock()
        self._latencies: list[float] = []
        self._metrics: list[PerformanceMetric] = []
        self._snapshots: list[HealthSnapshot] = []
        self._memory_samples: deque[int] = deque(maxlen=MAX_RESOURCE_SAMPLES)
        self._rps_window: deque[list[float]] = deque()
        self._recent_requests: deque[tuple[datetime, bool]] = deque(
            maxlen=self.config.max_latency_samples
        )
        self._current_rps = 0.0
        self.total_requests = 0
        self.error_count = 0

        self.alerts = AlertLog(
            "Performance",
            cooldown_seconds=self.config.alert_cooldown_seconds,
            max_alerts=self.config.max_alerts,
            trim_to=self.config.alerts_trim_to,
            clock=clock,
        )

        logger.info(
            "HealthMonitor initialized (sampling: %s, max latency: %.0fms)",
            self.config.sampling.strategy,
            self.thresholds.max_response_time_ms,
        )

    # ==========================================================================
    # Recording
    # ==========================================================================

    def record_metric(
        self,
        metric: str,
        value: float,
        backend: str | None = None,
        model: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> bool:
        """Store a metric if the sampler keeps it.

        Returns:
            True if the metric was stored
        """
        if not self.sampler.should_sample(metric, value, self._current_rps):
            return False

        record = PerformanceMetric(
            metric=metric,
            value=value,
            timestamp=self._clock(),
            backend=backend,
            model=model,
            tags=tags or {},
        )
        with self._lock:
            self._metrics.append(record)
            if len(self._metrics) > self.config.max_metrics:
                self._metrics = self._metrics[-self.config.trim_metrics_to :]
        return True

    def record_request(
        self,
        request: CompletionRequest | None,
        response_time_ms: float,
        error: str | None = None,
        backend: str | None = None,
        model: str | None = None,
    ) -> None:
        """Record a completed backend request."""
        now = self._clock()
        has_error = error is not None

        with self._lock:
            self.total_requests += 1
            self._latencies.append(response_time_ms)
            if len(self._latencies) > self.config.max_latency_samples:
                self._latencies = self._latencies[-self.config.trim_latency_samples_to :]
            if has_error:
                self.error_count += 1
            self._recent_requests.append((now, has_error))
            self._update_rps(now)

        message_count = len(request.messages) if request is not None else 0
        self.record_metric(
            RESPONSE_TIME_METRIC,
            response_time_ms,
            backend,
            model,
            {"status": "error" if has_error else "success", "message_count": str(message_count)},
        )
        if has_error:
            self.record_metric(ERROR_METRIC, 1.0, backend, model, {"error": str(error)})

        self._check_immediate_alerts(response_time_ms)

    def record_routing(
        self,
        routing_time_ms: float,
        prediction: PredictionResult,
        actual: LearningRecord | None = None,
    ) -> None:
        """Record routing latency and confidence, and cost accuracy when known."""
        self.record_metric(
            ROUTING_LATENCY_METRIC,
            routing_time_ms,
            prediction.backend,
            prediction.model,
            {"confidence": f"{prediction.confidence:.2f}"},
        )
        self.record_metric(
            CONFIDENCE_METRIC, prediction.confidence, prediction.backend, prediction.model
        )
        if actual is not None:
            self.record_prediction_accuracy(prediction, actual.actual_cost)

    def record_prediction_accuracy(self, prediction: PredictionResult, actual_cost: float) -> None:
        """Record how close the predicted cost came to the actual cost."""
        accuracy = relative_accuracy(prediction.predicted_cost, actual_cost, COST_EPSILON)
        self.record_metric(
            ACCURACY_METRIC,
            accuracy,
            prediction.backend,
            prediction.model,
            {"metric_type": "cost"},
        )

    def _update_rps(self, now: datetime) -> None:
        ts = now.timestamp()
        window_start = ts - RPS_WINDOW_SECONDS
        while self._rps_window and self._rps_window[0][0] <= window_start:
            self._rps_window.popleft()

        if self._rps_window and ts - self._rps_window[-1][0] < 1:
            self._rps_window[-1][1] += 1
        else:
            self._rps_window.append([ts, 1])

        self._current_rps = sum(count for _, count in self._rps_window) / RPS_WINDOW_SECONDS

    def _recent_error_rate(self, now: datetime) -> float:
        cutoff = now - timedelta(seconds=self.config.recent_window_seconds)
        with self._lock:
            recent = [has_error for ts, has_error in self._recent_requests if ts > cutoff]
        if not recent:
            return 0.0
        return sum(recent) / len(recent)

    def _check_immediate_alerts(self, response_time_ms: float) -> None:
        max_latency = self.thresholds.max_response_time_ms
        if response_time_ms > max_latency:
            self.alerts.raise_alert(
                "latency_spike",
                AlertSeverity.CRITICAL
                if response_time_ms > max_latency * 2
                else AlertSeverity.HIGH,
                f"Request took {response_time_ms:.0f}ms (threshold: {max_latency:.0f}ms)",
                value=response_time_ms,
                threshold=max_latency,
            )

        max_error_rate = self.thresholds.max_error_rate
        error_rate = self._recent_error_rate(self._clock())
        if error_rate > max_error_rate:
            self.alerts.raise_alert(
                "error_rate_high",
                AlertSeverity.CRITICAL
                if error_rate > max_error_rate * 2
                else AlertSeverity.HIGH,
                f"Error rate is {error_rate * 100:.1f}% "
                f"(threshold: {max_error_rate * 100:.1f}%)",
                value=error_rate,
                threshold=max_error_rate,
            )

    # ==========================================================================
    # Snapshots and health
    # ==========================================================================

    @property
    def requests_per_second(self) -> float:
        return self._current_rps

    def current_sampling_rate(self) -> float:
        return self.sampler.current_rate(self._current_rps)

    def snapshot(self) -> HealthSnapshot:
        """Aggregate the current state into a snapshot."""
        now = self._clock()
        cutoff = now - timedelta(seconds=self.config.recent_window_seconds)

        with self._lock:
            latencies = list(self._latencies)
            recent = [m for m in self._metrics if m.timestamp > cutoff]
            total = self.total_requests
            errors = self.error_count
            rps = self._current_rps

        def values(name: str) -> list[float]:
            return [m.value for m in recent if m.metric == name]

        response_times = values(RESPONSE_TIME_METRIC)
        timeouts = [v for v in response_times if v > self.thresholds.max_response_time_ms]
        accuracy = values(ACCURACY_METRIC)
        confidence = values(CONFIDENCE_METRIC)
        distribution = Counter(
            m.backend for m in recent if m.metric == RESPONSE_TIME_METRIC and m.backend
        )

        return HealthSnapshot(
            timestamp=now,
            avg_response_time=mean(latencies),
            p50_response_time=percentile(latencies, 0.5),
            p95_response_time=percentile(latencies, 0.95),
            p99_response_time=percentile(latencies, 0.99),
            requests_per_second=rps,
            total_requests=total,
            error_rate=errors / total if total > 0 else 0.0,
            timeout_rate=len(timeouts) / len(response_times) if response_times else 0.0,
            memory_usage=self.current_memory_usage(),
            routing_accuracy=mean(accuracy) if accuracy else None,
            routing_latency=mean(values(ROUTING_LATENCY_METRIC)),
            prediction_confidence=mean(confidence) if confidence else None,
            provider_distribution=dict(distribution),
        )

    def health_status(self, snapshot: HealthSnapshot | None = None) -> HealthStatus:
        """Score health from 100 down by a fixed penalty per breached threshold."""
        snapshot = snapshot or self.snapshot()
        thresholds = self.thresholds
        issues: list[str] = []
        score = 100

        if snapshot.avg_response_time > thresholds.max_response_time_ms:
            issues.append(f"High response time: {snapshot.avg_response_time:.0f}ms")
            score -= LATENCY_PENALTY

        if snapshot.error_rate > thresholds.max_error_rate:
            issues.append(f"High error rate: {snapshot.error_rate * 100:.1f}%")
            score -= ERROR_RATE_PENALTY

        if snapshot.memory_usage > thresholds.max_memory_bytes:
            issues.append(f"High memory usage: {snapshot.memory_usage / 1024 / 1024:.0f}MB")
            score -= MEMORY_PENALTY

        if (
            snapshot.requests_per_second < thresholds.min_throughput
            and snapshot.total_requests > thresholds.min_requests_for_throughput
        ):
            issues.append(f"Low throughput: {snapshot.requests_per_second:.1f} RPS")
            score -= THROUGHPUT_PENALTY

        if (
            snapshot.routing_accuracy is not None
            and snapshot.routing_accuracy < thresholds.min_accuracy
        ):
            issues.append(f"Low routing accuracy: {snapshot.routing_accuracy * 100:.1f}%")
            score -= ACCURACY_PENALTY

        if snapshot.routing_latency > thresholds.max_routing_latency_ms:
            issues.append(f"High routing latency: {snapshot.routing_latency:.0f}ms")
            score -= ROUTING_LATENCY_PENALTY

        status: HealthState = "healthy"
        if score < CRITICAL_BELOW:
            status = "critical"
        elif score < WARNING_BELOW:
            status = "warning"

        return HealthStatus(status=status, score=max(0, score), issues=issues)

    def take_snapshot(self) -> HealthSnapshot:
        """Append a snapshot and drop those older than the retention period."""
        snapshot = self.snapshot()
        cutoff = snapshot.timestamp - timedelta(hours=self.config.snapshot_retention_hours)
        with self._lock:
            self._snapshots.append(snapshot)
            self._snapshots = [s for s in self._snapshots if s.timestamp > cutoff]
        logger.debug(
            "Health snapshot taken (rps=%.2f, avg latency=%.0fms)",
            snapshot.requests_per_second,
            snapshot.avg_response_time,
        )
        return snapshot

    def sample_resources(self) -> int:
        """Record the current memory usage."""
        usage = self._memory_probe()
        with self._lock:
            self._memory_samples.append(usage)
        return usage

    def current_memory_usage(self) -> int:
        """Latest sampled memory usage, sampling once if nothing was sampled yet."""
        with self._lock:
            if self._memory_samples:
                return self._memory_samples[-1]
        return self.sample_resources()

    def get_snapshots(self) -> list[HealthSnapshot]:
        with self._lock:
            return list(self._snapshots)

    def trends(self, hours: float = 24) -> dict[str, list[dict[str, Any]]]:
        """Time series of latency, throughput, error rate and accuracy."""
        cutoff = self._clock() - timedelta(hours=hours)
        with self._lock:
            recent = [s for s in self._snapshots if s.timestamp > cutoff]

        return {
            "response_time": [
                {"timestamp": s.timestamp, "value": s.avg_response_time} for s in recent
            ],
            "throughput": [
                {"timestamp": s.timestamp, "value": s.requests_per_second} for s in recent
            ],
            "error_rate": [{"timestamp": s.timestamp, "value": s.error_rate} for s in recent],
            "accuracy": [
                {"timestamp": s.timestamp, "value": s.routing_accuracy}
                for s in recent
                if s.routing_accuracy is not None
            ],
        }

    def get_alerts(self, unresolved_only: bool = False) -> list[MonitoringAlert]:
        return self.alerts.get_alerts(unresolved_only)

    def monitoring_overhead(self) -> dict[str, Any]:
        """Queue size, estimated in-memory footprint and current sampling rate."""
        with self._lock:
            footprint = (
                len(self._metrics) * METRIC_RECORD_BYTES
                + len(self._snapshots) * SNAPSHOT_RECORD_BYTES
                + sys.getsizeof(self._latencies)
            )
        return {
            "queue_size": self._queue_size_probe() if self._queue_size_probe else 0,
            "memory_footprint": footprint,
            "sampling_rate": self.current_sampling_rate(),
        }

    def reset(self) -> None:
        with self._lock:
            self._latencies.clear()
            self._metrics.clear()
            self._snapshots.clear()
            self._memory_samples.clear()
            self._rps_window.clear()
            self._recent_requests.clear()
            self._current_rps = 0.0
            self.total_requests = 0
            self.error_count = 0
        self.alerts.clear()
