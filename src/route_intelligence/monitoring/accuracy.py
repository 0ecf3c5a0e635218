"""Prediction accuracy monitoring.

For every ``backend/model`` key the monitor keeps the recent prediction/outcome
pairs, derives an accuracy snapshot after each update and compares it against
a stored baseline to detect drift. Alerts are rate-limited per key and type.

Features:
- Rolling cost/latency/quality accuracy with a normal-approximation interval
- Drift detection against seeded or captured baselines
- Model-to-model accuracy comparison
- Exponentially smoothed quality scores from production outcomes
- Tracking overhead statistics
"""

from __future__ import annotations

import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal, Sequence

from pydantic import BaseModel, Field

from ..core.config import AccuracyConfig
from ..core.logger import get_logger
from ..core.statistics import (
    SignificanceTest,
    StudentTSignificance,
    clamp,
    mean,
    percentile,
    proportion_difference_confidence,
    proportion_interval,
    relative_accuracy,
    z_for_confidence,
)
from ..routing.base import LearningRecord, PredictionResult
from .alerts import AlertLog, AlertSeverity, MonitoringAlert

logger = get_logger("monitoring.accuracy")

DriftAction = Literal["monitor", "investigate", "alert", "fallback"]
UpdateReason = Literal["new_data", "performance_improvement", "performance_degradation"]
ComparisonRecommendation = Literal[
    "prefer_baseline", "prefer_comparison", "equivalent", "insufficient_data"
]

COST_EPSILON = 0.001
LATENCY_EPSILON_MS = 1.0
QUALITY_EPSILON = 0.001

# Drift magnitude bands, highest first
DRIFT_BANDS: tuple[tuple[float, DriftAction], ...] = (
    (0.15, "fallback"),
    (0.1, "alert"),
    (0.05, "investigate"),
)

COMPARISON_SIGNIFICANCE = 0.95
COMPARISON_MIN_DIFFERENCE = 0.05
QUALITY_LEARNING_RATE = 0.1
DEFAULT_QUALITY_SCORE = 0.8
DEGRADATION_HIGH_SEVERITY_BELOW = 0.8
OVERHEAD_WINDOW = 100
TOP_MODELS = 5


class AccuracySnapshot(BaseModel):
    """Rolling prediction accuracy of one backend model."""

    cost_accuracy: float = Field(ge=0.0, le=1.0, description="Cost accuracy")
    time_accuracy: float = Field(ge=0.0, le=1.0, description="Latency accuracy")
    quality_accuracy: float = Field(ge=0.0, le=1.0, description="Quality accuracy")
    overall_accuracy: float = Field(ge=0.0, le=1.0, description="Mean of the three")
    sample_size: int = Field(ge=0, description="Predictions in the buffer")
    confidence_interval: tuple[float, float] = Field(description="95% interval of overall")
    timestamp: datetime = Field(default_factory=datetime.now, description="Snapshot time")


class DriftResult(BaseModel):
    """Comparison of a current snapshot against a baseline."""

    detected: bool = Field(description="Magnitude exceeds the drift threshold")
    magnitude: float = Field(ge=0.0, description="Largest absolute metric delta")
    affected_metrics: list[str] = Field(default_factory=list, description="Metrics over threshold")
    significance: float = Field(ge=0.0, le=1.0, description="Confidence the change is real")
    recommended_action: DriftAction = Field(description="Recommended action")
    cost_drift: float = Field(default=0.0, description="Absolute cost accuracy delta")
    time_drift: float = Field(default=0.0, description="Absolute latency accuracy delta")
    quality_drift: float = Field(default=0.0, description="Absolute quality accuracy delta")
    baseline: AccuracySnapshot = Field(description="Reference snapshot")
    current: AccuracySnapshot = Field(description="Current snapshot")


class ModelComparison(BaseModel):
    """Accuracy comparison of two backend models."""

    baseline_key: str = Field(description="Baseline backend/model")
    comparison_key: str = Field(description="Comparison backend/model")
    cost_difference: float = Field(default=0.0, description="Comparison minus baseline")
    time_difference: float = Field(default=0.0, description="Comparison minus baseline")
    quality_difference: float = Field(default=0.0, description="Comparison minus baseline")
    is_significant: bool = Field(default=False, description="Difference is significant")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Significance score")
    recommendation: ComparisonRecommendation = Field(description="Recommendation")


class QualityScoreUpdate(BaseModel):
    """Result of folding production outcomes into a model's quality score."""

    backend: str
    model: str
    previous_score: float
    new_score: float
    confidence: float
    sample_size: int
    update_reason: UpdateReason
    timestamp: datetime = Field(default_factory=datetime.now)


@dataclass(frozen=True)
class TrackedPrediction:
    """A prediction paired with the observed outcome."""

    prediction: PredictionResult
    actual_cost: float
    actual_response_time: float
    actual_quality: float


SEED_BASELINES: dict[str, dict[str, Any]] = {
    "anthropic/claude-sonnet-4-20250514": {
        "cost_accuracy": 0.85,
        "time_accuracy": 0.82,
        "quality_accuracy": 0.92,
        "overall_accuracy": 0.863,
        "sample_size": 50,
        "confidence_interval": (0.82, 0.91),
    },
    "anthropic/claude-3-5-sonnet-20241022": {
        "cost_accuracy": 0.88,
        "time_accuracy": 0.85,
        "quality_accuracy": 0.89,
        "overall_accuracy": 0.873,
        "sample_size": 100,
        "confidence_interval": (0.84, 0.91),
    },
}


def classify_drift(magnitude: float) -> DriftAction:
    """Map a drift magnitude to an action; higher bands supersede lower ones."""
    for bound, action in DRIFT_BANDS:
        if magnitude > bound:
            return action
    return "monitor"


class AccuracyMonitor:
    """Tracks prediction accuracy per backend model and detects drift.

    Example:
        ```python
        monitor = AccuracyMonitor()
        monitor.track_prediction("openai", "gpt-4o", prediction, 0.012, 1900.0, 0.8)
        drift = monitor.detect_drift("openai", "gpt-4o")
        ```
    """

    def __init__(
        self,
        config: AccuracyConfig | None = None,
        significance: SignificanceTest | None = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Monitor configuration
            significance: Significance test for drift and comparisons
            clock: Source of the current time
            rng: Random source used for tracking sampling
        """
        self.config = config or AccuracyConfig()
        self.significance = significance or StudentTSignificance()
        self._clock = clock
        self._rng = rng or random.Random()
        self._interval_z = z_for_confidence(self.config.confidence_level)

        self._lock = threading.RLock()
        self._predictions: dict[str, deque[TrackedPrediction]] = {}
        self._snapshots: dict[str, deque[AccuracySnapshot]] = {}
        self._baselines: dict[str, AccuracySnapshot] = {}
        self._quality_scores: dict[str, float] = {}
        self._overhead_ms: deque[float] = deque(maxlen=OVERHEAD_WINDOW)
        self._drift_checks = 0

        self.alerts = AlertLog(
            "Accuracy",
            cooldown_seconds=self.config.alert_cooldown_seconds,
            max_alerts=self.config.max_alerts,
            trim_to=self.config.alerts_trim_to,
            clock=clock,
        )

        if self.config.seed_baselines:
            self.seed_baselines()

        logger.info(
            "AccuracyMonitor initialized (drift threshold: %.2f, accuracy target: %.2f, "
            "significance: %s)",
            self.config.drift_threshold,
            self.config.accuracy_threshold,
            self.significance.name,
        )

    @staticmethod
    def make_key(backend: str, model: str) -> str:
        return f"{backend}/{model}"

    # ==========================================================================
    # Tracking
    # ==========================================================================

    def track_prediction(
        self,
        backend: str,
        model: str,
        prediction: PredictionResult,
        actual_cost: float,
        actual_response_time: float,
        actual_quality: float,
    ) -> AccuracySnapshot | None:
        """Record a prediction/outcome pair and re-evaluate the key.

        Returns:
            The new snapshot, or None when the pair was not sampled
        """
        started = time.perf_counter()
        try:
            if self._rng.random() >= self.config.sampling_rate:
                return None

            key = self.make_key(backend, model)
            tracked = TrackedPrediction(
                prediction, actual_cost, actual_response_time, actual_quality
            )

            with self._lock:
                buffer = self._predictions.get(key)
                if buffer is None:
                    buffer = deque(maxlen=self.config.max_history_size)
                    self._predictions[key] = buffer
                buffer.append(tracked)
                snapshot = self.compute_snapshot(list(buffer))

                history = self._snapshots.get(key)
                if history is None:
                    history = deque(maxlen=self.config.max_snapshots_per_key)
                    self._snapshots[key] = history
                history.append(snapshot)

            self._check_anomalies(key, snapshot)
            return snapshot
        finally:
            self._overhead_ms.append((time.perf_counter() - started) * 1000)

    def compute_snapshot(self, pairs: Sequence[TrackedPrediction]) -> AccuracySnapshot:
        """Average per-sample accuracies of ``pairs`` into a snapshot."""
        now = self._clock()
        if not pairs:
            return AccuracySnapshot(
                cost_accuracy=0.0,
                time_accuracy=0.0,
                quality_accuracy=0.0,
                overall_accuracy=0.0,
                sample_size=0,
                confidence_interval=(0.0, 0.0),
                timestamp=now,
            )

        cost = mean(
            [
                relative_accuracy(p.prediction.predicted_cost, p.actual_cost, COST_EPSILON)
                for p in pairs
            ]
        )
        latency = mean(
            [
                relative_accuracy(
                    p.prediction.predicted_response_time, p.actual_response_time, LATENCY_EPSILON_MS
                )
                for p in pairs
            ]
        )
        quality = mean(
            [
                relative_accuracy(p.prediction.predicted_quality, p.actual_quality, QUALITY_EPSILON)
                for p in pairs
            ]
        )
        overall = (cost + latency + quality) / 3

        return AccuracySnapshot(
            cost_accuracy=clamp(cost),
            time_accuracy=clamp(latency),
            quality_accuracy=clamp(quality),
            overall_accuracy=clamp(overall),
            sample_size=len(pairs),
            confidence_interval=proportion_interval(overall, len(pairs), self._interval_z),
            timestamp=now,
        )

    def _check_anomalies(self, key: str, snapshot: AccuracySnapshot) -> None:
        if (
            snapshot.overall_accuracy < self.config.accuracy_threshold
            and snapshot.sample_size >= self.config.min_sample_size
        ):
            severity = (
                AlertSeverity.HIGH
                if snapshot.overall_accuracy < DEGRADATION_HIGH_SEVERITY_BELOW
                else AlertSeverity.MEDIUM
            )
            self.alerts.raise_alert(
                "accuracy_degradation",
                severity,
                f"Accuracy of {key} dropped to {snapshot.overall_accuracy * 100:.1f}% "
                f"(target: {self.config.accuracy_threshold * 100:.1f}%)",
                key=key,
                value=snapshot.overall_accuracy,
                threshold=self.config.accuracy_threshold,
            )

        baseline = self.get_baseline_for_key(key)
        if baseline is None:
            return

        drift = self.compare_snapshots(baseline, snapshot)
        with self._lock:
            self._drift_checks += 1
        if drift.detected and drift.recommended_action != "monitor":
            severity = (
                AlertSeverity.CRITICAL
                if drift.recommended_action == "fallback"
                else AlertSeverity.HIGH
            )
            self.alerts.raise_alert(
                "drift_detected",
                severity,
                f"Performance drift detected for {key}: {drift.magnitude * 100:.1f}% change in "
                f"{', '.join(drift.affected_metrics)}",
                key=key,
                value=drift.magnitude,
                threshold=self.config.drift_threshold,
                details={"recommended_action": drift.recommended_action},
            )

    # ==========================================================================
    # Drift and comparison
    # ==========================================================================

    def _significance(self, a: AccuracySnapshot, b: AccuracySnapshot) -> float:
        if min(a.sample_size, b.sample_size) < self.config.min_sample_size:
            return 0.0
        return proportion_difference_confidence(
            a.overall_accuracy, a.sample_size, b.overall_accuracy, b.sample_size, self.significance
        )

    def compare_snapshots(
        self, baseline: AccuracySnapshot, current: AccuracySnapshot
    ) -> DriftResult:
        """Measure drift of ``current`` relative to ``baseline``."""
        cost_drift = abs(current.cost_accuracy - baseline.cost_accuracy)
        time_drift = abs(current.time_accuracy - baseline.time_accuracy)
        quality_drift = abs(current.quality_accuracy - baseline.quality_accuracy)
        magnitude = max(cost_drift, time_drift, quality_drift)
        threshold = self.config.drift_threshold

        affected = [
            name
            for name, delta in (
                ("cost", cost_drift),
                ("response_time", time_drift),
                ("quality", quality_drift),
            )
            if delta > threshold
        ]

        return DriftResult(
            detected=magnitude > threshold,
            magnitude=magnitude,
            affected_metrics=affected,
            significance=self._significance(baseline, current),
            recommended_action=classify_drift(magnitude),
            cost_drift=cost_drift,
            time_drift=time_drift,
            quality_drift=quality_drift,
            baseline=baseline,
            current=current,
        )

    def detect_drift(self, backend: str, model: str) -> DriftResult | None:
        """Compare the current snapshot of a model against its baseline."""
        key = self.make_key(backend, model)
        baseline = self.get_baseline_for_key(key)
        current = self.get_current_snapshot(backend, model)
        if baseline is None or current is None:
            return None
        return self.compare_snapshots(baseline, current)

    def compare_models(
        self,
        baseline_backend: str,
        baseline_model: str,
        comparison_backend: str,
        comparison_model: str,
    ) -> ModelComparison:
        """Compare the current accuracy of two backend models."""
        baseline_key = self.make_key(baseline_backend, baseline_model)
        comparison_key = self.make_key(comparison_backend, comparison_model)
        baseline = self.get_current_snapshot(baseline_backend, baseline_model)
        comparison = self.get_current_snapshot(comparison_backend, comparison_model)

        if baseline is None or comparison is None:
            return ModelComparison(
                baseline_key=baseline_key,
                comparison_key=comparison_key,
                recommendation="insufficient_data",
            )

        cost_diff = comparison.cost_accuracy - baseline.cost_accuracy
        time_diff = comparison.time_accuracy - baseline.time_accuracy
        quality_diff = comparison.quality_accuracy - baseline.quality_accuracy
        confidence = self._significance(baseline, comparison)
        is_significant = confidence > COMPARISON_SIGNIFICANCE

        recommendation: ComparisonRecommendation = "equivalent"
        overall_diff = (cost_diff + time_diff + quality_diff) / 3
        if is_significant:
            if overall_diff > COMPARISON_MIN_DIFFERENCE:
                recommendation = "prefer_comparison"
            elif overall_diff < -COMPARISON_MIN_DIFFERENCE:
                recommendation = "prefer_baseline"

        return ModelComparison(
            baseline_key=baseline_key,
            comparison_key=comparison_key,
            cost_difference=round(cost_diff, 4),
            time_difference=round(time_diff, 4),
            quality_difference=round(quality_diff, 4),
            is_significant=is_significant,
            confidence=confidence,
            recommendation=recommendation,
        )

    # ==========================================================================
    # Baselines
    # ==========================================================================

    def seed_baselines(self) -> None:
        now = self._clock()
        with self._lock:
            for key, values in SEED_BASELINES.items():
                self._baselines[key] = AccuracySnapshot(**values, timestamp=now)

    def set_baseline(self, backend: str, model: str, snapshot: AccuracySnapshot) -> None:
        with self._lock:
            self._baselines[self.make_key(backend, model)] = snapshot
        logger.info("Baseline set for %s/%s", backend, model)

    def capture_baseline(self, backend: str, model: str) -> AccuracySnapshot | None:
        """Make the current snapshot of a model its drift baseline."""
        current = self.get_current_snapshot(backend, model)
        if current is not None:
            self.set_baseline(backend, model, current)
        return current

    def get_baseline(self, backend: str, model: str) -> AccuracySnapshot | None:
        return self.get_baseline_for_key(self.make_key(backend, model))

    def get_baseline_for_key(self, key: str) -> AccuracySnapshot | None:
        with self._lock:
            return self._baselines.get(key)

    # ==========================================================================
    # Quality scores
    # ==========================================================================

    def update_quality_score(
        self, backend: str, model: str, records: Sequence[LearningRecord]
    ) -> QualityScoreUpdate | None:
        """Blend the mean quality of ``records`` into the model's score.

        Returns:
            The update, or None when ``records`` is empty
        """
        if not records:
            return None

        key = self.make_key(backend, model)
        with self._lock:
            current = self._quality_scores.get(key, DEFAULT_QUALITY_SCORE)
            avg_quality = mean([r.actual_quality for r in records])
            new_score = current * (1 - QUALITY_LEARNING_RATE) + avg_quality * QUALITY_LEARNING_RATE
            self._quality_scores[key] = new_score

        delta = new_score - current
        reason: UpdateReason = "new_data"
        if abs(delta) > self.config.drift_threshold:
            reason = "performance_improvement" if delta > 0 else "performance_degradation"

        return QualityScoreUpdate(
            backend=backend,
            model=model,
            previous_score=current,
            new_score=new_score,
            confidence=min(1.0, len(records) / self.config.min_sample_size),
            sample_size=len(records),
            update_reason=reason,
            timestamp=self._clock(),
        )

    def get_quality_score(self, backend: str, model: str) -> float:
        with self._lock:
            return self._quality_scores.get(self.make_key(backend, model), DEFAULT_QUALITY_SCORE)

    # ==========================================================================
    # Queries
    # ==========================================================================

    def get_current_snapshot(self, backend: str, model: str) -> AccuracySnapshot | None:
        with self._lock:
            history = self._snapshots.get(self.make_key(backend, model))
            return history[-1] if history else None

    def get_snapshots(self, backend: str, model: str) -> list[AccuracySnapshot]:
        with self._lock:
            return list(self._snapshots.get(self.make_key(backend, model), ()))

    def latest_snapshots(self) -> list[AccuracySnapshot]:
        """Most recent snapshot of every tracked key."""
        with self._lock:
            return [history[-1] for history in self._snapshots.values() if history]

    def get_alerts(self, unresolved_only: bool = False) -> list[MonitoringAlert]:
        return self.alerts.get_alerts(unresolved_only)

    def monitoring_performance(self) -> dict[str, float]:
        """Tracking overhead over the last tracked predictions."""
        samples = list(self._overhead_ms)
        if not samples:
            return {"average_overhead_ms": 0.0, "max_overhead_ms": 0.0, "p95_overhead_ms": 0.0}
        return {
            "average_overhead_ms": round(mean(samples), 2),
            "max_overhead_ms": round(max(samples), 2),
            "p95_overhead_ms": round(percentile(samples, 0.95), 2),
        }

    def insights(self) -> dict[str, Any]:
        """Aggregate view of what the monitor has tracked."""
        with self._lock:
            all_snapshots = [s for history in self._snapshots.values() for s in history]
            latest = {key: history[-1] for key, history in self._snapshots.items() if history}
            predictions = sum(len(buffer) for buffer in self._predictions.values())
            drift_checks = self._drift_checks

        top_models = sorted(
            ({"key": key, "accuracy": s.overall_accuracy} for key, s in latest.items()),
            key=lambda item: item["accuracy"],
            reverse=True,
        )[:TOP_MODELS]

        return {
            "models_tracked": len(latest),
            "predictions_analyzed": predictions,
            "average_accuracy": mean([s.overall_accuracy for s in all_snapshots]),
            "drift_checks": drift_checks,
            "drift_detections": self.alerts.count("drift_detected"),
            "alerts_summary": self.alerts.summary(),
            "top_models": top_models,
            "sampling_rate": self.config.sampling_rate,
            "monitoring_performance": self.monitoring_performance(),
        }

    def reset(self) -> None:
        """Clear tracked data and alerts; seeded baselines are restored."""
        with self._lock:
            self._predictions.clear()
            self._snapshots.clear()
            self._baselines.clear()
            self._quality_scores.clear()
            self._overhead_ms.clear()
            self._drift_checks = 0
        self.alerts.clear()
        if self.config.seed_baselines:
            self.seed_baselines()
