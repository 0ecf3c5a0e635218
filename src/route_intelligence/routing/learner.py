"""Outcome learning.

The learner ingests the observed outcome of a served request. The cheap,
synchronous part updates the performance table, the learning dataset and the
user's feature history. Accuracy, experiment and health bookkeeping is handed
to the background dispatcher so the caller never waits on it.

Recording is best-effort: it happens after the real backend call has already
been paid for, so errors are logged and never propagated.
"""

from __future__ import annotations

import threading
import uuid
from collections import Counter, defaultdict, deque
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from ..core.background import BackgroundDispatcher
from ..core.config import LearningConfig
from ..core.logger import get_logger, log_exception
from ..core.statistics import mean, relative_accuracy
from .base import (
    CompletionOutcome,
    CompletionRequest,
    LearningRecord,
    PredictionResult,
    RoutingDecision,
)
from .features import FeatureExtractor
from .performance import PerformanceTable
from .quality import score_outcome

if TYPE_CHECKING:
    from ..experiments.framework import ExperimentFramework
    from ..monitoring.accuracy import AccuracyMonitor
    from ..monitoring.health import HealthMonitor

logger = get_logger("routing.learner")

COST_EPSILON = 0.001
LATENCY_EPSILON_MS = 1.0
QUALITY_EPSILON = 0.001
MIN_COST_FOR_RATIO = 1e-6


class OutcomeLearner:
    """Learns from executed requests and answers insight queries.

    Example:
        ```python
        learner = OutcomeLearner(table, extractor, dispatcher=dispatcher, accuracy=monitor)
        learner.record(request, "user-1", "openai", "gpt-4o-mini", outcome, decision.selected)
        print(learner.insights("user-1"))
        ```
    """

    def __init__(
        self,
        table: PerformanceTable,
        extractor: FeatureExtractor,
        config: LearningConfig | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        accuracy: AccuracyMonitor | None = None,
        experiments: ExperimentFramework | None = None,
        health: HealthMonitor | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the learner.

        Args:
            table: Performance table updated with every outcome
            extractor: Feature extractor that owns per-user history
            config: Retention limits
            dispatcher: Background dispatcher for monitor bookkeeping (inline when None)
            accuracy: Accuracy monitor receiving prediction/outcome pairs
            experiments: Experiment framework receiving arm results
            health: Health monitor receiving request samples
            clock: Source of the current time
        """
        self.table = table
        self.extractor = extractor
        self.config = config or LearningConfig()
        self.dispatcher = dispatcher
        self.accuracy = accuracy
        self.experiments = experiments
        self.health = health
        self._clock = clock

        self._lock = threading.RLock()
        self._records: deque[LearningRecord] = deque(maxlen=self.config.max_learning_records)
        self._decision_confidences: deque[float] = deque(maxlen=self.config.max_learning_records)

    # ==========================================================================
    # Recording
    # ==========================================================================

    def note_decision(self, decision: RoutingDecision) -> None:
        """Remember the confidence of a routing decision for insights."""
        with self._lock:
            self._decision_confidences.append(decision.confidence)

    def record(
        self,
        request: CompletionRequest,
        user_id: str,
        actual_backend: str,
        actual_model: str,
        outcome: CompletionOutcome,
        predicted: PredictionResult | None = None,
        request_id: str | None = None,
    ) -> LearningRecord | None:
        """Record the observed outcome of a served request.

        Args:
            request: The request that was served
            user_id: User that issued the request
            actual_backend: Backend that served it
            actual_model: Model that served it
            outcome: Observed cost, latency and finish state
            predicted: Prediction that accompanied the routing decision, if any
            request_id: Identifier of the request (generated when omitted)

        Returns:
            The learning record, or None if recording failed
        """
        try:
            features = self.extractor.extract(request, user_id)
            quality = score_outcome(outcome)
            record = LearningRecord(
                features=features,
                user_id=user_id,
                actual_backend=actual_backend,
                actual_model=actual_model,
                actual_cost=outcome.cost,
                actual_response_time=outcome.response_time_ms,
                actual_quality=quality,
                user_satisfaction=outcome.user_satisfaction,
                success=outcome.success,
                timestamp=self._clock(),
            )

            with self._lock:
                self._records.append(record)
            self.table.record(
                actual_backend,
                actual_model,
                outcome.cost,
                outcome.response_time_ms,
                quality,
                success=outcome.success,
            )
            self.extractor.observe(user_id, features)

            self._forward(request, record, outcome, predicted, request_id or str(uuid.uuid4()))
            logger.debug(
                "Learned from %s/%s for user %s (quality=%.2f)",
                actual_backend,
                actual_model,
                user_id,
                quality,
            )
            return record
        except Exception as exc:
            log_exception(logger, exc, "Failed to learn from execution")
            return None

    def _forward(
        self,
        request: CompletionRequest,
        record: LearningRecord,
        outcome: CompletionOutcome,
        predicted: PredictionResult | None,
        request_id: str,
    ) -> None:
        if self.health is not None:
            self._defer(
                self.health.record_request,
                request,
                outcome.response_time_ms,
                None if outcome.success else (outcome.error or "request failed"),
                record.actual_backend,
                record.actual_model,
            )

        if predicted is None:
            return

        if self.accuracy is not None:
            self._defer(
                self.accuracy.track_prediction,
                record.actual_backend,
                record.actual_model,
                predicted,
                record.actual_cost,
                record.actual_response_time,
                record.actual_quality,
            )

        if self.health is not None:
            self._defer(self.health.record_prediction_accuracy, predicted, record.actual_cost)

        if self.experiments is not None:
            self._defer(
                self._forward_experiment, self.experiments, record, predicted, request_id
            )

    @staticmethod
    def _forward_experiment(
        experiments: ExperimentFramework,
        record: LearningRecord,
        predicted: PredictionResult,
        request_id: str,
    ) -> None:
        assignment = experiments.find_assignment(
            record.user_id, record.actual_backend, record.actual_model
        )
        if assignment is None:
            return

        experiments.record_result(
            assignment.test_id,
            variant=assignment.variant,
            user_id=record.user_id,
            request_id=request_id,
            actual_cost=record.actual_cost,
            actual_response_time=record.actual_response_time,
            actual_quality=record.actual_quality,
            user_satisfaction=record.user_satisfaction,
            cost_accuracy=relative_accuracy(
                predicted.predicted_cost, record.actual_cost, COST_EPSILON
            ),
            time_accuracy=relative_accuracy(
                predicted.predicted_response_time,
                record.actual_response_time,
                LATENCY_EPSILON_MS,
            ),
            quality_accuracy=relative_accuracy(
                predicted.predicted_quality, record.actual_quality, QUALITY_EPSILON
            ),
        )

    def _defer(self, func: Callable[..., Any], *args: Any) -> None:
        if self.dispatcher is not None:
            self.dispatcher.submit(func, *args)
            return
        try:
            func(*args)
        except Exception as exc:
            log_exception(logger, exc, f"Bookkeeping task {func.__qualname__} failed")

    # ==========================================================================
    # Insights
    # ==========================================================================

    def get_records(self) -> list[LearningRecord]:
        with self._lock:
            return list(self._records)

    def insights(self, user_id: str | None = None) -> dict[str, Any]:
        """Summarize what the learner has seen.

        Args:
            user_id: When given, include that user's request patterns

        Returns:
            Dictionary with prediction counts, confidence, accuracy metrics,
            recommendations and, optionally, user patterns
        """
        with self._lock:
            records = list(self._records)
            confidences = list(self._decision_confidences)

        result: dict[str, Any] = {
            "total_predictions": len(records),
            "average_confidence": mean(confidences),
            "accuracy_metrics": self._accuracy_metrics(),
            "model_recommendations": self._recommendations(records),
        }
        if user_id is not None:
            result["user_patterns"] = self._user_patterns(user_id, records)
        return result

    def _accuracy_metrics(self) -> dict[str, float]:
        snapshots = self.accuracy.latest_snapshots() if self.accuracy is not None else []
        return {
            "cost_accuracy": mean([s.cost_accuracy for s in snapshots]),
            "time_accuracy": mean([s.time_accuracy for s in snapshots]),
            "quality_accuracy": mean([s.quality_accuracy for s in snapshots]),
        }

    @staticmethod
    def _recommendations(records: list[LearningRecord]) -> list[dict[str, Any]]:
        """Best backend per request type by quality per unit cost."""
        by_type: dict[str, dict[str, list[LearningRecord]]] = defaultdict(
            lambda: defaultdict(list)
        )
        for record in records:
            by_type[record.features.request_type.value][record.actual_backend].append(record)

        recommendations = []
        for request_type, per_backend in by_type.items():
            best_backend = None
            best_value = -1.0
            for backend, items in per_backend.items():
                value = mean([r.actual_quality for r in items]) / max(
                    mean([r.actual_cost for r in items]), MIN_COST_FOR_RATIO
                )
                if value > best_value:
                    best_backend, best_value = backend, value

            all_cost = mean([r.actual_cost for items in per_backend.values() for r in items])
            best_cost = mean([r.actual_cost for r in per_backend[best_backend]])
            savings = (all_cost - best_cost) / all_cost * 100 if all_cost > 0 else 0.0
            recommendations.append(
                {
                    "scenario": request_type,
                    "recommended_backend": best_backend,
                    "expected_savings": savings,
                    "samples": sum(len(items) for items in per_backend.values()),
                }
            )
        recommendations.sort(key=lambda item: item["samples"], reverse=True)
        return recommendations

    def _user_patterns(self, user_id: str, records: list[LearningRecord]) -> dict[str, Any]:
        history = self.extractor.get_user_history(user_id)
        type_counts = Counter(f.request_type.value for f in history)
        common_types = [
            {"type": request_type, "frequency": count / len(history)}
            for request_type, count in type_counts.most_common()
        ]

        user_records = [r for r in records if r.user_id == user_id]
        backend_counts = Counter(r.actual_backend for r in user_records)
        preferred = [
            {"backend": backend, "usage": count / len(user_records)}
            for backend, count in backend_counts.most_common()
        ]
        return {
            "common_request_types": common_types,
            "preferred_backends": preferred,
            "observations": len(history),
        }

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._decision_confidences.clear()
