"""Performance prediction and backend selection.

For every candidate backend model the predictor estimates cost, latency and
quality, either from a fixed baseline (too little history) or from a
recency-weighted average of the performance table. Predictions that violate the
caller's constraints or fall below the confidence threshold are dropped; the
remaining ones are ranked by an objective-specific weighted score.

Routing never raises: when nothing survives filtering, or anything goes wrong
internally, a deterministic fallback decision is returned.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Sequence

from ..core.config import OptimizationObjective, RoutingConfig
from ..core.logger import get_logger, log_exception
from ..core.statistics import clamp
from .base import PredictionResult, RequestFeatures, RoutingConstraints, RoutingDecision
from .catalog import base_cost, base_quality, base_response_time, get_backend_models
from .performance import PerformanceTable

logger = get_logger("routing.predictor")

SECONDS_PER_DAY = 24 * 60 * 60

# (cost, time, quality) weights per objective
OBJECTIVE_WEIGHTS: dict[str, tuple[float, float, float]] = {
    "cost": (0.7, 0.1, 0.2),
    "speed": (0.1, 0.7, 0.2),
    "quality": (0.1, 0.2, 0.7),
    "balanced": (1 / 3, 1 / 3, 1 / 3),
}

BASELINE_CONFIDENCE = 0.5
HISTORY_COST_FACTOR = 0.3
HISTORY_QUALITY_FACTOR = 0.1
SAMPLE_CONFIDENCE_WEIGHT = 0.6
RECENCY_CONFIDENCE_WEIGHT = 0.4
FULL_CONFIDENCE_SAMPLES = 10

FALLBACK_MODEL = "gpt-4o-mini"
FALLBACK_COST = 0.01
FALLBACK_RESPONSE_TIME = 2000.0
FALLBACK_QUALITY = 0.8
FALLBACK_REASONING = "fallback"


class Predictor:
    """Predicts backend performance and selects the best backend model.

    Example:
        ```python
        predictor = Predictor(table)
        decision = predictor.route(features, ["openai", "google"], objective="cost")
        print(decision.backend, decision.model, decision.selected.reasoning)
        ```
    """

    def __init__(
        self,
        table: PerformanceTable,
        config: RoutingConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.table = table
        self.config = config or RoutingConfig()
        self._clock = clock

    # ==========================================================================
    # Prediction
    # ==========================================================================

    def baseline_estimate(
        self, features: RequestFeatures, backend: str, model: str
    ) -> PredictionResult:
        """Fixed per-backend/per-model estimate scaled by request complexity."""
        multiplier = 1 + features.complexity_score
        return PredictionResult(
            backend=backend,
            model=model,
            predicted_cost=base_cost(backend, model) * multiplier,
            predicted_response_time=base_response_time(backend) * multiplier,
            predicted_quality=base_quality(backend, model),
            confidence=BASELINE_CONFIDENCE,
            reasoning="Baseline estimate (insufficient historical data)",
        )

    def predict(self, features: RequestFeatures, backend: str, model: str) -> PredictionResult:
        """Predict the performance of one backend model for ``features``."""
        history = self.table.get_history(backend, model)
        if len(history) < self.config.min_samples_for_prediction:
            return self.baseline_estimate(features, backend, model)

        now = self._clock()
        window = self.config.history_window_days
        relevant: list[tuple[float, float, float, float]] = []
        for entry in history:
            age_days = max(0.0, (now - entry.last_updated).total_seconds() / SECONDS_PER_DAY)
            if age_days < window and entry.sample_size >= self.config.min_aggregated_samples:
                relevant.append(
                    (age_days, entry.avg_cost, entry.avg_response_time, entry.quality_score)
                )

        if not relevant:
            return self.baseline_estimate(features, backend, model)

        weights = [1 / (1 + age) for age, _, _, _ in relevant]
        total_weight = sum(weights)
        cost = sum(w * item[1] for w, item in zip(weights, relevant)) / total_weight
        latency = sum(w * item[2] for w, item in zip(weights, relevant)) / total_weight
        quality = sum(w * item[3] for w, item in zip(weights, relevant)) / total_weight

        complexity = features.complexity_score
        multiplier = 1 + HISTORY_COST_FACTOR * complexity

        horizon = self.config.recency_horizon_days
        recency = sum(max(0.0, 1 - age / horizon) for age, _, _, _ in relevant) / len(relevant)
        sample_confidence = min(1.0, len(relevant) / FULL_CONFIDENCE_SAMPLES)
        confidence = (
            SAMPLE_CONFIDENCE_WEIGHT * sample_confidence + RECENCY_CONFIDENCE_WEIGHT * recency
        )

        return PredictionResult(
            backend=backend,
            model=model,
            predicted_cost=cost * multiplier,
            predicted_response_time=latency * multiplier,
            predicted_quality=clamp(quality * (1 + HISTORY_QUALITY_FACTOR * complexity)),
            confidence=clamp(confidence),
            reasoning=f"Prediction based on {len(relevant)} recent observations",
        )

    def predict_all(
        self, features: RequestFeatures, backends: Sequence[str]
    ) -> list[PredictionResult]:
        """Predict every catalog model of every backend, in declaration order."""
        predictions: list[PredictionResult] = []
        for backend in backends:
            for model in get_backend_models(backend):
                predictions.append(self.predict(features, backend, model))
        return predictions

    def filter(
        self,
        predictions: Sequence[PredictionResult],
        constraints: RoutingConstraints | None = None,
    ) -> list[PredictionResult]:
        """Drop predictions violating ``constraints`` or below the confidence threshold."""
        constraints = constraints or RoutingConstraints()
        survivors = []
        for p in predictions:
            if constraints.max_cost is not None and p.predicted_cost > constraints.max_cost:
                continue
            if (
                constraints.min_quality is not None
                and p.predicted_quality < constraints.min_quality
            ):
                continue
            if (
                constraints.max_response_time is not None
                and p.predicted_response_time > constraints.max_response_time
            ):
                continue
            if p.confidence < self.config.confidence_threshold:
                continue
            survivors.append(p)
        return survivors

    def resolve_objective(self, objective: str | None) -> OptimizationObjective:
        """Map a missing or unknown objective to the configured default."""
        if objective is None:
            return self.config.default_objective
        if not isinstance(objective, str) or objective not in OBJECTIVE_WEIGHTS:
            logger.warning(
                "Unknown optimization objective %r, using %s",
                objective,
                self.config.default_objective,
            )
            return self.config.default_objective
        return objective  # type: ignore[return-value]

    def score(self, prediction: PredictionResult, objective: OptimizationObjective) -> float:
        """Objective-weighted score of normalized cost, time and quality, times confidence."""
        cost_weight, time_weight, quality_weight = OBJECTIVE_WEIGHTS.get(
            objective, OBJECTIVE_WEIGHTS["balanced"]
        )
        normalized_cost = 1 - min(1.0, prediction.predicted_cost / self.config.cost_normalizer)
        normalized_time = 1 - min(
            1.0, prediction.predicted_response_time / self.config.latency_normalizer_ms
        )
        weighted = (
            cost_weight * normalized_cost
            + time_weight * normalized_time
            + quality_weight * prediction.predicted_quality
        )
        return clamp(weighted * prediction.confidence)

    # ==========================================================================
    # Routing
    # ==========================================================================

    def route(
        self,
        features: RequestFeatures,
        candidate_backends: Sequence[str],
        objective: OptimizationObjective | None = None,
        constraints: RoutingConstraints | None = None,
    ) -> RoutingDecision:
        """Select the best backend model for ``features``.

        Args:
            features: Features of the request being routed
            candidate_backends: Available backends in declaration order
            objective: Optimization objective (defaults to the configured one)
            constraints: Optional hard limits

        Returns:
            The routing decision; a fallback decision if nothing qualifies
        """
        started = time.perf_counter()
        objective = self.resolve_objective(objective)

        try:
            predictions = self.predict_all(features, candidate_backends)
            survivors = self.filter(predictions, constraints)
            if not survivors:
                logger.debug(
                    "No prediction met the criteria (%d candidates), using fallback",
                    len(predictions),
                )
                return self.fallback(candidate_backends, objective, features, started)

            scored = [(self.score(p, objective), p) for p in survivors]
            # stable sort keeps declaration order among equal scores
            scored.sort(key=lambda item: item[0], reverse=True)
            best_score, selected = scored[0]
            selected = selected.model_copy(
                update={"reasoning": self.reasoning(selected, objective)}
            )
            alternatives = [p for _, p in scored[1 : 1 + self.config.max_alternatives]]

            decision = RoutingDecision(
                selected=selected,
                alternatives=alternatives,
                objective=objective,
                score=best_score,
                is_fallback=False,
                routing_time_ms=(time.perf_counter() - started) * 1000,
                features=features,
            )
            logger.debug(
                "Routed to %s (score=%.3f, confidence=%.2f, %d alternatives)",
                selected.key,
                best_score,
                selected.confidence,
                len(alternatives),
            )
            return decision
        except Exception as exc:
            log_exception(logger, exc, "Routing failed, falling back")
            return self.fallback(candidate_backends, objective, features, started)

    def fallback(
        self,
        candidate_backends: Sequence[str],
        objective: str | None = None,
        features: RequestFeatures | None = None,
        started: float | None = None,
    ) -> RoutingDecision:
        """Deterministic decision: first available backend and its first catalog model."""
        objective = self.resolve_objective(objective)
        backend = candidate_backends[0] if candidate_backends else self.config.fallback_backend
        models = get_backend_models(backend)
        model = models[0] if models else FALLBACK_MODEL

        selected = PredictionResult(
            backend=backend,
            model=model,
            predicted_cost=FALLBACK_COST,
            predicted_response_time=FALLBACK_RESPONSE_TIME,
            predicted_quality=FALLBACK_QUALITY,
            confidence=BASELINE_CONFIDENCE,
            reasoning=FALLBACK_REASONING,
        )
        elapsed = 0.0 if started is None else (time.perf_counter() - started) * 1000
        return RoutingDecision(
            selected=selected,
            alternatives=[],
            objective=objective,
            score=self.score(selected, objective),
            is_fallback=True,
            routing_time_ms=elapsed,
            features=features,
        )

    @staticmethod
    def reasoning(selected: PredictionResult, objective: OptimizationObjective) -> str:
        """Explain a selection: objective, strongest reasons and confidence."""
        reasons = []
        if objective == "cost" and selected.predicted_cost < 0.01:
            reasons.append("lowest predicted cost")
        if objective == "speed" and selected.predicted_response_time < 2000:
            reasons.append("fastest predicted response")
        if objective == "quality" and selected.predicted_quality > 0.9:
            reasons.append("highest predicted quality")
        reasons.append(f"{round(selected.confidence * 100)}% confidence")
        return f"Optimized for {objective}: {', '.join(reasons)}"
