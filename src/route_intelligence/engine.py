"""Routing engine that orchestrates all components."""

from __future__ import annotations

import random
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Sequence

from .core import ConfigurationError, EngineConfig, get_logger, setup_logging
from .core.background import BackgroundDispatcher, PeriodicWorker
from .core.config import OptimizationObjective
from .core.logger import log_exception
from .core.statistics import get_significance_test
from .experiments import ExperimentFramework
from .monitoring import AccuracyMonitor, HealthMonitor, HealthStatus, MonitoringAlert
from .routing import (
    CompletionOutcome,
    CompletionRequest,
    FeatureExtractor,
    LearningRecord,
    OutcomeLearner,
    PerformanceTable,
    PredictionResult,
    Predictor,
    RequestFeatures,
    RoutingConstraints,
    RoutingDecision,
)

logger = get_logger("engine")


class RoutingEngine:
    """Backend routing engine.

    This class integrates:
    - Feature extraction and the performance table
    - The predictor/router
    - The outcome learner
    - Accuracy and health monitoring
    - The experiment framework
    - Background bookkeeping and periodic workers

    Example:
        ```python
        from route_intelligence import CompletionOutcome, CompletionRequest, RoutingEngine

        with RoutingEngine() as engine:
            request = CompletionRequest(messages=[{"role": "user", "content": "Write a function"}])
            decision = engine.route(request, "user-1", ["openai", "anthropic"], objective="cost")
            # ... call decision.backend / decision.model ...
            engine.record_outcome(
                request,
                "user-1",
                decision.backend,
                decision.model,
                CompletionOutcome(cost=0.004, response_time_ms=1450.0),
                decision=decision,
            )
            print(engine.insights("user-1"))
        ```
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
        memory_probe: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration (defaults plus environment when None)
            clock: Source of the current time, shared by all components
            rng: Random source shared by sampling and experiment assignment
            memory_probe: Returns current memory usage in bytes (process RSS by default)
        """
        self.config = config or EngineConfig()
        self._setup_logging()
        rng = rng or random.Random()

        significance = get_significance_test(self.config.statistics.method)

        self.extractor = FeatureExtractor(self.config.learning, clock=clock)
        self.table = PerformanceTable(self.config.learning, clock=clock)
        if self.config.routing.seed_baseline_history:
            self.table.seed()
        self.predictor = Predictor(self.table, self.config.routing, clock=clock)

        self.dispatcher = BackgroundDispatcher(
            name="engine",
            max_queue_size=self.config.background.max_queue_size,
            enabled=self.config.background.enabled,
        )
        self.accuracy = AccuracyMonitor(
            self.config.accuracy, significance=significance, clock=clock, rng=rng
        )
        health_kwargs: dict[str, Any] = {"queue_size_probe": lambda: len(self.dispatcher)}
        if memory_probe is not None:
            health_kwargs["memory_probe"] = memory_probe
        self.health_monitor = HealthMonitor(
            self.config.health, clock=clock, rng=rng, **health_kwargs
        )
        self.experiments = ExperimentFramework(
            self.config.experiments,
            significance=significance,
            critical_z=self.config.statistics.critical_z,
            clock=clock,
            rng=rng,
        )
        self.learner = OutcomeLearner(
            self.table,
            self.extractor,
            self.config.learning,
            dispatcher=self.dispatcher,
            accuracy=self.accuracy,
            experiments=self.experiments,
            health=self.health_monitor,
            clock=clock,
        )

        self._workers = self._init_workers()
        self._running = False
        logger.info(
            "Routing engine initialized (objective=%s, significance=%s, background=%s)",
            self.config.routing.default_objective,
            significance.name,
            self.config.background.enabled,
        )

    def _setup_logging(self) -> None:
        level_value = getattr(self.config.logging, "level", None)
        if not isinstance(level_value, str):
            logger.debug("Skipping logging configuration setup; invalid logging level provided")
            return
        setup_logging(self.config.logging)

    def _init_workers(self) -> list[PeriodicWorker]:
        workers: list[PeriodicWorker] = []
        health_config = self.config.health
        if health_config.periodic_snapshots:
            workers.append(
                PeriodicWorker(
                    "HealthSnapshots",
                    health_config.snapshot_interval_seconds,
                    self.health_monitor.take_snapshot,
                )
            )
            workers.append(
                PeriodicWorker(
                    "ResourceSampler",
                    health_config.resource_interval_seconds,
                    self.health_monitor.sample_resources,
                )
            )
        if self.config.experiments.periodic_analysis:
            workers.append(
                PeriodicWorker(
                    "ExperimentAnalysis",
                    self.config.experiments.analysis_interval_seconds,
                    self.experiments.run_periodic_analysis,
                )
            )
        return workers

    @classmethod
    def from_config(cls, config_path: str | Path) -> RoutingEngine:
        """Create an engine from a YAML or JSON configuration file.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the format is unsupported or the content is invalid
        """
        config_path = Path(config_path).expanduser()
        if config_path.suffix not in [".yaml", ".yml", ".json"]:
            raise ConfigurationError(
                f"Unsupported config file format: {config_path.suffix}", config_key="path"
            )

        try:
            if config_path.suffix in [".yaml", ".yml"]:
                config = EngineConfig.from_yaml(config_path)
            else:
                config = EngineConfig.from_json(config_path)
        except ValueError as exc:
            logger.error("Invalid configuration in %s: %s", config_path, exc)
            raise ConfigurationError(f"Invalid configuration in {config_path}: {exc}") from exc

        return cls(config)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the background consumer and the periodic workers."""
        if self._running:
            logger.warning("Routing engine is already running")
            return

        self.dispatcher.start()
        for worker in self._workers:
            worker.start()
        self._running = True
        logger.info("Routing engine started (%d periodic workers)", len(self._workers))

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until pending bookkeeping has been processed."""
        if timeout is None:
            timeout = self.config.background.flush_timeout_seconds
        return self.dispatcher.flush(timeout)

    def shutdown(self) -> None:
        """Stop periodic workers and drain the bookkeeping queue."""
        for worker in self._workers:
            try:
                worker.stop()
            except Exception as exc:
                logger.error("Failed to stop worker %s: %s", worker.name, exc, exc_info=True)

        self.dispatcher.stop(self.config.background.flush_timeout_seconds)
        self._running = False
        logger.info("Routing engine stopped")

    def reset(self) -> None:
        """Clear all learned and monitored state."""
        self.dispatcher.clear()
        self.table.clear()
        if self.config.routing.seed_baseline_history:
            self.table.seed()
        self.extractor.clear()
        self.learner.clear()
        self.accuracy.reset()
        self.health_monitor.reset()
        self.experiments.reset()
        logger.info("Routing engine reset")

    def __enter__(self) -> RoutingEngine:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.shutdown()

    # ==========================================================================
    # Routing
    # ==========================================================================

    def route(
        self,
        request: CompletionRequest,
        user_id: str,
        available_backends: Sequence[str],
        objective: OptimizationObjective | None = None,
        constraints: RoutingConstraints | None = None,
    ) -> RoutingDecision:
        """Choose the backend model that should serve ``request``.

        Users taking part in a running experiment are routed to their assigned
        arm when that arm's backend is available. Everyone else is routed by the
        predictor. This method never raises.

        Args:
            request: The completion request
            user_id: User issuing the request
            available_backends: Candidate backends in preference order
            objective: Optimization objective (defaults to the configured one)
            constraints: Optional hard limits on cost, quality and latency

        Returns:
            The routing decision
        """
        started = time.perf_counter()
        objective = self.predictor.resolve_objective(objective)
        try:
            features = self.extractor.extract(request, user_id)
            decision = self._experiment_decision(
                features, user_id, available_backends, objective, started
            )
            if decision is None:
                decision = self.predictor.route(
                    features, available_backends, objective, constraints
                )
        except Exception as exc:
            log_exception(logger, exc, "Routing failed, falling back")
            decision = self.predictor.fallback(available_backends, objective, started=started)

        self.learner.note_decision(decision)
        self.dispatcher.submit(
            self.health_monitor.record_routing, decision.routing_time_ms, decision.selected
        )
        return decision

    def _experiment_decision(
        self,
        features: RequestFeatures,
        user_id: str,
        available_backends: Sequence[str],
        objective: OptimizationObjective,
        started: float,
    ) -> RoutingDecision | None:
        for test in self.experiments.running_tests():
            assignment = self.experiments.get_assignment(test.id, user_id)
            if assignment is not None:
                variant = assignment.variant
            elif self.experiments.should_participate(test.id, user_id, features.request_type):
                variant = self.experiments.assign_variant(test.id, user_id)
            else:
                continue
            if variant is None:
                continue

            arm = self.experiments.get_variant_config(test.id, variant)
            if arm.backend not in available_backends:
                continue

            prediction = self.predictor.predict(features, arm.backend, arm.model)
            selected = prediction.model_copy(
                update={"reasoning": f"A/B test {test.id}: variant {variant}"}
            )
            logger.debug("Routing user %s to %s via A/B test %s", user_id, arm.key, test.id)
            return RoutingDecision(
                selected=selected,
                alternatives=[],
                objective=objective,
                score=self.predictor.score(selected, objective),
                routing_time_ms=(time.perf_counter() - started) * 1000,
                features=features,
                experiment_id=test.id,
                variant=variant,
            )
        return None

    # ==========================================================================
    # Learning
    # ==========================================================================

    def record_outcome(
        self,
        request: CompletionRequest,
        user_id: str,
        backend: str,
        model: str,
        outcome: CompletionOutcome,
        decision: RoutingDecision | None = None,
        predicted: PredictionResult | None = None,
        request_id: str | None = None,
    ) -> LearningRecord | None:
        """Feed the observed outcome of a served request back into the engine.

        Args:
            request: The request that was served
            user_id: User that issued it
            backend: Backend that actually served it
            model: Model that actually served it
            outcome: Observed cost, latency and finish state
            decision: The routing decision, whose selection is used as the prediction
            predicted: Explicit prediction, overriding ``decision``
            request_id: Request identifier

        Returns:
            The learning record, or None if recording failed
        """
        if predicted is None and decision is not None:
            predicted = decision.selected
        return self.learner.record(
            request, user_id, backend, model, outcome, predicted=predicted, request_id=request_id
        )

    # ==========================================================================
    # Insights
    # ==========================================================================

    def health(self) -> HealthStatus:
        return self.health_monitor.health_status()

    def alerts(self, unresolved_only: bool = False) -> list[MonitoringAlert]:
        """Alerts from the accuracy and health monitors, oldest first."""
        merged = self.accuracy.get_alerts(unresolved_only) + self.health_monitor.get_alerts(
            unresolved_only
        )
        return sorted(merged, key=lambda alert: alert.timestamp)

    def insights(self, user_id: str | None = None) -> dict[str, Any]:
        """Learning insights plus monitoring, experiment and health summaries."""
        result = self.learner.insights(user_id)
        health = self.health()
        result["monitoring"] = self.accuracy.insights()
        result["experiments"] = self.experiments.summary()
        result["health"] = {
            "status": health.status,
            "score": health.score,
            "issues": health.issues,
            "monitoring_overhead": self.health_monitor.monitoring_overhead(),
        }
        result["background"] = self.dispatcher.get_stats()
        return result

    def __repr__(self) -> str:
        return f"<RoutingEngine running={self._running}, performance_keys={len(self.table)}>"
