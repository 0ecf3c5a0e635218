"""A/B experiment lifecycle, assignment and result collection.

Experiments move through ``draft -> running -> {completed | stopped}`` and may
be paused and resumed while running. Participants are assigned to an arm once
per experiment and keep that arm for its lifetime. Results are collected only
while the experiment is running and analyzed on demand or periodically.
"""

from __future__ import annotations

import math
import random
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from ..core.config import ExperimentsConfig
from ..core.exceptions import (
    ExperimentConfigError,
    ExperimentNotFoundError,
    ExperimentStateError,
)
from ..core.logger import get_logger, log_exception
from ..core.statistics import SignificanceTest, StudentTSignificance
from .analysis import analyze_results
from .models import (
    ExperimentAnalysis,
    ExperimentAssignment,
    ExperimentConfig,
    ExperimentResult,
    ExperimentStatus,
    Variant,
    VariantConfig,
)

logger = get_logger("experiments.framework")

WEIGHT_TOLERANCE = 1e-9
MIN_SAMPLE_SIZE = 10


@dataclass
class _ExperimentState:
    config: ExperimentConfig
    results: list[ExperimentResult] = field(default_factory=list)
    analysis: ExperimentAnalysis | None = None
    last_result_at: datetime | None = None
    last_analysis_at: datetime | None = None

    @property
    def has_new_data(self) -> bool:
        if self.last_result_at is None:
            return False
        return self.last_analysis_at is None or self.last_result_at > self.last_analysis_at


class ExperimentFramework:
    """Runs A/B experiments between backend models.

    Example:
        ```python
        framework = ExperimentFramework()
        framework.create_test(
            ExperimentConfig(
                id="cheap-vs-fast",
                name="Cheap vs fast",
                variant_a=VariantConfig(backend="openai", model="gpt-4o-mini", weight=0.5),
                variant_b=VariantConfig(backend="google", model="gemini-1.5-flash", weight=0.5),
            )
        )
        framework.start_test("cheap-vs-fast")
        variant = framework.assign_variant("cheap-vs-fast", "user-1")
        ```
    """

    def __init__(
        self,
        config: ExperimentsConfig | None = None,
        significance: SignificanceTest | None = None,
        critical_z: float = 1.96,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or ExperimentsConfig()
        self.significance = significance or StudentTSignificance()
        self.critical_z = critical_z
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.RLock()
        self._tests: dict[str, _ExperimentState] = {}
        self._assignments: dict[tuple[str, str], ExperimentAssignment] = {}

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def create_test(self, test: ExperimentConfig) -> ExperimentConfig:
        """Register a new experiment in ``draft`` status.

        Raises:
            ExperimentConfigError: If the configuration is invalid or the id exists
        """
        self._validate(test)
        stored = test.model_copy(
            deep=True,
            update={"status": ExperimentStatus.DRAFT, "start_time": None, "end_time": None},
        )
        with self._lock:
            if test.id in self._tests:
                raise ExperimentConfigError(f"A/B test {test.id} already exists", test.id, "id")
            self._tests[test.id] = _ExperimentState(config=stored)

        logger.info(
            "Created A/B test %s: %s vs %s",
            test.id,
            test.variant_a.key,
            test.variant_b.key,
        )
        return stored

    @staticmethod
    def _validate(test: ExperimentConfig) -> None:
        weights = (test.variant_a.weight, test.variant_b.weight)
        if not all(math.isfinite(w) for w in weights):
            raise ExperimentConfigError("Variant weights must be finite", test.id, "weight")
        total_weight = sum(weights)
        if not math.isclose(total_weight, 1.0, abs_tol=WEIGHT_TOLERANCE):
            raise ExperimentConfigError(
                f"Variant weights must sum to 1.0 (got {total_weight})", test.id, "weight"
            )
        if test.variant_a.weight < 0 or test.variant_b.weight < 0:
            raise ExperimentConfigError("Variant weights must not be negative", test.id, "weight")
        if not 0.0 <= test.traffic_allocation <= 1.0:
            raise ExperimentConfigError(
                "Traffic allocation must be between 0 and 1", test.id, "traffic_allocation"
            )
        if not 0.0 <= test.significance_level <= 1.0:
            raise ExperimentConfigError(
                "Significance level must be between 0 and 1", test.id, "significance_level"
            )
        if test.min_sample_size < MIN_SAMPLE_SIZE:
            raise ExperimentConfigError(
                f"Minimum sample size must be at least {MIN_SAMPLE_SIZE}",
                test.id,
                "min_sample_size",
            )

    def _get_state(self, test_id: str) -> _ExperimentState:
        state = self._tests.get(test_id)
        if state is None:
            raise ExperimentNotFoundError(test_id)
        return state

    def _transition(
        self,
        test_id: str,
        action: str,
        allowed: tuple[ExperimentStatus, ...],
        target: ExperimentStatus,
    ) -> ExperimentConfig:
        with self._lock:
            state = self._get_state(test_id)
            current = state.config.status
            if current not in allowed:
                raise ExperimentStateError(test_id, current.value, action)

            update: dict[str, Any] = {"status": target}
            now = self._clock()
            if target == ExperimentStatus.RUNNING and state.config.start_time is None:
                update["start_time"] = now
            if target in (ExperimentStatus.COMPLETED, ExperimentStatus.STOPPED):
                update["end_time"] = now
            state.config = state.config.model_copy(update=update)
            return state.config

    def start_test(self, test_id: str) -> ExperimentConfig:
        config = self._transition(
            test_id, "started", (ExperimentStatus.DRAFT,), ExperimentStatus.RUNNING
        )
        logger.info("Started A/B test %s", test_id)
        return config

    def stop_test(self, test_id: str, reason: str = "Manual stop") -> ExperimentConfig:
        config = self._transition(
            test_id,
            "stopped",
            (ExperimentStatus.RUNNING, ExperimentStatus.PAUSED),
            ExperimentStatus.STOPPED,
        )
        logger.info("Stopped A/B test %s: %s", test_id, reason)
        return config

    def pause_test(self, test_id: str) -> ExperimentConfig:
        config = self._transition(
            test_id, "paused", (ExperimentStatus.RUNNING,), ExperimentStatus.PAUSED
        )
        logger.info("Paused A/B test %s", test_id)
        return config

    def resume_test(self, test_id: str) -> ExperimentConfig:
        config = self._transition(
            test_id, "resumed", (ExperimentStatus.PAUSED,), ExperimentStatus.RUNNING
        )
        logger.info("Resumed A/B test %s", test_id)
        return config

    def _complete_test(self, test_id: str, reason: str) -> None:
        self._transition(
            test_id, "completed", (ExperimentStatus.RUNNING,), ExperimentStatus.COMPLETED
        )
        logger.info("Completed A/B test %s: %s", test_id, reason)

    def _is_expired(self, config: ExperimentConfig) -> bool:
        if config.start_time is None:
            return False
        elapsed = (self._clock() - config.start_time).total_seconds()
        return elapsed > config.max_duration_seconds

    # ==========================================================================
    # Participation and assignment
    # ==========================================================================

    def should_participate(
        self,
        test_id: str,
        user_id: str,
        request_type: str | None = None,
        user_segments: Iterable[str] | None = None,
    ) -> bool:
        """Decide whether a request from ``user_id`` takes part in the experiment.

        An experiment that outlived its maximum duration is stopped here.

        Args:
            test_id: Experiment id
            user_id: Requesting user
            request_type: Classified request type, checked against the type filter
            user_segments: Segments the user belongs to, checked against the segment filter

        Returns:
            True if the request should be assigned to an arm
        """
        with self._lock:
            state = self._get_state(test_id)
            config = state.config
            if config.status != ExperimentStatus.RUNNING:
                return False

            if self._is_expired(config):
                self.stop_test(test_id, "Test duration expired")
                return False

            if config.request_types is not None:
                type_name = getattr(request_type, "value", request_type)
                if type_name is None or type_name not in config.request_types:
                    return False

            if config.user_segments is not None:
                segments = set(user_segments or ())
                if not segments.intersection(config.user_segments):
                    return False

            return self._rng.random() < config.traffic_allocation

    def assign_variant(self, test_id: str, user_id: str) -> Variant | None:
        """Assign ``user_id`` to an arm; the first assignment is sticky.

        Returns:
            ``"A"`` or ``"B"``, or None if the experiment is not running
        """
        with self._lock:
            state = self._get_state(test_id)
            if state.config.status != ExperimentStatus.RUNNING:
                return None

            existing = self._assignments.get((test_id, user_id))
            if existing is not None:
                return existing.variant

            variant: Variant = (
                "A" if self._rng.random() < state.config.variant_a.weight else "B"
            )
            self._assignments[(test_id, user_id)] = ExperimentAssignment(
                test_id=test_id, user_id=user_id, variant=variant, assigned_at=self._clock()
            )

        logger.debug("Assigned user %s to variant %s of %s", user_id, variant, test_id)
        return variant

    def get_variant_config(self, test_id: str, variant: Variant) -> VariantConfig:
        with self._lock:
            return self._get_state(test_id).config.get_variant(variant)

    def get_assignment(self, test_id: str, user_id: str) -> ExperimentAssignment | None:
        with self._lock:
            return self._assignments.get((test_id, user_id))

    def find_assignment(
        self, user_id: str, backend: str, model: str
    ) -> ExperimentAssignment | None:
        """Find the user's assignment in a running experiment whose arm is ``backend/model``."""
        with self._lock:
            for (test_id, assigned_user), assignment in self._assignments.items():
                if assigned_user != user_id:
                    continue
                state = self._tests.get(test_id)
                if state is None or state.config.status != ExperimentStatus.RUNNING:
                    continue
                arm = state.config.get_variant(assignment.variant)
                if arm.backend == backend and arm.model == model:
                    return assignment
        return None

    # ==========================================================================
    # Results and analysis
    # ==========================================================================

    def record_result(
        self,
        test_id: str,
        variant: Variant,
        user_id: str,
        request_id: str,
        actual_cost: float,
        actual_response_time: float,
        actual_quality: float,
        user_satisfaction: float | None = None,
        cost_accuracy: float = 0.0,
        time_accuracy: float = 0.0,
        quality_accuracy: float = 0.0,
    ) -> bool:
        """Append a result to a running experiment.

        Returns:
            True if recorded, False if the experiment is not running
        """
        with self._lock:
            state = self._get_state(test_id)
            if state.config.status != ExperimentStatus.RUNNING:
                logger.debug("Ignoring result for %s (status %s)", test_id, state.config.status)
                return False

            now = self._clock()
            state.results.append(
                ExperimentResult(
                    test_id=test_id,
                    variant=variant,
                    user_id=user_id,
                    request_id=request_id,
                    timestamp=now,
                    actual_cost=actual_cost,
                    actual_response_time=actual_response_time,
                    actual_quality=actual_quality,
                    user_satisfaction=user_satisfaction,
                    cost_accuracy=cost_accuracy,
                    time_accuracy=time_accuracy,
                    quality_accuracy=quality_accuracy,
                )
            )
            state.last_result_at = now
            if len(state.results) > self.config.max_results:
                state.results = state.results[-self.config.trim_results_to :]
        return True

    def get_results(self, test_id: str) -> list[ExperimentResult]:
        with self._lock:
            return list(self._get_state(test_id).results)

    def analyze_test(self, test_id: str) -> ExperimentAnalysis:
        """Analyze an experiment and apply its auto-stop rule.

        Raises:
            ExperimentNotFoundError: If the experiment does not exist
        """
        with self._lock:
            state = self._get_state(test_id)
            now = self._clock()
            analysis = analyze_results(
                state.config, state.results, self.significance, self.critical_z, now
            )
            state.analysis = analysis
            state.last_analysis_at = now

            auto_stop = state.config.auto_stop
            if (
                auto_stop.enabled
                and state.config.status == ExperimentStatus.RUNNING
                and analysis.is_significant
                and analysis.confidence >= auto_stop.winner_threshold
            ):
                self._complete_test(test_id, analysis.recommendation_reason)
            elif (
                auto_stop.enabled
                and state.config.status == ExperimentStatus.RUNNING
                and analysis.status == "no_significant_difference"
                and analysis.confidence < auto_stop.futility_threshold
            ):
                self.stop_test(
                    test_id,
                    f"Futility: {analysis.confidence:.1%} confidence is below "
                    f"{auto_stop.futility_threshold:.1%}",
                )

        logger.debug("Analyzed A/B test %s: %s", test_id, analysis.status)
        return analysis

    def get_analysis(self, test_id: str) -> ExperimentAnalysis | None:
        with self._lock:
            return self._get_state(test_id).analysis

    def run_periodic_analysis(self) -> int:
        """Analyze every running experiment that received results since its last analysis.

        Returns:
            Number of experiments analyzed
        """
        with self._lock:
            pending = [
                test_id
                for test_id, state in self._tests.items()
                if state.config.status == ExperimentStatus.RUNNING and state.has_new_data
            ]

        analyzed = 0
        for test_id in pending:
            try:
                self.analyze_test(test_id)
                analyzed += 1
            except Exception as exc:
                log_exception(logger, exc, f"Periodic analysis of {test_id} failed")
        return analyzed

    # ==========================================================================
    # Queries
    # ==========================================================================

    def get_test(self, test_id: str) -> ExperimentConfig:
        with self._lock:
            return self._get_state(test_id).config

    def list_tests(self, status: ExperimentStatus | str | None = None) -> list[ExperimentConfig]:
        with self._lock:
            configs = [state.config for state in self._tests.values()]
        if status is None:
            return configs
        wanted = ExperimentStatus(status)
        return [c for c in configs if c.status == wanted]

    def running_tests(self) -> list[ExperimentConfig]:
        return self.list_tests(ExperimentStatus.RUNNING)

    def summary(self) -> dict[str, Any]:
        """Experiment counts by status plus running test ids."""
        with self._lock:
            statuses = Counter(state.config.status.value for state in self._tests.values())
            running = [
                test_id
                for test_id, state in self._tests.items()
                if state.config.status == ExperimentStatus.RUNNING
            ]
            return {
                "total_tests": len(self._tests),
                "by_status": {s.value: statuses.get(s.value, 0) for s in ExperimentStatus},
                "running_tests": running,
                "total_assignments": len(self._assignments),
                "total_results": sum(len(state.results) for state in self._tests.values()),
            }

    def reset(self) -> None:
        with self._lock:
            self._tests.clear()
            self._assignments.clear()
        logger.info("Experiment framework reset")

    def __len__(self) -> int:
        return len(self._tests)

    def __repr__(self) -> str:
        return f"<ExperimentFramework tests={len(self._tests)}>"
