"""Statistical analysis of experiment results."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from ..core.statistics import (
    SignificanceTest,
    clamp,
    difference_interval,
    mean,
    sample_std,
    welch_t_test,
)
from .models import (
    ArmStatistics,
    ExperimentAnalysis,
    ExperimentConfig,
    ExperimentMetric,
    ExperimentResult,
    MetricComparison,
)


def metric_values(results: Sequence[ExperimentResult], metric: ExperimentMetric) -> list[float]:
    """Extract ``metric`` from ``results``.

    ``accuracy`` is the mean of the three prediction accuracies; results without
    a satisfaction rating are skipped for ``user_satisfaction``.
    """
    if metric == "cost":
        return [r.actual_cost for r in results]
    if metric == "response_time":
        return [r.actual_response_time for r in results]
    if metric == "quality":
        return [r.actual_quality for r in results]
    if metric == "accuracy":
        return [(r.cost_accuracy + r.time_accuracy + r.quality_accuracy) / 3 for r in results]
    return [r.user_satisfaction for r in results if r.user_satisfaction is not None]


def improvement(mean_a: float, mean_b: float) -> float:
    """Percent change of B over A; 0 when A's mean is 0."""
    if mean_a == 0:
        return 0.0
    return (mean_b - mean_a) / mean_a * 100


def compare_metric(
    values_a: Sequence[float],
    values_b: Sequence[float],
    significance: SignificanceTest,
    significance_level: float,
    critical_z: float = 1.96,
) -> MetricComparison:
    mean_a, mean_b = mean(values_a), mean(values_b)
    test = welch_t_test(values_a, values_b, significance)
    return MetricComparison(
        variant_a=ArmStatistics(
            mean=mean_a, std=sample_std(values_a, mean_a), samples=len(values_a)
        ),
        variant_b=ArmStatistics(
            mean=mean_b, std=sample_std(values_b, mean_b), samples=len(values_b)
        ),
        improvement=improvement(mean_a, mean_b),
        p_value=clamp(test.p_value),
        is_significant=test.p_value < significance_level,
        confidence_interval=difference_interval(values_a, values_b, critical_z),
    )


def analyze_results(
    config: ExperimentConfig,
    results: Sequence[ExperimentResult],
    significance: SignificanceTest,
    critical_z: float = 1.96,
    now: datetime | None = None,
) -> ExperimentAnalysis:
    """Analyze the primary and secondary metrics of an experiment.

    Args:
        config: Experiment definition
        results: All recorded results of the experiment
        significance: Significance test converting t statistics to p-values
        critical_z: z used for the confidence interval of the difference
        now: Analysis timestamp

    Returns:
        The analysis; ``insufficient_data`` while either arm has fewer than
        ``min_sample_size`` results
    """
    now = now or datetime.now()
    results_a = [r for r in results if r.variant == "A"]
    results_b = [r for r in results if r.variant == "B"]
    sample_sizes = {"A": len(results_a), "B": len(results_b)}

    if min(sample_sizes.values()) < config.min_sample_size:
        return ExperimentAnalysis(
            test_id=config.id,
            status="insufficient_data",
            sample_sizes=sample_sizes,
            primary_metric=config.primary_metric,
            recommendation="continue_test",
            recommendation_reason=(
                f"Need at least {config.min_sample_size} samples per variant "
                f"(have A={sample_sizes['A']}, B={sample_sizes['B']})"
            ),
            timestamp=now,
        )

    primary_a = metric_values(results_a, config.primary_metric)
    primary_b = metric_values(results_b, config.primary_metric)
    test = welch_t_test(primary_a, primary_b, significance)
    primary = compare_metric(
        primary_a, primary_b, significance, config.significance_level, critical_z
    )

    secondary = {
        metric: compare_metric(
            metric_values(results_a, metric),
            metric_values(results_b, metric),
            significance,
            config.significance_level,
            critical_z,
        )
        for metric in config.secondary_metrics
    }

    effect = primary.variant_b.mean - primary.variant_a.mean
    p_value = clamp(test.p_value)
    confidence = clamp(1 - p_value)

    if not primary.is_significant:
        status = "no_significant_difference"
        recommendation = "continue_test"
        reason = (
            f"No significant difference in {config.primary_metric} "
            f"(p={p_value:.4f}, alpha={config.significance_level})"
        )
    elif effect > 0:
        status = "variant_b_wins"
        recommendation = "choose_variant_b"
        reason = (
            f"Variant B changes {config.primary_metric} by {primary.improvement:+.1f}% "
            f"({confidence:.1%} confidence)"
        )
    else:
        status = "variant_a_wins"
        recommendation = "choose_variant_a"
        reason = (
            f"Variant A leads on {config.primary_metric}; B changes it by "
            f"{primary.improvement:+.1f}% ({confidence:.1%} confidence)"
        )

    return ExperimentAnalysis(
        test_id=config.id,
        status=status,
        sample_sizes=sample_sizes,
        means={"A": primary.variant_a.mean, "B": primary.variant_b.mean},
        standard_deviations={"A": primary.variant_a.std, "B": primary.variant_b.std},
        effect=effect,
        t_statistic=test.t_statistic,
        degrees_of_freedom=test.degrees_of_freedom,
        p_value=p_value,
        confidence=confidence,
        is_significant=primary.is_significant,
        primary_metric=config.primary_metric,
        primary_metric_results=primary,
        secondary_metric_results=secondary,
        recommendation=recommendation,
        recommendation_reason=reason,
        timestamp=now,
    )
