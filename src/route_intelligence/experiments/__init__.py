"""A/B experiments between backend models.

This package provides:
- Experiment definitions, assignments, results and analyses
- Welch t-test analysis of primary and secondary metrics
- The experiment framework managing lifecycle, sticky assignment and auto-stop
"""

from .analysis import analyze_results, compare_metric, improvement, metric_values
from .framework import ExperimentFramework
from .models import (
    ArmStatistics,
    AutoStopConfig,
    ExperimentAnalysis,
    ExperimentAssignment,
    ExperimentConfig,
    ExperimentMetric,
    ExperimentResult,
    ExperimentStatus,
    MetricComparison,
    Variant,
    VariantConfig,
)

__all__ = [
    "ArmStatistics",
    "AutoStopConfig",
    "ExperimentAnalysis",
    "ExperimentAssignment",
    "ExperimentConfig",
    "ExperimentFramework",
    "ExperimentMetric",
    "ExperimentResult",
    "ExperimentStatus",
    "MetricComparison",
    "Variant",
    "VariantConfig",
    "analyze_results",
    "compare_metric",
    "improvement",
    "metric_values",
]
