"""Data models for backend A/B experiments."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

Variant = Literal["A", "B"]
ExperimentMetric = Literal["cost", "response_time", "quality", "accuracy", "user_satisfaction"]
AnalysisStatus = Literal[
    "insufficient_data",
    "no_significant_difference",
    "variant_a_wins",
    "variant_b_wins",
]
Recommendation = Literal["continue_test", "choose_variant_a", "choose_variant_b"]


class ExperimentStatus(str, Enum):
    """Lifecycle status of an experiment."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"


class VariantConfig(BaseModel):
    """One arm of an experiment."""

    backend: str = Field(description="Backend serving this arm")
    model: str = Field(description="Model serving this arm")
    weight: float = Field(description="Share of participants assigned to this arm")

    @property
    def key(self) -> str:
        return f"{self.backend}/{self.model}"


class AutoStopConfig(BaseModel):
    """Automatic conclusion rules.

    Attributes:
        enabled: Whether analysis may conclude the experiment
        winner_threshold: Confidence (1 - p) required to declare a winner
        futility_threshold: Sufficient-data confidence below which the test is stopped early
    """

    enabled: bool = Field(default=False, description="Auto-stop enabled")
    winner_threshold: float = Field(default=0.95, ge=0.0, le=1.0, description="Winner threshold")
    futility_threshold: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Futility threshold"
    )


class ExperimentConfig(BaseModel):
    """Definition and lifecycle state of an experiment.

    Weights, traffic allocation, significance level and minimum sample size are
    validated by the framework when the experiment is created.
    """

    id: str = Field(description="Unique experiment id")
    name: str = Field(description="Display name")
    description: str = Field(default="", description="What is being compared")
    hypothesis: str = Field(default="", description="Expected outcome")
    variant_a: VariantConfig = Field(description="Control arm")
    variant_b: VariantConfig = Field(description="Treatment arm")
    min_sample_size: int = Field(default=100, description="Results needed per arm")
    max_duration_seconds: float = Field(
        default=7 * 24 * 60 * 60, gt=0.0, description="Maximum run time"
    )
    significance_level: float = Field(default=0.05, description="Alpha for significance")
    minimum_detectable_effect: float = Field(default=0.05, ge=0.0, description="Smallest effect")
    traffic_allocation: float = Field(default=1.0, description="Share of traffic participating")
    user_segments: list[str] | None = Field(default=None, description="Segments to include")
    request_types: list[str] | None = Field(default=None, description="Request types to include")
    primary_metric: ExperimentMetric = Field(default="cost", description="Primary metric")
    secondary_metrics: list[ExperimentMetric] = Field(
        default_factory=list, description="Secondary metrics"
    )
    status: ExperimentStatus = Field(default=ExperimentStatus.DRAFT, description="Status")
    start_time: datetime | None = Field(default=None, description="When the test started")
    end_time: datetime | None = Field(default=None, description="When the test ended")
    auto_stop: AutoStopConfig = Field(default_factory=AutoStopConfig, description="Auto-stop")

    def get_variant(self, variant: Variant) -> VariantConfig:
        return self.variant_a if variant == "A" else self.variant_b


class ExperimentAssignment(BaseModel):
    """Sticky assignment of a user to an arm."""

    test_id: str
    user_id: str
    variant: Variant
    assigned_at: datetime = Field(default_factory=datetime.now)


class ExperimentResult(BaseModel):
    """One observed outcome attributed to an arm."""

    test_id: str = Field(description="Experiment id")
    variant: Variant = Field(description="Arm that served the request")
    user_id: str = Field(description="User that issued the request")
    request_id: str = Field(description="Request identifier")
    timestamp: datetime = Field(default_factory=datetime.now, description="Record time")
    actual_cost: float = Field(ge=0.0, description="Observed cost")
    actual_response_time: float = Field(ge=0.0, description="Observed latency in ms")
    actual_quality: float = Field(ge=0.0, le=1.0, description="Observed quality")
    user_satisfaction: float | None = Field(default=None, description="Satisfaction rating")
    cost_accuracy: float = Field(default=0.0, ge=0.0, le=1.0, description="Cost accuracy")
    time_accuracy: float = Field(default=0.0, ge=0.0, le=1.0, description="Latency accuracy")
    quality_accuracy: float = Field(default=0.0, ge=0.0, le=1.0, description="Quality accuracy")


class ArmStatistics(BaseModel):
    """Summary statistics of one arm for one metric."""

    mean: float = 0.0
    std: float = 0.0
    samples: int = 0


class MetricComparison(BaseModel):
    """Comparison of one metric between the two arms."""

    variant_a: ArmStatistics = Field(default_factory=ArmStatistics)
    variant_b: ArmStatistics = Field(default_factory=ArmStatistics)
    improvement: float = Field(default=0.0, description="Percent change of B over A")
    p_value: float = Field(default=1.0, ge=0.0, le=1.0)
    is_significant: bool = False
    confidence_interval: tuple[float, float] = (0.0, 0.0)


class ExperimentAnalysis(BaseModel):
    """Statistical analysis of an experiment.

    Attributes:
        test_id: Experiment id
        status: Outcome of the analysis
        sample_sizes: Results per arm
        means: Primary metric mean per arm
        standard_deviations: Primary metric sample standard deviation per arm
        effect: Mean of B minus mean of A
        t_statistic: Welch t statistic of the primary metric
        degrees_of_freedom: Welch degrees of freedom
        p_value: Two-sided p-value
        confidence: 1 - p_value
        is_significant: p_value below the significance level
        primary_metric: Metric the decision is based on
        primary_metric_results: Detailed primary metric comparison
        secondary_metric_results: Comparisons of the secondary metrics
        recommendation: Suggested next step
        recommendation_reason: Explanation of the recommendation
        timestamp: When the analysis ran
    """

    test_id: str
    status: AnalysisStatus
    sample_sizes: dict[str, int] = Field(default_factory=dict)
    means: dict[str, float] = Field(default_factory=dict)
    standard_deviations: dict[str, float] = Field(default_factory=dict)
    effect: float = 0.0
    t_statistic: float = 0.0
    degrees_of_freedom: float = 0.0
    p_value: float = Field(default=1.0, ge=0.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_significant: bool = False
    primary_metric: ExperimentMetric = "cost"
    primary_metric_results: MetricComparison = Field(default_factory=MetricComparison)
    secondary_metric_results: dict[str, MetricComparison] = Field(default_factory=dict)
    recommendation: Recommendation = "continue_test"
    recommendation_reason: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
