"""Configuration management for the routing engine.

Each subsystem owns a typed Pydantic section with explicit defaults. The
sections are gathered under :class:`EngineConfig`, which also reads
``ROUTE_ENGINE_*`` environment variables and YAML or JSON files.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

OptimizationObjective = Literal["cost", "speed", "quality", "balanced"]
SamplingStrategy = Literal["uniform", "adaptive", "tiered"]
SignificanceMethod = Literal["student_t", "banded"]

_dotenv_state = {"loaded": False}


def _read_dotenv() -> None:
    if not _dotenv_state["loaded"]:
        load_dotenv()
        _dotenv_state["loaded"] = True


def _substitute_env(node: Any) -> Any:
    """Expand ``$VAR``/``${VAR}`` in every string of a parsed document."""
    if isinstance(node, dict):
        return {key: _substitute_env(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_substitute_env(item) for item in node]
    return os.path.expandvars(node) if isinstance(node, str) else node


def _parse_yaml(handle: IO[str]) -> Any:
    try:
        return yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in config file: {exc}") from exc


def _parse_json(handle: IO[str]) -> Any:
    try:
        return json.load(handle)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {exc}") from exc


def _read_document(path: str | Path, parse: Callable[[IO[str]], Any]) -> dict[str, Any]:
    """Parse a configuration file into a dict with environment references expanded."""
    _read_dotenv()
    source = Path(path)
    if not source.is_file():
        raise FileNotFoundError(f"Configuration file not found: {source}")
    with source.open(encoding="utf-8") as handle:
        document = parse(handle) or {}
    if not isinstance(document, dict):
        raise ValueError(f"Config file {source} must contain a mapping at the top level")
    return _substitute_env(document)


class LoggingConfig(BaseModel):
    """Output settings for the ``route_intelligence`` logger namespace.

    Attributes:
        level: Threshold applied to the namespace and every engine logger
        format: ``logging`` format string used by the file handler
        console: Mirror records to stderr through rich
        log_file: Rotating log file, disabled when unset
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Namespace log level"
    )
    format: str = Field(
        default="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        description="File record format",
    )
    console: bool = Field(default=True, description="Emit records to the rich console")
    log_file: str | None = Field(default=None, description="Rotating log file path")
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=0, description="Rotation size")
    backup_count: int = Field(default=5, ge=0, description="Rotated files kept")


class RoutingConfig(BaseModel):
    """Predictor/router tuning.

    Attributes:
        default_objective: Objective used when the caller passes none
        min_samples_for_prediction: History entries needed before leaving the baseline
        confidence_threshold: Predictions below this confidence are discarded
        history_window_days: Only entries updated within this window are used
        min_aggregated_samples: Entries aggregating fewer samples are ignored
        recency_horizon_days: Recency confidence decays to zero over this horizon
        max_alternatives: Alternatives returned alongside the selection
        cost_normalizer: Cost mapped to a normalized score of zero
        latency_normalizer_ms: Latency mapped to a normalized score of zero
        fallback_backend: Backend used when no backend is available at all
        seed_baseline_history: Seed one aggregated entry for well-known cheap models
    """

    default_objective: OptimizationObjective = Field(
        default="balanced", description="Default optimization objective"
    )
    min_samples_for_prediction: int = Field(default=5, ge=1, description="Min history entries")
    confidence_threshold: float = Field(
        default=0.6, ge=0.0, le=1.0, description="Minimum prediction confidence"
    )
    history_window_days: float = Field(default=7.0, gt=0.0, description="History window")
    min_aggregated_samples: int = Field(default=2, ge=1, description="Min samples per entry")
    recency_horizon_days: float = Field(default=14.0, gt=0.0, description="Recency horizon")
    max_alternatives: int = Field(default=3, ge=0, description="Alternatives to return")
    cost_normalizer: float = Field(default=0.1, gt=0.0, description="Cost normalizer")
    latency_normalizer_ms: float = Field(default=5000.0, gt=0.0, description="Latency normalizer")
    fallback_backend: str = Field(default="openai", description="Backend of last resort")
    seed_baseline_history: bool = Field(default=True, description="Seed baseline history")


class LearningConfig(BaseModel):
    """Outcome learner retention limits."""

    max_history_per_key: int = Field(default=100, ge=1, description="Entries per backend/model")
    aggregation_window: int = Field(
        default=10,
        ge=1,
        description="Observations folded into each appended running-average entry",
    )
    max_learning_records: int = Field(default=1000, ge=1, description="Learning dataset size")
    max_user_patterns: int = Field(default=50, ge=1, description="Feature records per user")
    user_pattern_min_observations: int = Field(
        default=3, ge=1, description="Observations before a user pattern id is assigned"
    )
    user_pattern_window: int = Field(default=10, ge=1, description="Trailing window for patterns")


class AccuracyConfig(BaseModel):
    """Accuracy monitor configuration."""

    drift_threshold: float = Field(default=0.05, ge=0.0, le=1.0, description="Drift threshold")
    accuracy_threshold: float = Field(
        default=0.95, ge=0.0, le=1.0, description="Target overall accuracy"
    )
    min_sample_size: int = Field(default=10, ge=1, description="Samples before alerting")
    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0, description="CI level")
    alert_cooldown_seconds: float = Field(default=300.0, ge=0.0, description="Alert cooldown")
    max_history_size: int = Field(default=1000, ge=1, description="Predictions kept per key")
    max_snapshots_per_key: int = Field(default=100, ge=1, description="Snapshots kept per key")
    sampling_rate: float = Field(default=1.0, ge=0.0, le=1.0, description="Tracking sample rate")
    max_alerts: int = Field(default=1000, ge=1, description="Alert log size before trimming")
    alerts_trim_to: int = Field(default=500, ge=1, description="Alert log size after trimming")
    seed_baselines: bool = Field(default=True, description="Seed the built-in drift baselines")

    @model_validator(mode="after")
    def validate_alert_trim(self) -> AccuracyConfig:
        if self.alerts_trim_to > self.max_alerts:
            raise ValueError("alerts_trim_to must not exceed max_alerts")
        return self


class ExperimentsConfig(BaseModel):
    """Experiment framework configuration."""

    analysis_interval_seconds: float = Field(
        default=60.0, gt=0.0, description="Periodic analysis interval"
    )
    periodic_analysis: bool = Field(default=True, description="Run the periodic analysis worker")
    max_results: int = Field(default=10000, ge=1, description="Results kept per experiment")
    trim_results_to: int = Field(default=8000, ge=1, description="Results kept after trimming")

    @model_validator(mode="after")
    def validate_trim(self) -> ExperimentsConfig:
        if self.trim_results_to > self.max_results:
            raise ValueError("trim_results_to must not exceed max_results")
        return self


class SamplingConfig(BaseModel):
    """Sampling of health metrics.

    Recognized strategies:
    - uniform: always the base rate
    - adaptive: base rate scaled down once throughput exceeds the high-volume threshold
    - tiered: fixed steps at 100/500/1000 requests per second
    """

    strategy: SamplingStrategy = Field(default="adaptive", description="Sampling strategy")
    base_rate: float = Field(default=1.0, ge=0.0, le=1.0, description="Base sampling rate")
    high_volume_threshold: float = Field(
        default=100.0, gt=0.0, description="Requests per second that trigger high-volume mode"
    )
    min_adaptive_rate: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Floor for the adaptive rate"
    )
    error_sampling_rate: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Sampling rate for errors"
    )
    slow_request_threshold_ms: float = Field(
        default=5000.0, ge=0.0, description="Requests slower than this are always sampled"
    )


class HealthThresholds(BaseModel):
    """Thresholds used by health scoring and alerting."""

    max_response_time_ms: float = Field(default=5000.0, gt=0.0, description="Max avg latency")
    max_error_rate: float = Field(default=0.05, ge=0.0, le=1.0, description="Max error rate")
    max_memory_bytes: int = Field(default=1024 * 1024 * 1024, gt=0, description="Max RSS")
    min_throughput: float = Field(default=10.0, ge=0.0, description="Min requests per second")
    min_accuracy: float = Field(default=0.95, ge=0.0, le=1.0, description="Min routing accuracy")
    max_routing_latency_ms: float = Field(default=200.0, gt=0.0, description="Max routing time")
    min_requests_for_throughput: int = Field(
        default=100, ge=0, description="Requests seen before throughput is judged"
    )


class HealthConfig(BaseModel):
    """Health/performance monitor configuration."""

    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    thresholds: HealthThresholds = Field(default_factory=HealthThresholds)
    snapshot_interval_seconds: float = Field(default=60.0, gt=0.0, description="Snapshot period")
    snapshot_retention_hours: float = Field(default=168.0, gt=0.0, description="Retention")
    resource_interval_seconds: float = Field(
        default=60.0, gt=0.0, description="Memory sampling period"
    )
    periodic_snapshots: bool = Field(default=True, description="Run periodic workers")
    recent_window_seconds: float = Field(
        default=300.0, gt=0.0, description="Window used for recent metrics"
    )
    max_latency_samples: int = Field(default=10000, ge=1, description="Latency samples kept")
    trim_latency_samples_to: int = Field(default=5000, ge=1, description="After trimming")
    max_metrics: int = Field(default=100000, ge=1, description="Metric records kept")
    trim_metrics_to: int = Field(default=50000, ge=1, description="After trimming")
    alert_cooldown_seconds: float = Field(default=300.0, ge=0.0, description="Alert cooldown")
    max_alerts: int = Field(default=1000, ge=1, description="Alert log size before trimming")
    alerts_trim_to: int = Field(default=500, ge=1, description="Alert log size after trimming")

    @model_validator(mode="after")
    def validate_trims(self) -> HealthConfig:
        if self.trim_latency_samples_to > self.max_latency_samples:
            raise ValueError("trim_latency_samples_to must not exceed max_latency_samples")
        if self.trim_metrics_to > self.max_metrics:
            raise ValueError("trim_metrics_to must not exceed max_metrics")
        if self.alerts_trim_to > self.max_alerts:
            raise ValueError("alerts_trim_to must not exceed max_alerts")
        return self


class BackgroundConfig(BaseModel):
    """Background dispatcher configuration.

    Attributes:
        enabled: Drain bookkeeping on a consumer thread; when False, work runs inline
        max_queue_size: Pending tasks kept before the oldest are dropped
        flush_timeout_seconds: Upper bound for draining on shutdown
    """

    enabled: bool = Field(default=True, description="Use the background consumer")
    max_queue_size: int = Field(default=10000, ge=1, description="Queue bound")
    flush_timeout_seconds: float = Field(default=5.0, ge=0.0, description="Flush timeout")


class StatisticsConfig(BaseModel):
    """Significance testing configuration.

    Recognized methods:
    - student_t: exact two-sided p-value from the Student's t distribution
    - banded: coarse statistic-to-p-value lookup kept for compatibility
    """

    method: SignificanceMethod = Field(default="student_t", description="Significance method")
    critical_z: float = Field(default=1.96, gt=0.0, description="z used for intervals")


class EngineConfig(BaseSettings):
    """Main configuration for the routing engine."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTE_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    routing: RoutingConfig = Field(default_factory=RoutingConfig, description="Router settings")
    learning: LearningConfig = Field(
        default_factory=LearningConfig, description="Outcome learner settings"
    )
    accuracy: AccuracyConfig = Field(
        default_factory=AccuracyConfig, description="Accuracy monitor settings"
    )
    experiments: ExperimentsConfig = Field(
        default_factory=ExperimentsConfig, description="Experiment framework settings"
    )
    health: HealthConfig = Field(default_factory=HealthConfig, description="Health monitor")
    background: BackgroundConfig = Field(
        default_factory=BackgroundConfig, description="Background dispatcher settings"
    )
    statistics: StatisticsConfig = Field(
        default_factory=StatisticsConfig, description="Significance testing settings"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML file."""
        return cls(**_read_document(path, _parse_yaml))

    @classmethod
    def from_json(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a JSON file."""
        return cls(**_read_document(path, _parse_json))

    def to_yaml(self, path: str | Path) -> None:
        """Write the configuration as YAML, creating parent directories."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            yaml.safe_dump(self.model_dump(mode="json"), sort_keys=False), encoding="utf-8"
        )
