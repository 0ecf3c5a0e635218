"""Tests for configuration management module.

Tests cover:
- Section defaults
- Field validation
- Trim/limit cross-field validation
- EngineConfig loading from YAML, JSON and the environment
- Environment variable expansion
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from route_intelligence.core.config import (
    AccuracyConfig,
    BackgroundConfig,
    EngineConfig,
    ExperimentsConfig,
    HealthConfig,
    LearningConfig,
    LoggingConfig,
    RoutingConfig,
    SamplingConfig,
    StatisticsConfig,
)

# ==============================================================================
# Section Defaults
# ==============================================================================


class TestSectionDefaults:
    """Tests for default values of each configuration section."""

    def test_routing_defaults(self):
        """Test RoutingConfig default values."""
        config = RoutingConfig()

        assert config.default_objective == "balanced"
        assert config.min_samples_for_prediction == 5
        assert config.confidence_threshold == 0.6
        assert config.history_window_days == 7.0
        assert config.min_aggregated_samples == 2
        assert config.max_alternatives == 3
        assert config.fallback_backend == "openai"

    def test_learning_defaults(self):
        """Test LearningConfig default values."""
        config = LearningConfig()

        assert config.max_history_per_key == 100
        assert config.aggregation_window == 10
        assert config.max_learning_records == 1000
        assert config.max_user_patterns == 50

    def test_accuracy_defaults(self):
        """Test AccuracyConfig default values."""
        config = AccuracyConfig()

        assert config.drift_threshold == 0.05
        assert config.accuracy_threshold == 0.95
        assert config.min_sample_size == 10
        assert config.alert_cooldown_seconds == 300.0
        assert config.sampling_rate == 1.0

    def test_experiments_defaults(self):
        """Test ExperimentsConfig default values."""
        config = ExperimentsConfig()

        assert config.analysis_interval_seconds == 60.0
        assert config.max_results == 10000
        assert config.trim_results_to == 8000

    def test_health_defaults(self):
        """Test HealthConfig default values."""
        config = HealthConfig()

        assert config.sampling.strategy == "adaptive"
        assert config.thresholds.max_response_time_ms == 5000.0
        assert config.thresholds.max_error_rate == 0.05
        assert config.snapshot_retention_hours == 168.0

    def test_statistics_defaults(self):
        """Test StatisticsConfig default values."""
        config = StatisticsConfig()

        assert config.method == "student_t"
        assert config.critical_z == 1.96


# ==============================================================================
# Validation
# ==============================================================================


class TestValidation:
    """Tests for field and cross-field validation."""

    def test_invalid_objective(self):
        """Test that unknown objectives are rejected."""
        with pytest.raises(ValidationError):
            RoutingConfig(default_objective="cheapest")

    def test_invalid_sampling_strategy(self):
        """Test that unknown sampling strategies are rejected."""
        with pytest.raises(ValidationError):
            SamplingConfig(strategy="random")

    def test_invalid_significance_method(self):
        """Test that unknown significance methods are rejected."""
        with pytest.raises(ValidationError):
            StatisticsConfig(method="bayesian")

    def test_confidence_threshold_range(self):
        """Test confidence threshold must lie in [0, 1]."""
        with pytest.raises(ValidationError):
            RoutingConfig(confidence_threshold=1.5)

    def test_invalid_log_level(self):
        """Test that unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="VERBOSE")

    def test_experiment_trim_must_not_exceed_max(self):
        """Test trim size larger than the bound is rejected."""
        with pytest.raises(ValidationError, match="trim_results_to"):
            ExperimentsConfig(max_results=100, trim_results_to=200)

    def test_health_trim_must_not_exceed_max(self):
        """Test latency trim size larger than the bound is rejected."""
        with pytest.raises(ValidationError, match="trim_latency_samples_to"):
            HealthConfig(max_latency_samples=10, trim_latency_samples_to=20)

    def test_accuracy_alert_trim_must_not_exceed_max(self):
        """Test alert trim size larger than the bound is rejected."""
        with pytest.raises(ValidationError, match="alerts_trim_to"):
            AccuracyConfig(max_alerts=10, alerts_trim_to=20)

    def test_queue_size_must_be_positive(self):
        """Test the background queue bound must be positive."""
        with pytest.raises(ValidationError):
            BackgroundConfig(max_queue_size=0)


# ==============================================================================
# EngineConfig Loading
# ==============================================================================


class TestEngineConfig:
    """Tests for EngineConfig loading."""

    def test_default_sections(self):
        """Test that every section is populated by default."""
        config = EngineConfig()

        assert isinstance(config.routing, RoutingConfig)
        assert isinstance(config.learning, LearningConfig)
        assert isinstance(config.accuracy, AccuracyConfig)
        assert isinstance(config.experiments, ExperimentsConfig)
        assert isinstance(config.health, HealthConfig)
        assert isinstance(config.background, BackgroundConfig)
        assert isinstance(config.statistics, StatisticsConfig)

    def test_from_yaml(self, tmp_path):
        """Test loading configuration from YAML."""
        config_file = tmp_path / "engine.yaml"
        config_file.write_text(
            "routing:\n"
            "  default_objective: cost\n"
            "  confidence_threshold: 0.5\n"
            "health:\n"
            "  sampling:\n"
            "    strategy: tiered\n"
            "statistics:\n"
            "  method: banded\n"
        )

        config = EngineConfig.from_yaml(config_file)

        assert config.routing.default_objective == "cost"
        assert config.routing.confidence_threshold == 0.5
        assert config.health.sampling.strategy == "tiered"
        assert config.statistics.method == "banded"

    def test_from_yaml_empty_file(self, tmp_path):
        """Test an empty YAML file yields defaults."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        config = EngineConfig.from_yaml(config_file)

        assert config.routing.default_objective == "balanced"

    def test_from_yaml_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            EngineConfig.from_yaml(tmp_path / "missing.yaml")

    def test_from_yaml_invalid(self, tmp_path):
        """Test invalid YAML raises ValueError."""
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("routing: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            EngineConfig.from_yaml(config_file)

    def test_from_json(self, tmp_path):
        """Test loading configuration from JSON."""
        config_file = tmp_path / "engine.json"
        config_file.write_text(json.dumps({"accuracy": {"sampling_rate": 0.25}}))

        config = EngineConfig.from_json(config_file)

        assert config.accuracy.sampling_rate == 0.25

    def test_env_var_expansion(self, tmp_path, monkeypatch):
        """Test ${VAR} references are expanded when loading YAML."""
        monkeypatch.setenv("ENGINE_LOG_FILE", str(tmp_path / "engine.log"))
        config_file = tmp_path / "engine.yaml"
        config_file.write_text("logging:\n  log_file: ${ENGINE_LOG_FILE}\n")

        config = EngineConfig.from_yaml(config_file)

        assert config.logging.log_file == str(tmp_path / "engine.log")

    def test_nested_environment_override(self, monkeypatch):
        """Test ROUTE_ENGINE_ variables override nested fields."""
        monkeypatch.setenv("ROUTE_ENGINE_ROUTING__DEFAULT_OBJECTIVE", "quality")
        monkeypatch.setenv("ROUTE_ENGINE_BACKGROUND__ENABLED", "false")

        config = EngineConfig()

        assert config.routing.default_objective == "quality"
        assert config.background.enabled is False

    def test_to_yaml_round_trip(self, tmp_path):
        """Test a written configuration loads back unchanged."""
        config = EngineConfig(routing=RoutingConfig(default_objective="speed"))
        path = tmp_path / "out" / "engine.yaml"

        config.to_yaml(path)
        loaded = EngineConfig.from_yaml(path)

        assert loaded.routing.default_objective == "speed"
        assert loaded.model_dump() == config.model_dump()
