"""Core modules for the routing engine.

This package contains the ambient functionality shared by every subsystem:
- Configuration management
- Logging utilities
- Exception hierarchy
- Background dispatcher and periodic workers
- Statistics helpers with pluggable significance tests
"""

from .background import BackgroundDispatcher, BackgroundTask, PeriodicWorker
from .config import (
    AccuracyConfig,
    BackgroundConfig,
    EngineConfig,
    ExperimentsConfig,
    HealthConfig,
    HealthThresholds,
    LearningConfig,
    LoggingConfig,
    RoutingConfig,
    SamplingConfig,
    StatisticsConfig,
)
from .exceptions import (
    ConfigurationError,
    ExperimentConfigError,
    ExperimentError,
    ExperimentNotFoundError,
    ExperimentStateError,
    RoutingEngineError,
)
from .logger import get_logger, log_exception, setup_logging
from .statistics import (
    BandedSignificance,
    SignificanceTest,
    StudentTSignificance,
    get_significance_test,
    welch_t_test,
)

__all__ = [
    "AccuracyConfig",
    "BackgroundConfig",
    "BackgroundDispatcher",
    "BackgroundTask",
    "BandedSignificance",
    "ConfigurationError",
    "EngineConfig",
    "ExperimentConfigError",
    "ExperimentError",
    "ExperimentNotFoundError",
    "ExperimentStateError",
    "ExperimentsConfig",
    "HealthConfig",
    "HealthThresholds",
    "LearningConfig",
    "LoggingConfig",
    "PeriodicWorker",
    "RoutingConfig",
    "RoutingEngineError",
    "SamplingConfig",
    "SignificanceTest",
    "StatisticsConfig",
    "StudentTSignificance",
    "get_logger",
    "get_significance_test",
    "log_exception",
    "setup_logging",
    "welch_t_test",
]
