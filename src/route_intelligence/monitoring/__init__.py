"""Monitoring of prediction accuracy and system health.

This package contains:
- A rate-limited alert log shared by both monitors
- The accuracy monitor (rolling snapshots, drift detection, model comparison)
- The health monitor (sampled latency/error metrics, health score, trends)
"""

from .accuracy import (
    AccuracyMonitor,
    AccuracySnapshot,
    DriftResult,
    ModelComparison,
    QualityScoreUpdate,
    classify_drift,
)
from .alerts import AlertLog, AlertSeverity, MonitoringAlert
from .health import HealthMonitor, HealthSnapshot, HealthStatus, Sampler

__all__ = [
    "AccuracyMonitor",
    "AccuracySnapshot",
    "AlertLog",
    "AlertSeverity",
    "DriftResult",
    "HealthMonitor",
    "HealthSnapshot",
    "HealthStatus",
    "ModelComparison",
    "MonitoringAlert",
    "QualityScoreUpdate",
    "Sampler",
    "classify_drift",
]
