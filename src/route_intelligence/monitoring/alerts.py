"""Rate-limited alert log shared by the accuracy and health monitors."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from ..core.logger import get_logger

logger = get_logger("monitoring.alerts")


class AlertSeverity(str, Enum):
    """Severity of a monitoring alert."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MonitoringAlert(BaseModel):
    """A typed, severity-tagged alert.

    Attributes:
        id: Unique alert identifier
        type: Alert type (e.g. drift_detected, latency_spike)
        severity: Alert severity
        key: Subject of the alert, ``backend/model`` or ``system``
        message: Human-readable description
        value: Observed value that triggered the alert
        threshold: Threshold that was breached
        details: Additional structured data
        timestamp: When the alert was raised
        resolved: Whether the alert has been resolved
    """

    id: str = Field(default_factory=lambda: f"alert_{uuid.uuid4().hex[:12]}")
    type: str = Field(description="Alert type")
    severity: AlertSeverity = Field(description="Alert severity")
    key: str = Field(default="system", description="Alert subject")
    message: str = Field(description="Alert message")
    value: float | None = Field(default=None, description="Observed value")
    threshold: float | None = Field(default=None, description="Breached threshold")
    details: dict[str, Any] = Field(default_factory=dict, description="Additional data")
    timestamp: datetime = Field(default_factory=datetime.now, description="Raise time")
    resolved: bool = Field(default=False, description="Resolved flag")


class AlertLog:
    """Bounded alert log with a per ``(key, type)`` cooldown.

    An alert for a key/type pair is suppressed while a previous alert for the
    same pair was raised less than ``cooldown_seconds`` ago. Once the log grows
    beyond ``max_alerts`` it is trimmed to the most recent ``trim_to`` alerts.
    """

    def __init__(
        self,
        name: str,
        cooldown_seconds: float = 300.0,
        max_alerts: int = 1000,
        trim_to: int = 500,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if trim_to > max_alerts:
            raise ValueError("trim_to must not exceed max_alerts")
        self.name = name
        self.cooldown_seconds = cooldown_seconds
        self.max_alerts = max_alerts
        self.trim_to = trim_to
        self._clock = clock
        self._lock = threading.RLock()
        self._alerts: list[MonitoringAlert] = []
        self._last_raised: dict[tuple[str, str], datetime] = {}
        self.suppressed = 0

    def raise_alert(
        self,
        alert_type: str,
        severity: AlertSeverity | str,
        message: str,
        key: str = "system",
        value: float | None = None,
        threshold: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> MonitoringAlert | None:
        """Record an alert unless its ``(key, type)`` pair is cooling down.

        Returns:
            The recorded alert, or None if it was suppressed
        """
        now = self._clock()
        with self._lock:
            last = self._last_raised.get((key, alert_type))
            if last is not None and (now - last).total_seconds() < self.cooldown_seconds:
                self.suppressed += 1
                logger.debug("Suppressed %s alert for %s (cooldown)", alert_type, key)
                return None

            alert = MonitoringAlert(
                type=alert_type,
                severity=AlertSeverity(severity),
                key=key,
                message=message,
                value=value,
                threshold=threshold,
                details=details or {},
                timestamp=now,
            )
            self._alerts.append(alert)
            self._last_raised[(key, alert_type)] = now

            if len(self._alerts) > self.max_alerts:
                self._alerts = self._alerts[-self.trim_to :]

        logger.warning(
            "%s alert [%s]: %s", self.name, alert.severity.value.upper(), alert.message
        )
        return alert

    def get_alerts(self, unresolved_only: bool = False) -> list[MonitoringAlert]:
        with self._lock:
            if unresolved_only:
                return [a for a in self._alerts if not a.resolved]
            return list(self._alerts)

    def resolve(self, alert_id: str) -> bool:
        """Mark an alert as resolved.

        Returns:
            True if the alert was found
        """
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.resolved = True
                    return True
        return False

    def count(self, alert_type: str | None = None) -> int:
        with self._lock:
            if alert_type is None:
                return len(self._alerts)
            return sum(1 for a in self._alerts if a.type == alert_type)

    def summary(self) -> dict[str, int]:
        """Alert counts keyed by ``<type>_<severity>``."""
        counts: dict[str, int] = {}
        with self._lock:
            for alert in self._alerts:
                key = f"{alert.type}_{alert.severity.value}"
                counts[key] = counts.get(key, 0) + 1
        return counts

    def clear(self) -> None:
        with self._lock:
            self._alerts.clear()
            self._last_raised.clear()
            self.suppressed = 0

    def __len__(self) -> int:
        return len(self._alerts)

    def __repr__(self) -> str:
        return f"<AlertLog name={self.name}, alerts={len(self._alerts)}>"
