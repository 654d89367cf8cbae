"""
Risk Alerting
=============

User-defined thresholds on risk metrics.

Features:
- Per-user alert configurations behind a repository interface
- Above/below threshold evaluation against RiskMetrics
- Severity graded by relative deviation from the threshold
- Triggered alerts routed to the notification boundary
- Default alert templates
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from core.exceptions import NotFoundError, ValidationError
from core.models import (
    AlertCondition,
    AlertConfiguration,
    AlertSeverity,
    RiskMetric,
    RiskMetrics,
    TriggeredAlert,
)
from core.notifications import NotificationManager

logger = logging.getLogger(__name__)


# Fields that update_alert accepts, by wire name and attribute name
UPDATABLE_FIELDS = {
    "name": "name",
    "riskMetric": "risk_metric",
    "risk_metric": "risk_metric",
    "threshold": "threshold",
    "condition": "condition",
    "enabled": "enabled",
}


DEFAULT_ALERT_TEMPLATES: list[AlertConfiguration] = [
    AlertConfiguration(
        id="high-var-alert",
        name="High VaR Alert",
        risk_metric=RiskMetric.VAR_95,
        threshold=0.05,
        condition=AlertCondition.ABOVE,
        enabled=True,
    ),
    AlertConfiguration(
        id="max-drawdown-alert",
        name="Maximum Drawdown Alert",
        risk_metric=RiskMetric.MAX_DRAWDOWN,
        threshold=0.15,
        condition=AlertCondition.ABOVE,
        enabled=True,
    ),
    AlertConfiguration(
        id="low-alpha-alert",
        name="Low Alpha Alert",
        risk_metric=RiskMetric.ALPHA,
        threshold=0.0,
        condition=AlertCondition.BELOW,
        enabled=False,
    ),
    AlertConfiguration(
        id="high-beta-alert",
        name="High Beta Alert",
        risk_metric=RiskMetric.BETA,
        threshold=1.5,
        condition=AlertCondition.ABOVE,
        enabled=False,
    ),
]


class AlertRepository(ABC):
    """Storage of alert configurations keyed by user and alert id."""

    @abstractmethod
    def get_user_alerts(self, user_id: str) -> list[AlertConfiguration]:
        """All configurations of a user, in creation order."""

    @abstractmethod
    def get(self, user_id: str, alert_id: str) -> AlertConfiguration | None:
        """One configuration, or None."""

    @abstractmethod
    def put(self, user_id: str, alert: AlertConfiguration) -> None:
        """Insert or replace by id."""

    @abstractmethod
    def delete(self, user_id: str, alert_id: str) -> bool:
        """Remove; returns False when absent."""


class InMemoryAlertRepository(AlertRepository):
    """Process-local alert store."""

    def __init__(self):
        self._alerts: dict[str, dict[str, AlertConfiguration]] = {}
        self._lock = threading.Lock()

    def get_user_alerts(self, user_id: str) -> list[AlertConfiguration]:
        with self._lock:
            return [copy.copy(a) for a in self._alerts.get(user_id, {}).values()]

    def get(self, user_id: str, alert_id: str) -> AlertConfiguration | None:
        with self._lock:
            alert = self._alerts.get(user_id, {}).get(alert_id)
            return copy.copy(alert) if alert else None

    def put(self, user_id: str, alert: AlertConfiguration) -> None:
        with self._lock:
            self._alerts.setdefault(user_id, {})[alert.id] = copy.copy(alert)

    def delete(self, user_id: str, alert_id: str) -> bool:
        with self._lock:
            user_alerts = self._alerts.get(user_id, {})
            if alert_id not in user_alerts:
                return False
            del user_alerts[alert_id]
            return True


def is_triggered(value: float, threshold: float, condition: AlertCondition) -> bool:
    """Strict comparison; a value equal to the threshold never triggers."""
    if condition == AlertCondition.ABOVE:
        return value > threshold
    return value < threshold


def calculate_alert_severity(value: float, threshold: float) -> AlertSeverity:
    """
    Grade a breach by relative deviation ``|value - threshold| / threshold``.

    > 0.5 high, > 0.2 medium, otherwise low. The divisor keeps its sign, so a
    negative threshold always grades low. Any breach of a zero threshold is
    high.
    """
    if threshold == 0:
        return AlertSeverity.HIGH
    deviation = abs(value - threshold) / threshold
    if deviation > 0.5:
        return AlertSeverity.HIGH
    if deviation > 0.2:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


class AlertService:
    """
    Alert configuration management and evaluation.

    Notification delivery never raises into evaluation: channel failures are
    logged by the NotificationManager.
    """

    def __init__(
        self,
        repository: AlertRepository | None = None,
        notifier: NotificationManager | None = None,
    ):
        self._repository = repository or InMemoryAlertRepository()
        self._notifier = notifier or NotificationManager()

    @property
    def notifier(self) -> NotificationManager:
        return self._notifier

    def create_alert(self, user_id: str, config: AlertConfiguration | dict[str, Any]) -> AlertConfiguration:
        """
        Register an alert configuration for a user.

        Raises:
            ValidationError: Malformed configuration or duplicate id
        """
        if isinstance(config, dict):
            config = AlertConfiguration.from_dict(config)
        if not config.id:
            raise ValidationError("Alert configuration requires an id")
        if self._repository.get(user_id, config.id) is not None:
            raise ValidationError(f"Alert {config.id} already exists for user {user_id}")

        self._repository.put(user_id, config)
        logger.info(f"Created alert: {config.name} for user: {user_id}")
        return config

    def get_user_alerts(self, user_id: str) -> list[AlertConfiguration]:
        return self._repository.get_user_alerts(user_id)

    def update_alert(self, user_id: str, alert_id: str, updates: dict[str, Any]) -> AlertConfiguration:
        """
        Apply a partial update.

        Raises:
            NotFoundError: Unknown alert id for this user
            ValidationError: Unknown field, id change, or invalid value
        """
        existing = self._repository.get(user_id, alert_id)
        if existing is None:
            raise NotFoundError("Alert", alert_id)

        updates = dict(updates)
        if "id" in updates:
            if str(updates.pop("id")) != alert_id:
                raise ValidationError("Alert id cannot be changed")

        unknown = sorted(set(updates) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown alert fields: {', '.join(unknown)}")

        merged = existing.to_dict()
        for key, value in updates.items():
            # to_dict uses wire names
            wire = "riskMetric" if UPDATABLE_FIELDS[key] == "risk_metric" else key
            merged[wire] = value

        updated = AlertConfiguration.from_dict(merged)

        self._repository.put(user_id, updated)
        logger.info(f"Updated alert {alert_id} for user {user_id}: {sorted(updates)}")
        return updated

    def delete_alert(self, user_id: str, alert_id: str) -> None:
        if not self._repository.delete(user_id, alert_id):
            raise NotFoundError("Alert", alert_id)
        logger.info(f"Deleted alert {alert_id} for user {user_id}")

    def check_alerts(self, user_id: str, risk_metrics: RiskMetrics) -> list[TriggeredAlert]:
        """
        Evaluate every enabled configuration of a user.

        Returns:
            Triggered alerts, in configuration order
        """
        triggered = []

        for config in self._repository.get_user_alerts(user_id):
            if not config.enabled:
                continue

            value = risk_metrics.get(config.risk_metric)
            if not is_triggered(value, config.threshold, config.condition):
                continue

            alert = TriggeredAlert(
                alert_id=config.id,
                alert_name=config.name,
                user_id=user_id,
                risk_metric=config.risk_metric,
                current_value=value,
                threshold=config.threshold,
                condition=config.condition,
                severity=calculate_alert_severity(value, config.threshold),
            )
            triggered.append(alert)
            logger.warning(f"ALERT TRIGGERED: {alert.message} (severity={alert.severity.value})")
            self._notifier.dispatch(alert)

        return triggered

    def get_default_alert_templates(self) -> list[AlertConfiguration]:
        return [copy.copy(t) for t in DEFAULT_ALERT_TEMPLATES]
