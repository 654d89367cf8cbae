"""
Alert Notifications
===================

Delivery boundary for triggered risk alerts.

Channels:
- Logging (always available, default)
- File (JSON lines, for log aggregation)
- Webhook (HTTP POST with bounded timeout)

Dispatch is fire-and-forget: a failing channel is logged and never raises
into alert evaluation.
"""

from __future__ import annotations

import json
import logging
import threading
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Any

from core.models import AlertSeverity, TriggeredAlert

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """Abstract base class for notification channels."""

    name = "channel"

    @abstractmethod
    def send(self, alert: TriggeredAlert) -> bool:
        """Send notification. Returns True if successful."""

    def is_available(self) -> bool:
        return True


class LoggingNotificationChannel(NotificationChannel):
    """Writes alerts to the log at a level matching their severity."""

    name = "logging"

    LEVELS = {
        AlertSeverity.LOW: logging.INFO,
        AlertSeverity.MEDIUM: logging.WARNING,
        AlertSeverity.HIGH: logging.ERROR,
    }

    def __init__(self, logger_name: str = "scenario_lab.alerts"):
        self._logger = logging.getLogger(logger_name)

    def send(self, alert: TriggeredAlert) -> bool:
        self._logger.log(
            self.LEVELS.get(alert.severity, logging.WARNING),
            f"[{alert.severity.value}] user={alert.user_id} {alert.message}",
        )
        return True


class FileNotificationChannel(NotificationChannel):
    """
    File-based notification channel.

    Appends one JSON document per alert.
    """

    name = "file"

    def __init__(self, filepath: str | Path = "logs/alerts.jsonl"):
        self.filepath = Path(filepath)
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def send(self, alert: TriggeredAlert) -> bool:
        """Write alert to file."""
        try:
            with self._lock:
                with open(self.filepath, "a", encoding="utf-8") as f:
                    f.write(json.dumps(alert.to_dict()) + "\n")
            return True
        except OSError as e:
            logger.error(f"Failed to write alert to file: {e}")
            return False


class WebhookNotificationChannel(NotificationChannel):
    """
    Webhook notification channel.

    POSTs the alert as JSON; the request is bounded by ``timeout_seconds``.
    """

    name = "webhook"

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 5.0,
        headers: dict[str, str] | None = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout_seconds
        self.headers = headers or {"Content-Type": "application/json"}

    def _format_payload(self, alert: TriggeredAlert) -> dict[str, Any]:
        return {
            "text": f"Risk alert: {alert.message}",
            "alert": alert.to_dict(),
        }

    def send(self, alert: TriggeredAlert) -> bool:
        """Send alert to webhook."""
        data = json.dumps(self._format_payload(alert)).encode("utf-8")
        request = urllib.request.Request(
            self.webhook_url,
            data=data,
            headers=self.headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return 200 <= response.status < 300
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            logger.error(f"Webhook notification failed: {e}")
            return False

    def is_available(self) -> bool:
        return bool(self.webhook_url)


class NotificationManager:
    """
    Routes triggered alerts to every configured channel.

    Keeps a bounded history of dispatched alerts for inspection.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        history_limit: int = 1000,
    ):
        self.channels = channels if channels is not None else [LoggingNotificationChannel()]
        self._history_limit = history_limit
        self._history: list[TriggeredAlert] = []
        self._failures: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def dispatch(self, alert: TriggeredAlert) -> int:
        """
        Deliver an alert to all available channels.

        Returns:
            Number of channels that accepted the alert
        """
        with self._lock:
            self._history.append(alert)
            if len(self._history) > self._history_limit:
                self._history = self._history[-self._history_limit:]

        delivered = 0
        for channel in self.channels:
            if not channel.is_available():
                continue
            try:
                ok = channel.send(alert)
            except Exception as e:
                logger.exception(f"Notification channel {channel.name} raised: {e}")
                ok = False
            if ok:
                delivered += 1
            else:
                with self._lock:
                    self._failures[channel.name] += 1

        logger.debug(
            f"Alert {alert.alert_id} delivered to {delivered}/{len(self.channels)} channels"
        )
        return delivered

    def get_history(self, user_id: str | None = None, limit: int = 100) -> list[TriggeredAlert]:
        with self._lock:
            history = list(self._history)
        if user_id is not None:
            history = [a for a in history if a.user_id == user_id]
        return history[-limit:]

    def get_statistics(self) -> dict[str, Any]:
        """Get notification statistics."""
        with self._lock:
            history = list(self._history)
            failures = dict(self._failures)

        by_severity: dict[str, int] = defaultdict(int)
        for alert in history:
            by_severity[alert.severity.value] += 1

        return {
            "total_alerts": len(history),
            "by_severity": dict(by_severity),
            "channels": [c.name for c in self.channels],
            "failures": failures,
        }


def create_notification_manager(settings: dict[str, Any] | None = None) -> NotificationManager:
    """
    Build a manager from the ``alerts`` config section.

    The logging channel is always present; file and webhook channels are
    added when ``file_path`` / ``webhook_url`` are set.
    """
    settings = settings or {}
    channels: list[NotificationChannel] = [LoggingNotificationChannel()]

    if settings.get("file_path"):
        channels.append(FileNotificationChannel(settings["file_path"]))
    if settings.get("webhook_url"):
        channels.append(WebhookNotificationChannel(
            settings["webhook_url"],
            timeout_seconds=settings.get("webhook_timeout_seconds", 5.0),
        ))

    return NotificationManager(channels, history_limit=settings.get("history_limit", 1000))
