"""
Tests for Alert Notifications
=============================

Channel delivery, failure containment and dispatch history.
"""

import json
import logging
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from core.models import AlertCondition, AlertSeverity, RiskMetric, TriggeredAlert
from core.notifications import (
    FileNotificationChannel,
    LoggingNotificationChannel,
    NotificationChannel,
    NotificationManager,
    WebhookNotificationChannel,
    create_notification_manager,
)


def make_triggered(user_id="alice", severity=AlertSeverity.HIGH, alert_id="var"):
    return TriggeredAlert(
        alert_id=alert_id,
        alert_name="High VaR",
        user_id=user_id,
        risk_metric=RiskMetric.VAR_95,
        current_value=0.08,
        threshold=0.05,
        condition=AlertCondition.ABOVE,
        severity=severity,
    )


class FailingChannel(NotificationChannel):
    name = "failing"

    def send(self, alert):
        return False


class TestChannels:
    """Tests for the individual channels."""

    def test_logging_channel_level_follows_severity(self, caplog):
        channel = LoggingNotificationChannel("test.alerts")
        with caplog.at_level(logging.INFO, logger="test.alerts"):
            assert channel.send(make_triggered(severity=AlertSeverity.HIGH))
            assert channel.send(make_triggered(severity=AlertSeverity.LOW))

        levels = [r.levelno for r in caplog.records if r.name == "test.alerts"]
        assert levels == [logging.ERROR, logging.INFO]
        assert "user=alice" in caplog.text

    def test_file_channel_appends_json_lines(self, temp_logs_dir):
        path = temp_logs_dir / "alerts.jsonl"
        channel = FileNotificationChannel(path)

        channel.send(make_triggered(alert_id="a1"))
        channel.send(make_triggered(alert_id="a2"))

        lines = path.read_text().splitlines()
        assert [json.loads(line)["alertId"] for line in lines] == ["a1", "a2"]

    def test_file_channel_creates_parent(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "alerts.jsonl"
        FileNotificationChannel(path).send(make_triggered())
        assert path.exists()

    def test_webhook_posts_json(self):
        channel = WebhookNotificationChannel("http://hooks.example/alerts", timeout_seconds=2.0)
        response = MagicMock(status=200)
        response.__enter__.return_value = response

        with patch("core.notifications.urllib.request.urlopen", return_value=response) as urlopen:
            assert channel.send(make_triggered())

        request = urlopen.call_args.args[0]
        assert request.get_method() == "POST"
        assert json.loads(request.data)["alert"]["alertId"] == "var"
        assert urlopen.call_args.kwargs["timeout"] == 2.0

    def test_webhook_failure_returns_false(self):
        channel = WebhookNotificationChannel("http://hooks.example/alerts")
        with patch("core.notifications.urllib.request.urlopen",
                   side_effect=urllib.error.URLError("refused")):
            assert channel.send(make_triggered()) is False

    def test_webhook_unavailable_without_url(self):
        assert not WebhookNotificationChannel("").is_available()


class TestNotificationManager:
    """Tests for dispatch routing."""

    def test_default_channel_is_logging(self):
        manager = NotificationManager()
        assert [c.name for c in manager.channels] == ["logging"]

    def test_dispatch_counts_deliveries(self):
        manager = NotificationManager(channels=[LoggingNotificationChannel(), FailingChannel()])

        assert manager.dispatch(make_triggered()) == 1
        assert manager.get_statistics()["failures"] == {"failing": 1}

    def test_raising_channel_contained(self):
        broken = MagicMock(spec=NotificationChannel)
        broken.name = "broken"
        broken.is_available.return_value = True
        broken.send.side_effect = RuntimeError("boom")

        manager = NotificationManager(channels=[broken])

        assert manager.dispatch(make_triggered()) == 0

    def test_unavailable_channel_skipped(self):
        channel = WebhookNotificationChannel("")
        manager = NotificationManager(channels=[channel])

        assert manager.dispatch(make_triggered()) == 0
        assert manager.get_statistics()["failures"] == {}

    def test_history_by_user_and_bounded(self):
        manager = NotificationManager(channels=[], history_limit=3)
        for i in range(4):
            manager.dispatch(make_triggered(user_id="alice" if i % 2 else "bob", alert_id=f"a{i}"))

        assert [a.alert_id for a in manager.get_history()] == ["a1", "a2", "a3"]
        assert [a.alert_id for a in manager.get_history("alice")] == ["a1", "a3"]

    def test_statistics_by_severity(self):
        manager = NotificationManager(channels=[])
        manager.dispatch(make_triggered(severity=AlertSeverity.HIGH))
        manager.dispatch(make_triggered(severity=AlertSeverity.LOW))
        manager.dispatch(make_triggered(severity=AlertSeverity.HIGH))

        stats = manager.get_statistics()

        assert stats["total_alerts"] == 3
        assert stats["by_severity"] == {"high": 2, "low": 1}


class TestCreateNotificationManager:
    """Tests for building a manager from settings."""

    def test_logging_only_by_default(self):
        assert [c.name for c in create_notification_manager({}).channels] == ["logging"]

    def test_file_and_webhook(self, temp_logs_dir):
        manager = create_notification_manager({
            "file_path": str(temp_logs_dir / "alerts.jsonl"),
            "webhook_url": "https://hooks.example/x",
            "webhook_timeout_seconds": 1.5,
        })

        assert [c.name for c in manager.channels] == ["logging", "file", "webhook"]
        assert manager.channels[2].timeout == 1.5
