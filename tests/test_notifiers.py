"""
Notifier tests.
Tests for notification building, Expo/Discord delivery and dispatch.
"""

from unittest.mock import patch

import pytest
import requests

from secop_alerts.database.models import AlertDefinition, User
from secop_alerts.database.repository import UserRepository
from secop_alerts.notifiers.base import (
    NotificationChannelUnavailable,
    NotificationResult,
    NotifierFactory,
)
from secop_alerts.notifiers.discord import DiscordNotifier
from secop_alerts.notifiers.dispatcher import (
    NotificationDispatcher,
    build_notification,
    summary_text,
)
from secop_alerts.notifiers.expo import ExpoPushNotifier

from conftest import make_items, mock_response


@pytest.fixture
def alert():
    return AlertDefinition(id="alert-1", user_id="user-1", name="Carreteras")


@pytest.fixture
def notification(alert):
    return build_notification(alert, make_items("D"))


class TestBuildNotification:
    """Test summary notification content."""

    def test_singular_summary(self):
        assert summary_text(1) == "1 nuevo proceso encontrado"

    def test_plural_summary(self):
        assert summary_text(4) == "4 nuevos procesos encontrados"

    def test_title_is_alert_name(self, notification):
        """Should use the alert's display name as title."""
        assert notification.title == "Carreteras"
        assert notification.new_count == 1
        assert notification.body.startswith("1 nuevo proceso encontrado")

    def test_body_previews_three_processes(self, alert):
        """Should list at most three process names plus a remainder line."""
        n = build_notification(alert, make_items("A", "B", "C", "D", "E"))
        lines = n.body.split("\n")
        assert lines[0] == "5 nuevos procesos encontrados"
        assert len(lines) == 5
        assert lines[-1] == "...y 2 más"

    def test_data_payload(self, alert):
        """Should carry the alert id and new process ids."""
        n = build_notification(alert, make_items(*[f"P{i}" for i in range(12)]))
        assert n.data["type"] == "alert_match"
        assert n.data["alertId"] == "alert-1"
        assert len(n.data["newProcessIds"]) == 10
        assert len(n.data["processSummaries"]) == 5

    def test_summary_carries_publication_date(self, notification):
        """Should include the publication day of each new process."""
        summary = notification.data["processSummaries"][0]
        assert summary["id"] == "D"
        assert summary["publicado"] == "2026-10-01"


class TestExpoPushNotifier:
    """Test Expo push delivery."""

    @pytest.fixture
    def notifier(self):
        return ExpoPushNotifier(push_token="ExponentPushToken[abc123]")

    def test_send_success(self, notifier, notification, sample_expo_ok):
        """Should post one message to the Expo API."""
        with patch("requests.post", return_value=mock_response(sample_expo_ok)) as mock_post:
            result = notifier.send(notification)

        assert result.success is True
        assert result.channel == "expo"
        payload = mock_post.call_args.kwargs["json"]
        assert payload["to"] == "ExponentPushToken[abc123]"
        assert payload["title"] == "Carreteras"
        assert payload["channelId"] == "secop-alerts"
        mock_post.assert_called_once()

    def test_ticket_error(self, notifier, notification):
        """Should fail when Expo rejects the device token."""
        ticket = {
            "data": {
                "status": "error",
                "message": "not a registered push notification recipient",
                "details": {"error": "DeviceNotRegistered"},
            }
        }
        with patch("requests.post", return_value=mock_response(ticket)):
            result = notifier.send(notification)

        assert result.success is False
        assert "DeviceNotRegistered" in result.error

    def test_http_failure(self, notifier, notification):
        """Should report non-2xx responses."""
        with patch("requests.post", return_value=mock_response("Bad Request", 400)):
            result = notifier.send(notification)

        assert result.success is False
        assert "400" in result.error

    def test_connection_error(self, notifier, notification):
        """Should not raise on connection errors."""
        with patch("requests.post", side_effect=requests.ConnectionError("offline")):
            result = notifier.send(notification)

        assert result.success is False
        assert "Connection error" in result.error

    def test_rate_limit_retry(self, notifier, notification, sample_expo_ok):
        """Should retry once after a 429."""
        rate_limited = mock_response({}, 429)
        rate_limited.headers = {"Retry-After": "2"}

        with patch("requests.post", side_effect=[rate_limited, mock_response(sample_expo_ok)]) as mock_post, \
             patch("secop_alerts.notifiers.expo.time.sleep") as mock_sleep:
            result = notifier.send(notification)

        assert result.success is True
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(2.0)


class TestDiscordNotifier:
    """Test Discord webhook delivery."""

    @pytest.fixture
    def notifier(self):
        return DiscordNotifier(webhook_url="https://discord.com/api/webhooks/123/abc")

    def test_send_success(self, notifier, notification):
        with patch("requests.post", return_value=mock_response(None, 204)) as mock_post:
            result = notifier.send(notification)

        assert result.success is True
        embed = mock_post.call_args.kwargs["json"]["embeds"][0]
        assert embed["title"] == "Carreteras"

    def test_embed_fields(self, notifier, notification):
        """Should include the count and the new process ids."""
        embed = notifier._create_embed(notification)
        assert embed["fields"][0]["value"] == "1"
        assert embed["fields"][1]["name"] == "D"

    def test_send_failure(self, notifier, notification):
        with patch("requests.post", return_value=mock_response("Bad Request", 400)):
            result = notifier.send(notification)

        assert result.success is False


class TestNotifierFactory:
    """Test notifier creation."""

    def test_create_expo(self):
        notifier = NotifierFactory.create({"type": "expo", "push_token": "tok"})
        assert isinstance(notifier, ExpoPushNotifier)

    def test_create_discord(self):
        notifier = NotifierFactory.create({"type": "discord", "webhook_url": "u"})
        assert isinstance(notifier, DiscordNotifier)

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown notifier type"):
            NotifierFactory.create({"type": "sms"})


class TestNotificationDispatcher:
    """Test dispatching one notification per alert cycle."""

    @pytest.fixture
    def dispatcher(self, db):
        return NotificationDispatcher(UserRepository(db))

    def test_dispatch_sends_single_notification(
        self, dispatcher, user, alert, sample_expo_ok
    ):
        """Should send one summary for many new items."""
        with patch("requests.post", return_value=mock_response(sample_expo_ok)) as mock_post:
            sent = dispatcher.dispatch(alert, make_items("D", "E", "F"))

        assert sent is True
        mock_post.assert_called_once()
        assert mock_post.call_args.kwargs["json"]["body"].startswith("3 nuevos")

    def test_dispatch_without_items(self, dispatcher, user, alert):
        """Should not notify an empty diff."""
        with patch("requests.post") as mock_post:
            assert dispatcher.dispatch(alert, []) is False
        mock_post.assert_not_called()

    def test_dispatch_without_channels(self, db, dispatcher, alert):
        """Should fail silently when the user has no channel."""
        UserRepository(db).create(User(id="user-1"))
        with patch("requests.post") as mock_post:
            assert dispatcher.dispatch(alert, make_items("D")) is False
        mock_post.assert_not_called()

    def test_dispatch_unknown_user(self, dispatcher, alert):
        """Should fail silently when the user record is gone."""
        assert dispatcher.dispatch(alert, make_items("D")) is False

    def test_dispatch_channel_failure(self, dispatcher, user, alert):
        """Should return False without raising when delivery fails."""
        with patch("requests.post", side_effect=requests.ConnectionError("offline")):
            assert dispatcher.dispatch(alert, make_items("D")) is False

    def test_any_channel_success_counts(self, db, dispatcher, alert, sample_expo_ok):
        """Should report delivery if at least one channel succeeds."""
        UserRepository(db).create(
            User(
                id="user-1",
                push_token="ExponentPushToken[abc123]",
                discord_webhook_url="https://discord.com/api/webhooks/1/a",
            )
        )
        responses = [mock_response(sample_expo_ok), mock_response("down", 500)]
        with patch("requests.post", side_effect=responses) as mock_post:
            assert dispatcher.dispatch(alert, make_items("D")) is True
        assert mock_post.call_count == 2

    def test_notifiers_for_requires_channel(self, dispatcher):
        with pytest.raises(NotificationChannelUnavailable):
            dispatcher.notifiers_for(User(id="user-9"))


class TestNotificationResult:
    """Test NotificationResult model."""

    def test_failure_result(self):
        result = NotificationResult(success=False, channel="expo", error="denied")
        assert result.success is False
        assert result.error == "denied"
