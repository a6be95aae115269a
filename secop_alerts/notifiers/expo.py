"""
Expo push notifier.
"""

import logging
import time
from typing import Any

import requests

from .base import Notifier, NotificationResult, AlertNotification

logger = logging.getLogger(__name__)


class ExpoPushNotifier(Notifier):
    """Sends push notifications to a device through the Expo push API."""

    DEFAULT_URL = "https://exp.host/--/api/v2/push/send"
    channel = "expo"

    def __init__(
        self,
        push_token: str,
        push_url: str = DEFAULT_URL,
        channel_id: str = "secop-alerts",
    ):
        """
        Initialize Expo notifier.

        Args:
            push_token: Device token, e.g. "ExponentPushToken[xxxx]"
            push_url: Expo push endpoint
            channel_id: Android notification channel
        """
        self.push_token = push_token
        self.push_url = push_url
        self.channel_id = channel_id

    def send(self, notification: AlertNotification) -> NotificationResult:
        """Send notification to the device."""
        try:
            response = self._post(self._create_payload(notification))

            if not response.ok:
                return NotificationResult(
                    success=False,
                    channel=self.channel,
                    error=f"HTTP {response.status_code}: {response.text}",
                )

            # Expo answers 200 even when the ticket itself is an error
            ticket = self._ticket(response)
            if ticket.get("status") == "error":
                details = ticket.get("details") or {}
                reason = details.get("error") or ticket.get("message", "unknown")
                return NotificationResult(
                    success=False,
                    channel=self.channel,
                    error=f"Push rejected: {reason}",
                )

            return NotificationResult(success=True, channel=self.channel)

        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"Connection error: {str(e)}",
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=str(e),
            )

    def _post(self, payload: dict[str, Any]) -> requests.Response:
        """POST with a single retry after rate limiting."""
        response = requests.post(self.push_url, json=payload, timeout=10)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "1")
            logger.debug(f"Expo rate limited, retrying in {retry_after}s")
            time.sleep(float(retry_after))
            response = requests.post(self.push_url, json=payload, timeout=10)

        return response

    def _ticket(self, response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        if not isinstance(body, dict):
            return {}
        data = body.get("data")
        if isinstance(data, list):
            data = data[0] if data else {}
        return data if isinstance(data, dict) else {}

    def _create_payload(self, notification: AlertNotification) -> dict[str, Any]:
        """Create Expo push message."""
        return {
            "to": self.push_token,
            "sound": "default",
            "title": notification.title,
            "body": notification.body,
            "data": notification.data,
            "channelId": self.channel_id,
            "priority": "high",
            "badge": 1,
        }
