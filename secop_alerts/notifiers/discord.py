"""
Discord webhook notifier.
"""

import time
from typing import Any

import requests

from .base import Notifier, NotificationResult, AlertNotification


class DiscordNotifier(Notifier):
    """Sends notifications via Discord webhook."""

    COLOR = 0x3498DB  # Blue

    channel = "discord"

    def __init__(self, webhook_url: str):
        """
        Initialize Discord notifier.

        Args:
            webhook_url: Discord webhook URL
        """
        self.webhook_url = webhook_url

    def send(self, notification: AlertNotification) -> NotificationResult:
        """Send notification to Discord."""
        try:
            payload = self._create_payload(notification)
            response = self._send_webhook(payload)

            if response.ok:
                return NotificationResult(success=True, channel=self.channel)
            else:
                return NotificationResult(
                    success=False,
                    channel=self.channel,
                    error=f"HTTP {response.status_code}: {response.text}",
                )

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

    def _send_webhook(self, payload: dict[str, Any]) -> requests.Response:
        """Send webhook with rate limit handling."""
        response = requests.post(self.webhook_url, json=payload, timeout=10)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "1")
            time.sleep(float(retry_after))
            response = requests.post(self.webhook_url, json=payload, timeout=10)

        return response

    def _create_payload(self, notification: AlertNotification) -> dict[str, Any]:
        """Create Discord webhook payload."""
        return {"embeds": [self._create_embed(notification)]}

    def _create_embed(self, notification: AlertNotification) -> dict[str, Any]:
        """Create Discord embed for a notification."""
        embed: dict[str, Any] = {
            "title": notification.title,
            "description": notification.body,
            "color": self.COLOR,
            "fields": [
                {
                    "name": "Nuevos procesos",
                    "value": str(notification.new_count),
                    "inline": True,
                }
            ],
        }

        for summary in notification.data.get("processSummaries", [])[:3]:
            embed["fields"].append({
                "name": summary.get("id", "-"),
                "value": summary.get("nombre") or summary.get("entidad") or "-",
                "inline": False,
            })

        return embed
