"""
Base notifier classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Any


class NotificationChannelUnavailable(Exception):
    """Raised when no notification channel can deliver to the user."""

    pass


@dataclass
class AlertNotification:
    """One summary message for an alert evaluation with new processes."""

    alert_id: str
    title: str
    body: str
    new_count: int
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notifiers."""

    channel = "unknown"

    @abstractmethod
    def send(self, notification: AlertNotification) -> NotificationResult:
        """
        Send a single notification.

        Args:
            notification: Notification to send

        Returns:
            NotificationResult indicating success or failure
        """
        pass


class NotifierFactory:
    """Factory for creating notifier instances."""

    @staticmethod
    def create(config: dict[str, Any]) -> Notifier:
        """
        Create a notifier from configuration.

        Args:
            config: Notifier configuration dict

        Returns:
            Appropriate Notifier instance

        Raises:
            ValueError: If notifier type is unknown
        """
        notifier_type = config.get("type")

        if notifier_type == "expo":
            from .expo import ExpoPushNotifier

            return ExpoPushNotifier(
                push_token=config.get("push_token", ""),
                push_url=config.get("push_url", ExpoPushNotifier.DEFAULT_URL),
                channel_id=config.get("channel_id", "secop-alerts"),
            )

        elif notifier_type == "discord":
            from .discord import DiscordNotifier

            return DiscordNotifier(webhook_url=config.get("webhook_url", ""))

        else:
            raise ValueError(f"Unknown notifier type: {notifier_type}")
