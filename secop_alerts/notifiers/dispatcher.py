"""
Turns alert diffs into user notifications.
"""

import logging
import sqlite3
from typing import Optional

from secop_alerts.config import ExpoNotificationConfig
from secop_alerts.database.models import AlertDefinition, ProcurementItem, User
from secop_alerts.database.repository import UserRepository
from .base import (
    AlertNotification,
    NotificationChannelUnavailable,
    Notifier,
    NotifierFactory,
)

logger = logging.getLogger(__name__)

# Lines of process names shown in the notification body
BODY_PREVIEW_LINES = 3
# Ids and summaries carried in the data payload (APNs caps payloads near 4KB)
DATA_MAX_IDS = 10
DATA_MAX_SUMMARIES = 5


def summary_text(count: int) -> str:
    """Spanish count summary, e.g. "3 nuevos procesos encontrados"."""
    if count == 1:
        return "1 nuevo proceso encontrado"
    return f"{count} nuevos procesos encontrados"


def build_notification(
    alert: AlertDefinition, new_items: list[ProcurementItem]
) -> AlertNotification:
    """Build the single summary notification for an alert cycle."""
    count = len(new_items)
    lines = [summary_text(count)]
    for item in new_items[:BODY_PREVIEW_LINES]:
        lines.append(f"• {item.name[:60]}")
    if count > BODY_PREVIEW_LINES:
        lines.append(f"...y {count - BODY_PREVIEW_LINES} más")

    summaries = [
        {
            "id": item.id,
            "nombre": (item.record.get("nombre_del_procedimiento") or "")[:100],
            "entidad": (item.entity or "")[:80],
            "fase": item.phase,
            "publicado": (item.published_at or "")[:10],
        }
        for item in new_items[:DATA_MAX_SUMMARIES]
    ]

    return AlertNotification(
        alert_id=alert.id,
        title=alert.name,
        body="\n".join(lines),
        new_count=count,
        data={
            "type": "alert_match",
            "alertId": alert.id,
            "newProcessIds": [item.id for item in new_items[:DATA_MAX_IDS]],
            "processSummaries": summaries,
        },
    )


class NotificationDispatcher:
    """Delivers one notification per alert cycle over the user's channels."""

    def __init__(
        self,
        user_repo: UserRepository,
        expo_config: Optional[ExpoNotificationConfig] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            user_repo: Source of the user's push token and webhook
            expo_config: Expo endpoint settings
        """
        self.user_repo = user_repo
        self.expo_config = expo_config or ExpoNotificationConfig()

    def notifiers_for(self, user: Optional[User]) -> list[Notifier]:
        """
        Build the notifiers configured for a user.

        Raises:
            NotificationChannelUnavailable: If the user has no channel
        """
        if user is None:
            raise NotificationChannelUnavailable("User not found")

        notifiers = []
        if user.push_token:
            notifiers.append(
                NotifierFactory.create({
                    "type": "expo",
                    "push_token": user.push_token,
                    "push_url": self.expo_config.push_url,
                    "channel_id": self.expo_config.channel_id,
                })
            )
        if user.discord_webhook_url:
            notifiers.append(
                NotifierFactory.create({
                    "type": "discord",
                    "webhook_url": user.discord_webhook_url,
                })
            )

        if not notifiers:
            raise NotificationChannelUnavailable(
                f"User {user.id} has no push token or webhook registered"
            )
        return notifiers

    def dispatch(
        self, alert: AlertDefinition, new_items: list[ProcurementItem]
    ) -> bool:
        """
        Send one summary notification for an alert's new items.

        Never raises; failures are logged.

        Returns:
            True if at least one channel delivered the notification
        """
        if not new_items:
            return False

        notification = build_notification(alert, new_items)

        try:
            notifiers = self.notifiers_for(self.user_repo.get_by_id(alert.user_id))
        except (NotificationChannelUnavailable, sqlite3.Error) as e:
            logger.warning(f"Alert {alert.id}: notification channel unavailable: {e}")
            return False

        delivered = False
        for notifier in notifiers:
            result = notifier.send(notification)
            if result.success:
                delivered = True
                logger.info(
                    f"Alert {alert.id}: notified {notification.new_count} "
                    f"new processes via {result.channel}"
                )
            else:
                logger.warning(
                    f"Alert {alert.id}: {result.channel} delivery failed: {result.error}"
                )

        return delivered
