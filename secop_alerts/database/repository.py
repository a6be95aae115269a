"""
Repository classes for CRUD operations.
"""

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Optional

from .connection import Database
from .models import (
    AlertDefinition,
    AlertFilters,
    AlertHistory,
    User,
    unique_ids,
    validate_frequency,
)


class StoreWriteFailure(Exception):
    """Raised when the persistence layer rejects an update."""

    pass


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    """Serialize a datetime so stored values sort chronologically as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class UserRepository:
    """CRUD operations for users."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, user: User) -> User:
        """Create a new user."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO users (id, email, push_token, discord_webhook_url)
            VALUES (?, ?, ?, ?)
            """,
            (user.id, user.email, user.push_token, user.discord_webhook_url),
        )
        self.db.connection.commit()
        return user

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_or_create(self, user_id: str, email: Optional[str] = None) -> User:
        """Return the user, creating a bare record on first sign-in."""
        user = self.get_by_id(user_id)
        if user is None:
            user = self.create(User(id=user_id, email=email))
        return user

    def update(self, user: User) -> None:
        """Update user notification settings."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            UPDATE users
            SET email = ?, push_token = ?, discord_webhook_url = ?
            WHERE id = ?
            """,
            (user.email, user.push_token, user.discord_webhook_url, user.id),
        )
        self.db.connection.commit()

    def delete(self, user_id: str) -> None:
        """Delete user. Alerts and history go with it."""
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))
        self.db.connection.commit()

    def _row_to_user(self, row) -> User:
        """Convert database row to User."""
        return User(
            id=row["id"],
            email=row["email"],
            push_token=row["push_token"],
            discord_webhook_url=row["discord_webhook_url"],
            created_at=row["created_at"],
        )


class AlertRepository:
    """CRUD operations for alert definitions."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, alert: AlertDefinition) -> AlertDefinition:
        """Create a new alert."""
        validate_frequency(alert.frequency_hours)
        now = utcnow()
        alert.id = alert.id or uuid.uuid4().hex
        alert.created_at = alert.created_at or now
        alert.updated_at = now
        alert.last_results_ids = unique_ids(alert.last_results_ids)

        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO alerts
            (id, user_id, name, filters, frequency_hours, is_active,
             last_check, last_results_count, last_results_ids,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.user_id,
                alert.name,
                json.dumps(alert.filters.to_dict()),
                alert.frequency_hours,
                1 if alert.is_active else 0,
                _to_iso(alert.last_check) if alert.last_check else None,
                alert.last_results_count,
                json.dumps(alert.last_results_ids),
                _to_iso(alert.created_at),
                _to_iso(alert.updated_at),
            ),
        )
        self.db.connection.commit()
        return alert

    def get_by_id(self, alert_id: str) -> Optional[AlertDefinition]:
        """Get alert by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_alert(row)

    def list_for_user(self, user_id: str) -> list[AlertDefinition]:
        """Get all alerts for a user, newest first."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM alerts
            WHERE user_id = ?
            ORDER BY created_at DESC, id
            """,
            (user_id,),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def list_active(self, user_id: str) -> list[AlertDefinition]:
        """Get active alerts for a user in stable evaluation order."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM alerts
            WHERE user_id = ? AND is_active = 1
            ORDER BY created_at, id
            """,
            (user_id,),
        )
        return [self._row_to_alert(row) for row in cursor.fetchall()]

    def update(self, alert: AlertDefinition) -> None:
        """Update user-editable fields: name, filters and frequency."""
        validate_frequency(alert.frequency_hours)
        alert.updated_at = utcnow()
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            UPDATE alerts
            SET name = ?, filters = ?, frequency_hours = ?, is_active = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                alert.name,
                json.dumps(alert.filters.to_dict()),
                alert.frequency_hours,
                1 if alert.is_active else 0,
                _to_iso(alert.updated_at),
                alert.id,
            ),
        )
        self.db.connection.commit()

    def set_active(self, alert_id: str, is_active: bool) -> None:
        """Toggle an alert on or off."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "UPDATE alerts SET is_active = ?, updated_at = ? WHERE id = ?",
            (1 if is_active else 0, _to_iso(utcnow()), alert_id),
        )
        self.db.connection.commit()

    def update_results(
        self,
        alert_id: str,
        last_check: datetime,
        last_results_count: int,
        last_results_ids: list[str],
    ) -> None:
        """
        Record the outcome of an evaluation.

        The stored id list replaces the previous baseline. ``last_check``
        never moves backwards: an older timestamp leaves the stored one.

        Raises:
            StoreWriteFailure: If the write is rejected or the alert is gone
        """
        check_iso = _to_iso(last_check)
        try:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                UPDATE alerts
                SET last_check = CASE
                        WHEN last_check IS NULL OR last_check < ? THEN ?
                        ELSE last_check
                    END,
                    last_results_count = ?,
                    last_results_ids = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    check_iso,
                    check_iso,
                    last_results_count,
                    json.dumps(unique_ids(last_results_ids)),
                    _to_iso(utcnow()),
                    alert_id,
                ),
            )
            self.db.connection.commit()
        except sqlite3.Error as e:
            raise StoreWriteFailure(
                f"Could not update results for alert {alert_id}: {e}"
            ) from e

        if cursor.rowcount == 0:
            raise StoreWriteFailure(f"Alert not found: {alert_id}")

    def delete(self, alert_id: str) -> None:
        """Delete an alert."""
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
        self.db.connection.commit()

    def _row_to_alert(self, row) -> AlertDefinition:
        """Convert database row to AlertDefinition."""
        return AlertDefinition(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            filters=AlertFilters.from_dict(json.loads(row["filters"])),
            frequency_hours=row["frequency_hours"],
            is_active=bool(row["is_active"]),
            last_check=_from_iso(row["last_check"]),
            last_results_count=row["last_results_count"],
            last_results_ids=json.loads(row["last_results_ids"]),
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )


class AlertHistoryRepository:
    """CRUD operations for alert history."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, entry: AlertHistory) -> AlertHistory:
        """
        Create a new history entry.

        Raises:
            StoreWriteFailure: If the write is rejected
        """
        entry.created_at = entry.created_at or utcnow()
        try:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                INSERT INTO alert_history
                (alert_id, user_id, new_processes_count, new_processes_ids,
                 notification_sent, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.alert_id,
                    entry.user_id,
                    entry.new_processes_count,
                    json.dumps(entry.new_processes_ids),
                    1 if entry.notification_sent else 0,
                    _to_iso(entry.created_at),
                ),
            )
            self.db.connection.commit()
        except sqlite3.Error as e:
            raise StoreWriteFailure(
                f"Could not record history for alert {entry.alert_id}: {e}"
            ) from e
        entry.id = cursor.lastrowid
        return entry

    def list_for_alert(self, alert_id: str, limit: int = 10) -> list[AlertHistory]:
        """Get the most recent history entries for an alert."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM alert_history
            WHERE alert_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (alert_id, limit),
        )
        return [self._row_to_entry(row) for row in cursor.fetchall()]

    def _row_to_entry(self, row) -> AlertHistory:
        """Convert database row to AlertHistory."""
        return AlertHistory(
            id=row["id"],
            alert_id=row["alert_id"],
            user_id=row["user_id"],
            new_processes_count=row["new_processes_count"],
            new_processes_ids=json.loads(row["new_processes_ids"]),
            notification_sent=bool(row["notification_sent"]),
            created_at=_from_iso(row["created_at"]),
        )


class BackgroundStateRepository:
    """Process-wide state read by background wake-ups."""

    USER_ID_KEY = "secop-alert-user-id"
    LAST_RUN_KEY = "secop-alert-last-run"

    def __init__(self, db: Database):
        self.db = db

    def _get(self, key: str) -> Optional[str]:
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT value FROM background_state WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row["value"] if row else None

    def _set(self, key: str, value: str) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO background_state (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        self.db.connection.commit()

    def _delete(self, key: str) -> None:
        cursor = self.db.connection.cursor()
        cursor.execute("DELETE FROM background_state WHERE key = ?", (key,))
        self.db.connection.commit()

    def get_user_id(self) -> Optional[str]:
        """Signed-in user id, or None when signed out."""
        return self._get(self.USER_ID_KEY)

    def set_user_id(self, user_id: str) -> None:
        self._set(self.USER_ID_KEY, user_id)

    def clear_user_id(self) -> None:
        self._delete(self.USER_ID_KEY)

    def get_last_run(self) -> Optional[datetime]:
        """Start time of the last background cycle."""
        return _from_iso(self._get(self.LAST_RUN_KEY))

    def set_last_run(self, when: datetime) -> None:
        """Record a cycle start. Older timestamps are ignored."""
        current = self.get_last_run()
        if current is not None and current >= when:
            return
        self._set(self.LAST_RUN_KEY, _to_iso(when))
