"""
Alert evaluation: fetch, diff, dispatch, commit.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from secop_alerts.data.secop import SecopClient, UpstreamUnavailable
from secop_alerts.database.models import AlertDefinition, AlertHistory
from secop_alerts.database.repository import (
    AlertHistoryRepository,
    AlertRepository,
    StoreWriteFailure,
    utcnow,
)
from secop_alerts.diff.engine import DiffEngine
from secop_alerts.notifiers.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


class CheckStatus:
    """Outcome labels for a single alert evaluation."""

    BASELINE = "baseline"
    NEW_RESULTS = "new_results"
    UNCHANGED = "unchanged"
    NOT_DUE = "not_due"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    DISPATCH_FAILED = "dispatch_failed"
    STORE_FAILURE = "store_failure"
    ERROR = "error"


@dataclass
class CheckOutcome:
    """What happened to one alert during a cycle."""

    alert_id: str
    status: str
    new_ids: list[str] = field(default_factory=list)
    notified: bool = False


@dataclass
class CycleReport:
    """Summary of one pass over a user's active alerts."""

    user_id: Optional[str] = None
    total_alerts: int = 0
    alerts_checked: int = 0
    notifications_sent: int = 0
    errors: int = 0
    outcomes: list[CheckOutcome] = field(default_factory=list)

    def add(self, outcome: CheckOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status != CheckStatus.NOT_DUE:
            self.alerts_checked += 1
        if outcome.notified:
            self.notifications_sent += 1
        if outcome.status in (
            CheckStatus.UPSTREAM_UNAVAILABLE,
            CheckStatus.STORE_FAILURE,
            CheckStatus.ERROR,
        ):
            self.errors += 1


class AlertChecker:
    """Evaluates saved-search alerts against the SECOP open-data API."""

    def __init__(
        self,
        alert_repo: AlertRepository,
        history_repo: AlertHistoryRepository,
        client: SecopClient,
        dispatcher: NotificationDispatcher,
        diff_engine: Optional[DiffEngine] = None,
        result_limit: Optional[int] = None,
        advance_baseline_on_failed_dispatch: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize checker.

        Args:
            alert_repo: Alert store
            history_repo: Store for cycles that found new processes
            client: Open-data client
            dispatcher: Notification dispatcher
            diff_engine: Diff engine, a default one if omitted
            result_limit: Results fetched per alert, client default if omitted
            advance_baseline_on_failed_dispatch: Record the fetched ids even
                when no channel delivered the notification
            clock: Source of the current time
        """
        self.alert_repo = alert_repo
        self.history_repo = history_repo
        self.client = client
        self.dispatcher = dispatcher
        self.diff_engine = diff_engine or DiffEngine()
        self.result_limit = result_limit
        self.advance_baseline_on_failed_dispatch = advance_baseline_on_failed_dispatch
        self.clock = clock

    def check_user(self, user_id: str, respect_frequency: bool = True) -> CycleReport:
        """
        Evaluate every active alert of a user, in store order.

        A failing alert is logged and skipped; the rest still run.
        """
        report = CycleReport(user_id=user_id)
        try:
            alerts = self.alert_repo.list_active(user_id)
        except sqlite3.Error as e:
            logger.error(f"Could not load alerts for user {user_id}: {e}")
            report.errors += 1
            return report

        report.total_alerts = len(alerts)
        if not alerts:
            logger.debug(f"No active alerts for user {user_id}")
            return report

        now = self.clock()
        for alert in alerts:
            if respect_frequency and not self.diff_engine.is_due(alert, now):
                report.add(CheckOutcome(alert_id=alert.id, status=CheckStatus.NOT_DUE))
                continue
            report.add(self.evaluate(alert, now))

        logger.info(
            f"Checked {report.alerts_checked}/{report.total_alerts} alerts for "
            f"user {user_id}: {report.notifications_sent} notified, "
            f"{report.errors} errors"
        )
        return report

    def check_alert(self, alert_id: str) -> Optional[CheckOutcome]:
        """Evaluate one alert now, whether or not it is active or due."""
        alert = self.alert_repo.get_by_id(alert_id)
        if alert is None:
            logger.warning(f"Alert not found: {alert_id}")
            return None
        return self.evaluate(alert, self.clock())

    def evaluate(self, alert: AlertDefinition, now: datetime) -> CheckOutcome:
        """Run fetch, diff, dispatch and store update for one alert."""
        try:
            return self._evaluate(alert, now)
        except UpstreamUnavailable as e:
            logger.warning(f"Alert {alert.id}: SECOP unavailable, skipping: {e}")
            return CheckOutcome(
                alert_id=alert.id, status=CheckStatus.UPSTREAM_UNAVAILABLE
            )
        except StoreWriteFailure as e:
            logger.error(f"Alert {alert.id}: {e}")
            return CheckOutcome(alert_id=alert.id, status=CheckStatus.STORE_FAILURE)
        except Exception as e:
            logger.error(f"Error checking alert {alert.id}: {e}")
            return CheckOutcome(alert_id=alert.id, status=CheckStatus.ERROR)

    def _evaluate(self, alert: AlertDefinition, now: datetime) -> CheckOutcome:
        items = self.client.query(alert.filters, self.result_limit)
        diff = self.diff_engine.diff(items, alert.last_results_ids)

        outcome = CheckOutcome(alert_id=alert.id, status=CheckStatus.UNCHANGED)

        if self.diff_engine.is_baseline(alert):
            logger.info(
                f"Alert {alert.id}: baseline of {len(diff.fetched_ids)} processes recorded"
            )
            outcome.status = CheckStatus.BASELINE
        elif diff.has_new:
            outcome.status = CheckStatus.NEW_RESULTS
            outcome.new_ids = diff.new_ids
            outcome.notified = self.dispatcher.dispatch(alert, diff.new_items)

            if not outcome.notified and not self.advance_baseline_on_failed_dispatch:
                logger.info(
                    f"Alert {alert.id}: notification not delivered, keeping baseline"
                )
                outcome.status = CheckStatus.DISPATCH_FAILED
                return outcome

            self._record_history(alert, diff.new_ids, outcome.notified)

        self.alert_repo.update_results(
            alert.id,
            last_check=now,
            last_results_count=len(diff.fetched_ids),
            last_results_ids=diff.fetched_ids,
        )
        return outcome

    def _record_history(
        self, alert: AlertDefinition, new_ids: list[str], notified: bool
    ) -> None:
        # A lost history row must not block the baseline commit
        try:
            self.history_repo.create(
                AlertHistory(
                    alert_id=alert.id,
                    user_id=alert.user_id,
                    new_processes_count=len(new_ids),
                    new_processes_ids=new_ids,
                    notification_sent=notified,
                )
            )
        except StoreWriteFailure as e:
            logger.warning(f"Alert {alert.id}: could not record history: {e}")
