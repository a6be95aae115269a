"""
Background scheduling of alert checks.

Wraps a recurring APScheduler job that stands in for the host's background
task dispatcher. Wake-ups may be delayed, coalesced or skipped, so every run
reads the signed-in user fresh from the store and treats the elapsed time as
unknown.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from secop_alerts.checker import AlertChecker, CheckOutcome, CycleReport
from secop_alerts.database.repository import BackgroundStateRepository, utcnow

logger = logging.getLogger(__name__)

ALERT_CHECK_JOB_ID = "SECOP_ALERT_CHECK"


class SchedulerState(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    RUNNING = "running"
    IDLE = "idle"


class BackgroundAlertScheduler:
    """Registers the recurring wake-up and runs check cycles."""

    def __init__(
        self,
        checker: AlertChecker,
        state_repo: BackgroundStateRepository,
        minimum_interval_minutes: int = 15,
        respect_alert_frequency: bool = True,
        scheduler: Optional[BackgroundScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the adapter.

        Args:
            checker: Runs the per-alert cycle
            state_repo: Persisted user id and last run time
            minimum_interval_minutes: Wake interval; also the throttle for
                wake-ups that arrive more often than that
            respect_alert_frequency: Skip alerts whose frequency has not elapsed
            scheduler: APScheduler instance, a BackgroundScheduler if omitted
            clock: Source of the current time
        """
        self.checker = checker
        self.state_repo = state_repo
        self.minimum_interval = timedelta(minutes=minimum_interval_minutes)
        self.respect_alert_frequency = respect_alert_frequency
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.clock = clock
        self.state = (
            SchedulerState.REGISTERED
            if state_repo.get_user_id()
            else SchedulerState.UNREGISTERED
        )

    def register(self, user_id: str) -> None:
        """Persist the signed-in user and schedule the recurring wake-up."""
        self.state_repo.set_user_id(user_id)

        self.scheduler.add_job(
            self.on_wake,
            IntervalTrigger(seconds=int(self.minimum_interval.total_seconds())),
            id=ALERT_CHECK_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        if not self.scheduler.running:
            self.scheduler.start()

        self.state = SchedulerState.REGISTERED
        logger.info(f"Background alert check registered for user {user_id}")

    def unregister(self) -> None:
        """Clear the signed-in user and cancel the wake-up."""
        self.state_repo.clear_user_id()

        if self.scheduler.get_job(ALERT_CHECK_JOB_ID) is not None:
            self.scheduler.remove_job(ALERT_CHECK_JOB_ID)

        self.state = SchedulerState.UNREGISTERED
        logger.info("Background alert check unregistered")

    def shutdown(self) -> None:
        """Stop the scheduler thread without touching the persisted user."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def on_wake(self) -> Optional[CycleReport]:
        """
        Scheduled trigger. Skips the run if the last one started less than
        the minimum interval ago.
        """
        now = self.clock()
        last_run = self.state_repo.get_last_run()
        if last_run is not None and now - last_run < self.minimum_interval:
            logger.debug(f"Skipping wake-up, last run at {last_run.isoformat()}")
            return None
        return self.run_check_cycle()

    def check_now(self) -> Optional[CycleReport]:
        """Foreground trigger: run a cycle immediately."""
        return self.run_check_cycle()

    def check_alert(self, alert_id: str) -> Optional[CheckOutcome]:
        """Explicit user check of one alert, active or not."""
        return self.checker.check_alert(alert_id)

    def run_check_cycle(self) -> Optional[CycleReport]:
        """
        Evaluate the active alerts of the persisted user.

        Returns:
            CycleReport, or None when nobody is signed in
        """
        user_id = self.state_repo.get_user_id()
        if not user_id:
            logger.debug("No signed-in user, nothing to check")
            self.state = SchedulerState.IDLE
            self._settle()
            return None

        self.state = SchedulerState.RUNNING
        try:
            self.state_repo.set_last_run(self.clock())
        except sqlite3.Error as e:
            logger.warning(f"Could not record last run time: {e}")

        try:
            return self.checker.check_user(
                user_id, respect_frequency=self.respect_alert_frequency
            )
        finally:
            self.state = SchedulerState.IDLE
            self._settle()

    def _settle(self) -> None:
        # Idle always falls back to registered while a user is signed in
        if self.state_repo.get_user_id():
            self.state = SchedulerState.REGISTERED
        else:
            self.state = SchedulerState.UNREGISTERED
