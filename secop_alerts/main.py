"""
Main application entry point.
"""

import logging
import time
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from secop_alerts.checker import AlertChecker
from secop_alerts.config import AppConfig
from secop_alerts.data.secop import SecopClient
from secop_alerts.database.connection import Database
from secop_alerts.database.repository import (
    AlertHistoryRepository,
    AlertRepository,
    BackgroundStateRepository,
    UserRepository,
)
from secop_alerts.notifiers.dispatcher import NotificationDispatcher
from secop_alerts.scheduler import BackgroundAlertScheduler

logger = logging.getLogger(__name__)


class SecopAlertsApp:
    """Wires the store, SECOP client, dispatcher and scheduler together."""

    def __init__(
        self,
        db: Database,
        config: Optional[AppConfig] = None,
        client: Optional[SecopClient] = None,
    ):
        """
        Initialize the app.

        Args:
            db: Database instance (already initialized)
            config: Application config, defaults if omitted
            client: SECOP client, built from config if omitted
        """
        self.db = db
        self.config = config or AppConfig()

        # Initialize repositories
        self.user_repo = UserRepository(db)
        self.alert_repo = AlertRepository(db)
        self.history_repo = AlertHistoryRepository(db)
        self.state_repo = BackgroundStateRepository(db)

        # Initialize services
        self.client = client or SecopClient.from_config(self.config.secop)
        self.dispatcher = NotificationDispatcher(
            self.user_repo, expo_config=self.config.notifications.expo
        )
        self.checker = AlertChecker(
            alert_repo=self.alert_repo,
            history_repo=self.history_repo,
            client=self.client,
            dispatcher=self.dispatcher,
            advance_baseline_on_failed_dispatch=(
                self.config.notifications.advance_baseline_on_failed_dispatch
            ),
        )
        self.scheduler = BackgroundAlertScheduler(
            checker=self.checker,
            state_repo=self.state_repo,
            minimum_interval_minutes=self.config.schedule.minimum_interval_minutes,
            respect_alert_frequency=self.config.schedule.respect_alert_frequency,
        )

    def sign_in(self, user_id: str, email: Optional[str] = None) -> None:
        """Remember the user for background checks and start the wake-up."""
        self.user_repo.get_or_create(user_id, email=email)
        self.scheduler.register(user_id)

    def sign_out(self) -> None:
        """Forget the user and cancel background checks."""
        self.scheduler.unregister()

    def run_forever(self, poll_seconds: float = 1.0) -> None:
        """Run the scheduler until interrupted."""
        user_id = self.state_repo.get_user_id()
        if not user_id:
            logger.warning("No signed-in user; run `secop-alerts-cli user signin` first")
            return

        self.scheduler.register(user_id)
        # App start counts as coming to the foreground
        self.scheduler.check_now()
        try:
            while True:
                time.sleep(poll_seconds)
        except (KeyboardInterrupt, SystemExit):
            logger.info("Stopping alert scheduler")
        finally:
            self.scheduler.shutdown()


def main():
    """Service entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="SECOP II Alert Service")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--once", action="store_true", help="Run a single check cycle and exit"
    )

    args = parser.parse_args()

    from secop_alerts.config import load_config

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else config.advanced.log_level
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = Database(config.database.path)
    db.initialize()

    app = SecopAlertsApp(db=db, config=config)

    try:
        if args.once:
            report = app.scheduler.check_now()
            if report is None:
                logger.info("No signed-in user, nothing checked")
        else:
            app.run_forever()
    finally:
        db.close()


if __name__ == "__main__":
    main()
