"""
CLI commands for SECOP alerts.
"""

import argparse
import logging
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from secop_alerts.config import AppConfig, load_config
from secop_alerts.data.secop import SecopClient, UpstreamUnavailable
from secop_alerts.database.connection import Database
from secop_alerts.database.models import (
    ALLOWED_FREQUENCY_HOURS,
    DEFAULT_FREQUENCY_HOURS,
    AlertDefinition,
    AlertFilters,
    User,
)
from secop_alerts.database.repository import (
    AlertHistoryRepository,
    AlertRepository,
    BackgroundStateRepository,
    UserRepository,
)


def sign_in(db: Database, user_id: str, email: Optional[str] = None) -> User:
    """Persist the signed-in user for background checks."""
    user = UserRepository(db).get_or_create(user_id, email=email)
    BackgroundStateRepository(db).set_user_id(user_id)
    return user


def sign_out(db: Database) -> None:
    """Clear the signed-in user so background checks become no-ops."""
    BackgroundStateRepository(db).clear_user_id()


def set_channels(
    db: Database,
    user_id: str,
    push_token: Optional[str] = None,
    discord_webhook: Optional[str] = None,
) -> User:
    """Register notification channels for a user."""
    repo = UserRepository(db)
    user = repo.get_or_create(user_id)
    if push_token is not None:
        user.push_token = push_token or None
    if discord_webhook is not None:
        user.discord_webhook_url = discord_webhook or None
    repo.update(user)
    return user


def add_alert(
    db: Database,
    user_id: str,
    name: str,
    filters: AlertFilters,
    frequency_hours: int = DEFAULT_FREQUENCY_HOURS,
) -> AlertDefinition:
    """Create a new alert for a user."""
    UserRepository(db).get_or_create(user_id)
    alert = AlertDefinition(
        user_id=user_id,
        name=name,
        filters=filters,
        frequency_hours=frequency_hours,
    )
    return AlertRepository(db).create(alert)


def list_alerts(db: Database, user_id: str) -> list[AlertDefinition]:
    """List a user's alerts, newest first."""
    return AlertRepository(db).list_for_user(user_id)


def toggle_alert(db: Database, alert_id: str, is_active: bool) -> bool:
    """Activate or deactivate an alert. Returns False if it doesn't exist."""
    repo = AlertRepository(db)
    if repo.get_by_id(alert_id) is None:
        return False
    repo.set_active(alert_id, is_active)
    return True


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="SECOP alerts CLI")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # User commands
    user_parser = subparsers.add_parser("user", help="User session")
    user_subparsers = user_parser.add_subparsers(dest="action")

    signin_parser = user_subparsers.add_parser("signin", help="Sign in user")
    signin_parser.add_argument("--user", required=True, help="User ID")
    signin_parser.add_argument("--email", help="User email")

    user_subparsers.add_parser("signout", help="Sign out current user")

    channels_parser = user_subparsers.add_parser(
        "channels", help="Set notification channels"
    )
    channels_parser.add_argument("--user", required=True, help="User ID")
    channels_parser.add_argument("--push-token", help="Expo push token")
    channels_parser.add_argument("--discord", help="Discord webhook URL")

    # Alert commands
    alerts_parser = subparsers.add_parser("alerts", help="Alert management")
    alerts_subparsers = alerts_parser.add_subparsers(dest="action")

    add_parser = alerts_subparsers.add_parser("add", help="Add alert")
    add_parser.add_argument("--user", required=True, help="User ID")
    add_parser.add_argument("--name", required=True, help="Display name")
    add_parser.add_argument("--keyword")
    add_parser.add_argument("--departamento")
    add_parser.add_argument("--municipio")
    add_parser.add_argument("--modalidad")
    add_parser.add_argument("--tipo-contrato")
    add_parser.add_argument("--fase")
    add_parser.add_argument(
        "--frequency",
        type=int,
        default=DEFAULT_FREQUENCY_HOURS,
        choices=ALLOWED_FREQUENCY_HOURS,
        help="Hours between automatic checks",
    )

    list_parser = alerts_subparsers.add_parser("list", help="List alerts")
    list_parser.add_argument("--user", required=True, help="User ID")

    for action in ("enable", "disable", "delete"):
        action_parser = alerts_subparsers.add_parser(action, help=f"{action} alert")
        action_parser.add_argument("alert_id")

    history_parser = alerts_subparsers.add_parser("history", help="Alert history")
    history_parser.add_argument("alert_id")
    history_parser.add_argument("--limit", type=int, default=10)

    # Process lookups
    process_parser = subparsers.add_parser("process", help="Query SECOP directly")
    process_subparsers = process_parser.add_subparsers(dest="action")

    show_parser = process_subparsers.add_parser("show", help="Show one process")
    show_parser.add_argument("process_id")

    recent_parser = process_subparsers.add_parser(
        "recent", help="Most recently published processes"
    )
    recent_parser.add_argument("--limit", type=int, default=10)

    # Check commands
    check_parser = subparsers.add_parser("check", help="Run alert check now")
    check_parser.add_argument("--alert", help="Check a single alert")

    args = parser.parse_args()

    config = load_config(args.config) if args.config else AppConfig()
    logging.basicConfig(
        level=config.advanced.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = Database(args.db or config.database.path)
    db.initialize()

    if args.command == "user":
        if args.action == "signin":
            user = sign_in(db, args.user, email=args.email)
            print(f"Signed in as {user.id}")
        elif args.action == "signout":
            sign_out(db)
            print("Signed out")
        elif args.action == "channels":
            user = set_channels(
                db, args.user, push_token=args.push_token, discord_webhook=args.discord
            )
            print(
                f"Push token: {user.push_token or '-'}, "
                f"Discord: {user.discord_webhook_url or '-'}"
            )

    elif args.command == "alerts":
        if args.action == "add":
            filters = AlertFilters(
                keyword=args.keyword,
                departamento=args.departamento,
                municipio=args.municipio,
                modalidad=args.modalidad,
                tipo_contrato=args.tipo_contrato,
                fase=args.fase,
            )
            alert = add_alert(
                db, args.user, args.name, filters, frequency_hours=args.frequency
            )
            print(f"Created alert with ID: {alert.id}")
        elif args.action == "list":
            for alert in list_alerts(db, args.user):
                status = "on" if alert.is_active else "off"
                last = alert.last_check.isoformat() if alert.last_check else "never"
                print(
                    f"{alert.id} [{status}] {alert.name}: {alert.filters.describe()} "
                    f"every {alert.frequency_hours}h, last check {last}, "
                    f"{alert.last_results_count} results"
                )
        elif args.action in ("enable", "disable"):
            if toggle_alert(db, args.alert_id, args.action == "enable"):
                print(f"Alert {args.alert_id} {args.action}d")
            else:
                print(f"Alert not found: {args.alert_id}")
        elif args.action == "delete":
            AlertRepository(db).delete(args.alert_id)
            print(f"Deleted alert {args.alert_id}")
        elif args.action == "history":
            entries = AlertHistoryRepository(db).list_for_alert(
                args.alert_id, limit=args.limit
            )
            for entry in entries:
                sent = "sent" if entry.notification_sent else "not sent"
                print(
                    f"{entry.created_at.isoformat()}: "
                    f"{entry.new_processes_count} new ({sent})"
                )

    elif args.command == "process":
        client = SecopClient.from_config(config.secop)
        try:
            if args.action == "show":
                item = client.get_process(args.process_id)
                if item is None:
                    print(f"Process not found: {args.process_id}")
                else:
                    for key, value in sorted(item.record.items()):
                        print(f"{key}: {value}")
            elif args.action == "recent":
                for item in client.recent(args.limit):
                    print(
                        f"{(item.published_at or '')[:10]} {item.id} "
                        f"[{item.phase or '-'}] "
                        f"{item.entity or '-'}: {item.name}"
                    )
        except UpstreamUnavailable as e:
            print(f"SECOP unavailable: {e}")

    elif args.command == "check":
        from secop_alerts.main import SecopAlertsApp

        app = SecopAlertsApp(db=db, config=config)
        if args.alert:
            outcome = app.scheduler.check_alert(args.alert)
            if outcome is None:
                print(f"Alert not found: {args.alert}")
            else:
                print(f"{outcome.alert_id}: {outcome.status}, {len(outcome.new_ids)} new")
        else:
            report = app.scheduler.check_now()
            if report is None:
                print("No signed-in user")
            else:
                print(
                    f"Checked {report.alerts_checked}/{report.total_alerts} alerts, "
                    f"{report.notifications_sent} notifications, {report.errors} errors"
                )

    else:
        parser.print_help()

    db.close()


if __name__ == "__main__":
    main()
