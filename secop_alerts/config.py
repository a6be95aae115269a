"""
Configuration loading and validation.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/secop_alerts.db"


@dataclass
class SecopConfig:
    """Open-data portal configuration."""

    base_url: str = "https://www.datos.gov.co/resource/p6dx-8zbt.json"
    app_token: Optional[str] = None
    timeout_seconds: float = 10.0
    default_limit: int = 20
    max_limit: int = 100


@dataclass
class ScheduleConfig:
    """Background wake-up configuration."""

    minimum_interval_minutes: int = 15
    respect_alert_frequency: bool = True


@dataclass
class ExpoNotificationConfig:
    """Expo push settings."""

    push_url: str = "https://exp.host/--/api/v2/push/send"
    channel_id: str = "secop-alerts"


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    expo: ExpoNotificationConfig = field(default_factory=ExpoNotificationConfig)
    advance_baseline_on_failed_dispatch: bool = True


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    secop: SecopConfig = field(default_factory=SecopConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        for var_name in re.findall(pattern, value):
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path")
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    secop = config_dict.get("secop") or {}
    if float(secop.get("timeout_seconds", 10.0)) <= 0:
        raise ConfigValidationError("secop.timeout_seconds must be positive")
    if int(secop.get("max_limit", 100)) < 1:
        raise ConfigValidationError("secop.max_limit must be at least 1")

    schedule = config_dict.get("schedule") or {}
    if int(schedule.get("minimum_interval_minutes", 15)) <= 0:
        raise ConfigValidationError(
            "schedule.minimum_interval_minutes must be positive"
        )

    advanced = config_dict.get("advanced") or {}
    log_level = str(advanced.get("log_level", "INFO")).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigValidationError(f"Unknown log level: {log_level}")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    config_dict = _substitute_env_vars(raw_config)

    _validate_config(config_dict)

    database = DatabaseConfig(**(config_dict.get("database") or {}))

    secop_dict = dict(config_dict.get("secop") or {})
    if not secop_dict.get("app_token"):
        # An unset ${SECOP_APP_TOKEN} substitutes to ""
        secop_dict["app_token"] = None
    secop = SecopConfig(**secop_dict)

    schedule = ScheduleConfig(**(config_dict.get("schedule") or {}))

    notif_dict = dict(config_dict.get("notifications") or {})
    expo_dict = notif_dict.pop("expo", None) or {}
    notifications = NotificationsConfig(
        expo=ExpoNotificationConfig(**expo_dict),
        advance_baseline_on_failed_dispatch=notif_dict.get(
            "advance_baseline_on_failed_dispatch", True
        ),
    )

    advanced_dict = dict(config_dict.get("advanced") or {})
    if "log_level" in advanced_dict:
        advanced_dict["log_level"] = str(advanced_dict["log_level"]).upper()
    advanced = AdvancedConfig(**advanced_dict)

    return AppConfig(
        database=database,
        secop=secop,
        schedule=schedule,
        notifications=notifications,
        advanced=advanced,
    )
