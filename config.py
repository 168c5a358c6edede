# config.py
"""
Runtime settings for the household scheduler.

Everything is read from environment variables with sensible defaults, so the
service runs out of the box against a local SQLite file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_DATABASE_URL = f"sqlite:///{(BASE_DIR / 'household.db').as_posix()}"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    reminder_tick_seconds: int = 60
    reminder_retention_days: int = 7
    delivery_timeout_seconds: int = 5
    max_expansion_iterations: int = 5000
    push_icon: str = "/icon-192.png"
    notification_channel: str = "log"      # 'log' | 'webpush'
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:admin@example.com"
    push_ttl_seconds: int = 3600
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 5000
    start_scheduler: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ.get("HOUSEHOLD_DATABASE_URL", DEFAULT_DATABASE_URL),
            reminder_tick_seconds=_env_int("REMINDER_TICK_SECONDS", 60),
            reminder_retention_days=_env_int("REMINDER_RETENTION_DAYS", 7),
            delivery_timeout_seconds=_env_int("DELIVERY_TIMEOUT_SECONDS", 5),
            max_expansion_iterations=_env_int("MAX_EXPANSION_ITERATIONS", 5000),
            push_icon=os.environ.get("PUSH_ICON", "/icon-192.png"),
            notification_channel=os.environ.get("NOTIFICATION_CHANNEL", "log").strip().lower(),
            vapid_private_key=os.environ.get("VAPID_PRIVATE_KEY", ""),
            vapid_subject=os.environ.get("VAPID_SUBJECT", "mailto:admin@example.com"),
            push_ttl_seconds=_env_int("PUSH_TTL_SECONDS", 3600),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            host=os.environ.get("HOST", "127.0.0.1"),
            port=_env_int("PORT", 5000),
            start_scheduler=_env_bool("START_SCHEDULER", True),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, loaded lazily from the environment."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level),
        format=LOG_FORMAT,
    )
