"""
Configuration for the Check-in Backend
=======================================
All settings come from environment variables and are read once into an
immutable Settings object. Pass an explicit Settings to create_app() to
override them (tests do this).
"""

import os
from dataclasses import dataclass
from pathlib import Path

# Default database file (same directory as this module)
DATABASE_DIR = Path(__file__).parent
DATABASE_PATH = DATABASE_DIR / "checkin.db"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    try:
        return int(value) if value else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    database_url: str = f"sqlite:///{DATABASE_PATH}"
    sql_echo: bool = False
    # Baseline: check-in on a present/departed person starts a new session
    allow_reentry: bool = True
    # Minimum seconds between check-in and check-out (0 = disabled)
    checkout_cooldown_seconds: int = 0
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from CHECKIN_* environment variables."""
        return cls(
            database_url=os.environ.get("CHECKIN_DATABASE_URL", cls.database_url),
            sql_echo=_env_bool("CHECKIN_SQL_ECHO", cls.sql_echo),
            allow_reentry=_env_bool("CHECKIN_ALLOW_REENTRY", cls.allow_reentry),
            checkout_cooldown_seconds=_env_int(
                "CHECKIN_CHECKOUT_COOLDOWN_SECONDS", cls.checkout_cooldown_seconds
            ),
            host=os.environ.get("CHECKIN_HOST", cls.host),
            port=_env_int("CHECKIN_PORT", cls.port),
            log_level=os.environ.get("CHECKIN_LOG_LEVEL", cls.log_level).upper(),
        )
