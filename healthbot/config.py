"""
Health Reminder Bot — Centralized configuration.

Loads all settings from .env and validates required keys.
Engine components take the values they need as constructor arguments;
only the bootstrap reads this singleton.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from healthbot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str
    ALLOWED_USER_ID: int

    # SQLite
    DATABASE_PATH: str = "data/health.db"

    TIMEZONE: str = "Asia/Jerusalem"

    # Loop intervals
    SCHEDULE_CHECK_SECONDS: int = 60
    REMINDER_RETRY_SECONDS: int = 3600
    STALE_INTAKE_MINUTES: int = 60
    LOW_STOCK_CHECK_SECONDS: int = 3600
    LOW_STOCK_HOUR: int = 11
    LOW_STOCK_DAYS_THRESHOLD: int = 7
    WORKOUT_CHECK_SECONDS: int = 60
    MEASUREMENT_CHECK_SECONDS: int = 900

    # Deadlines for a single channel send / store call
    SEND_TIMEOUT_SECONDS: int = 10
    STORE_TIMEOUT_SECONDS: int = 5

    # Web Push (optional; the push channel is off without a private key)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_SUBJECT: str = ""
    PUSH_TTL_SECONDS: int = 43200

    @field_validator("ALLOWED_USER_ID", mode="before")
    @classmethod
    def parse_user_id(cls, v: str | int) -> int:
        return int(str(v).strip())

    @field_validator(
        "SCHEDULE_CHECK_SECONDS",
        "REMINDER_RETRY_SECONDS",
        "STALE_INTAKE_MINUTES",
        "LOW_STOCK_CHECK_SECONDS",
        "LOW_STOCK_DAYS_THRESHOLD",
        "WORKOUT_CHECK_SECONDS",
        "MEASUREMENT_CHECK_SECONDS",
        "SEND_TIMEOUT_SECONDS",
        "STORE_TIMEOUT_SECONDS",
        "PUSH_TTL_SECONDS",
        mode="before",
    )
    @classmethod
    def parse_positive(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("LOW_STOCK_HOUR", mode="before")
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        hour = int(v)
        if not 0 <= hour <= 23:
            raise ValueError("must be an hour between 0 and 23")
        return hour


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    user_id = os.getenv("ALLOWED_USER_ID", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not user_id.strip().lstrip("-").isdigit():
        print("ERROR: ALLOWED_USER_ID is missing or not a number in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_ID=user_id,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/health.db"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Jerusalem"),
        SCHEDULE_CHECK_SECONDS=os.getenv("SCHEDULE_CHECK_SECONDS", "60"),
        REMINDER_RETRY_SECONDS=os.getenv("REMINDER_RETRY_SECONDS", "3600"),
        STALE_INTAKE_MINUTES=os.getenv("STALE_INTAKE_MINUTES", "60"),
        LOW_STOCK_CHECK_SECONDS=os.getenv("LOW_STOCK_CHECK_SECONDS", "3600"),
        LOW_STOCK_HOUR=os.getenv("LOW_STOCK_HOUR", "11"),
        LOW_STOCK_DAYS_THRESHOLD=os.getenv("LOW_STOCK_DAYS_THRESHOLD", "7"),
        WORKOUT_CHECK_SECONDS=os.getenv("WORKOUT_CHECK_SECONDS", "60"),
        MEASUREMENT_CHECK_SECONDS=os.getenv("MEASUREMENT_CHECK_SECONDS", "900"),
        SEND_TIMEOUT_SECONDS=os.getenv("SEND_TIMEOUT_SECONDS", "10"),
        STORE_TIMEOUT_SECONDS=os.getenv("STORE_TIMEOUT_SECONDS", "5"),
        VAPID_PUBLIC_KEY=os.getenv("VAPID_PUBLIC_KEY", ""),
        VAPID_PRIVATE_KEY=os.getenv("VAPID_PRIVATE_KEY", ""),
        VAPID_SUBJECT=os.getenv("VAPID_SUBJECT", ""),
        PUSH_TTL_SECONDS=os.getenv("PUSH_TTL_SECONDS", "43200"),
    )


# Singleton, imported by the bootstrap as:
#   from healthbot.config import settings
settings = _load_settings()
