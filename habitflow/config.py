"""
HabitFlow Reminders — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from habitflow/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Snooze tokens (signed with HS256)
    JWT_SECRET: str
    SNOOZE_TOKEN_TTL_MINUTES: int = 60
    SNOOZE_MINUTES: int = 30

    # SQLite
    DATABASE_PATH: str = "data/habitflow.db"

    # Scheduler
    TIMEZONE: str = "UTC"
    TICK_INTERVAL_SECONDS: int = 60
    STREAK_RESCUE_LEAD_MINUTES: int = 120   # 0 disables the alert

    # Web Push (VAPID)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_SUBJECT: str = "mailto:admin@example.com"

    # Telegram (optional delivery channel + admin commands)
    TELEGRAM_BOT_TOKEN: str = ""
    ALLOWED_USER_IDS: list[int] = []

    # Base URL prepended to deep links for channels that need absolute URLs
    APP_BASE_URL: str = ""

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "SNOOZE_TOKEN_TTL_MINUTES",
        "SNOOZE_MINUTES",
        "TICK_INTERVAL_SECONDS",
        "STREAK_RESCUE_LEAD_MINUTES",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    jwt_secret = os.getenv("JWT_SECRET", "")

    if not jwt_secret or jwt_secret.startswith("your-"):
        print("ERROR: JWT_SECRET is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        JWT_SECRET=jwt_secret,
        SNOOZE_TOKEN_TTL_MINUTES=os.getenv("SNOOZE_TOKEN_TTL_MINUTES", "60"),
        SNOOZE_MINUTES=os.getenv("SNOOZE_MINUTES", "30"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/habitflow.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        TICK_INTERVAL_SECONDS=os.getenv("TICK_INTERVAL_SECONDS", "60"),
        STREAK_RESCUE_LEAD_MINUTES=os.getenv("STREAK_RESCUE_LEAD_MINUTES", "120"),
        VAPID_PUBLIC_KEY=os.getenv("VAPID_PUBLIC_KEY", ""),
        VAPID_PRIVATE_KEY=os.getenv("VAPID_PRIVATE_KEY", ""),
        VAPID_SUBJECT=os.getenv("VAPID_SUBJECT", "mailto:admin@example.com"),
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        APP_BASE_URL=os.getenv("APP_BASE_URL", ""),
    )


# Singleton — imported by all other modules as:
#   from habitflow.config import settings
settings = _load_settings()
