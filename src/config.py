"""
SevaFinance Functions: Centralized configuration.

Loads all settings from .env and validates required keys.
Every job, adapter and gateway reads its knobs from here.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Stripe
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str

    # Storage backend: "firestore" | "sqlite"
    STORE_BACKEND: str = "firestore"
    DATABASE_PATH: str = "data/finance.db"

    # Firebase (empty path → application default credentials)
    FIREBASE_CREDENTIALS_PATH: str = ""

    # Scheduling
    TIMEZONE: str = "America/New_York"
    BILL_REMINDER_HOUR: int = 9
    SCAN_CONCURRENCY: int = 10

    # Billing
    TRIAL_DAYS: int = 14

    # Deep links in push payloads
    APP_BASE_URL: str = "https://seva-finance-app.web.app"

    # HTTP gateway
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    @field_validator("BILL_REMINDER_HOUR", "SCAN_CONCURRENCY", "TRIAL_DAYS", "PORT", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("APP_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    stripe_key = os.getenv("STRIPE_SECRET_KEY", "")
    webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    if not stripe_key or stripe_key.startswith("your-"):
        print("ERROR: STRIPE_SECRET_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not webhook_secret or webhook_secret.startswith("your-"):
        print("ERROR: STRIPE_WEBHOOK_SECRET is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        STRIPE_SECRET_KEY=stripe_key,
        STRIPE_WEBHOOK_SECRET=webhook_secret,
        STORE_BACKEND=os.getenv("STORE_BACKEND", "firestore"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/finance.db"),
        FIREBASE_CREDENTIALS_PATH=os.getenv("FIREBASE_CREDENTIALS_PATH", ""),
        TIMEZONE=os.getenv("TIMEZONE", "America/New_York"),
        BILL_REMINDER_HOUR=os.getenv("BILL_REMINDER_HOUR", "9"),
        SCAN_CONCURRENCY=os.getenv("SCAN_CONCURRENCY", "10"),
        TRIAL_DAYS=os.getenv("TRIAL_DAYS", "14"),
        APP_BASE_URL=os.getenv("APP_BASE_URL", "https://seva-finance-app.web.app"),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=os.getenv("PORT", "8080"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton: imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
