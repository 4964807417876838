"""Load environment configuration for the bot."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
TIMEZONE: str = os.getenv("TIMEZONE", "UTC")
DATABASE_URL: str = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'tasks.db'}")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

PUBLIC_URL: str = os.getenv("REPLIT_DEV_DOMAIN", "")
if PUBLIC_URL and not PUBLIC_URL.startswith("https://"):
    PUBLIC_URL = f"https://{PUBLIC_URL}"

WEBHOOK_PORT: int = int(os.getenv("WEBHOOK_PORT", "5000"))
WEBHOOK_SECRET: str = os.getenv("WEBHOOK_SECRET", "")
KEY_ALLOCATION_RETRIES: int = int(os.getenv("KEY_ALLOCATION_RETRIES", "5"))
DAILY_SUMMARY_HOUR: int = int(os.getenv("DAILY_SUMMARY_HOUR", "7"))


def require_bot_token() -> str:
    if not TELEGRAM_BOT_TOKEN:
        raise ValueError("TELEGRAM_BOT_TOKEN is required. Set it in the .env file.")
    return TELEGRAM_BOT_TOKEN
