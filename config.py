"""
config.py
---------
Central configuration module. Loads all environment variables
from the .env file and exposes them as typed constants.
"""

import os
from dotenv import load_dotenv

load_dotenv()


# ── Telegram ──────────────────────────────────────────────
TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

# ── PostgreSQL ────────────────────────────────────────────
DB_HOST: str = os.getenv("DB_HOST", "localhost")
DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
DB_NAME: str = os.getenv("DB_NAME", "recurring_scheduler")
DB_USER: str = os.getenv("DB_USER", "scheduler_user")
DB_PASS: str = os.getenv("DB_PASS", "")

DATABASE_URL: str = (
    f"postgresql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

DB_POOL_MIN: int = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX: int = int(os.getenv("DB_POOL_MAX", "5"))

# ── Logging ───────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Scheduler ticks ───────────────────────────────────────
GENERATION_INTERVAL_SECONDS: int = int(os.getenv("GENERATION_INTERVAL_SECONDS", "900"))
NOTIFICATION_INTERVAL_SECONDS: int = int(os.getenv("NOTIFICATION_INTERVAL_SECONDS", "3600"))

DUE_BATCH_SIZE: int = int(os.getenv("DUE_BATCH_SIZE", "50"))
UPCOMING_BATCH_SIZE: int = int(os.getenv("UPCOMING_BATCH_SIZE", "100"))
UPCOMING_LOOKAHEAD_HOURS: int = int(os.getenv("UPCOMING_LOOKAHEAD_HOURS", "24"))

# ── Generation ────────────────────────────────────────────
MAX_CONSECUTIVE_FAILURES: int = int(os.getenv("MAX_CONSECUTIVE_FAILURES", "3"))
CATCH_UP_MAX_ITERATIONS: int = int(os.getenv("CATCH_UP_MAX_ITERATIONS", "1000"))
GENERATION_TIMEOUT_SECONDS: float = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))
CLAIM_STALE_AFTER_MINUTES: int = int(os.getenv("CLAIM_STALE_AFTER_MINUTES", "30"))

# ── Series defaults ───────────────────────────────────────
DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "USD")
DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "UTC")
DEFAULT_DUE_DATE_OFFSET: int = int(os.getenv("DEFAULT_DUE_DATE_OFFSET", "30"))

# ── Forecast ──────────────────────────────────────────────
FORECAST_DEFAULT_MONTHS: int = int(os.getenv("FORECAST_DEFAULT_MONTHS", "6"))
FORECAST_MAX_MONTHS: int = int(os.getenv("FORECAST_MAX_MONTHS", "24"))
