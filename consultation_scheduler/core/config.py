import os
from datetime import time
from decimal import Decimal

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_clock(value: str) -> time:
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def _get_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./consultation_scheduler.db")

# Daily grid in the consultant's operating timezone (wall clock).
OPEN_TIME = _get_clock(os.getenv("OPEN_TIME", "09:30"))
CLOSE_TIME = _get_clock(os.getenv("CLOSE_TIME", "18:30"))
SLOT_DURATION_MINUTES = int(os.getenv("SLOT_DURATION_MINUTES", "30"))
CLOSED_WEEKDAY = int(os.getenv("CLOSED_WEEKDAY", "6"))  # Monday == 0
OPERATING_TIMEZONE = os.getenv("OPERATING_TIMEZONE", "Europe/Istanbul")

PAYMENT_REQUIRED = _get_bool(os.getenv("PAYMENT_REQUIRED"), default=False)
SESSION_PRICE = Decimal(os.getenv("SESSION_PRICE", "500.00"))  # per 60 minutes

MAX_RESCHEDULES = int(os.getenv("MAX_RESCHEDULES", "2"))
RESCHEDULE_MIN_HOURS = int(os.getenv("RESCHEDULE_MIN_HOURS", "24"))

AVAILABILITY_CACHE_TTL_SECONDS = int(os.getenv("AVAILABILITY_CACHE_TTL_SECONDS", "30"))
# Shared cache for multi-worker deployments; unset keeps the cache in-process.
REDIS_URL = os.getenv("REDIS_URL", "").strip()
REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "consultation_scheduler")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if OPEN_TIME >= CLOSE_TIME:
        raise RuntimeError("OPEN_TIME must be earlier than CLOSE_TIME.")
    if SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("SLOT_DURATION_MINUTES must be positive.")
    if not 0 <= CLOSED_WEEKDAY <= 6:
        raise RuntimeError("CLOSED_WEEKDAY must be between 0 (Monday) and 6 (Sunday).")
