import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medclock.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if APP_ENV.lower() == "development" else "INFO")

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:4200"])

SLOT_LENGTH_MINUTES = int(os.getenv("SLOT_LENGTH_MINUTES", "30"))
DEFAULT_APPOINTMENT_DURATION_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_DURATION_MINUTES", "30"))
MAX_APPOINTMENT_NOTES_LENGTH = int(os.getenv("MAX_APPOINTMENT_NOTES_LENGTH", "600"))
CALENDAR_MAX_DAYS = int(os.getenv("CALENDAR_MAX_DAYS", "14"))

def validate_runtime_config() -> None:
    if SLOT_LENGTH_MINUTES <= 0:
        raise RuntimeError("SLOT_LENGTH_MINUTES must be a positive number of minutes.")
    if DEFAULT_APPOINTMENT_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_APPOINTMENT_DURATION_MINUTES must be a positive number of minutes.")
    if CALENDAR_MAX_DAYS <= 0:
        raise RuntimeError("CALENDAR_MAX_DAYS must be at least 1.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at Postgres in production.")
