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
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000"])

# Working window used by the slot resolver, in local wall-clock hours.
WORKDAY_START_HOUR = int(os.getenv("WORKDAY_START_HOUR", "9"))
WORKDAY_END_HOUR = int(os.getenv("WORKDAY_END_HOUR", "18"))
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "30"))
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "60"))

REMINDER_WINDOW_HOURS = int(os.getenv("REMINDER_WINDOW_HOURS", "24"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not 0 <= WORKDAY_START_HOUR < WORKDAY_END_HOUR <= 24:
        raise RuntimeError("WORKDAY_START_HOUR must be before WORKDAY_END_HOUR.")
    if SLOT_STEP_MINUTES <= 0:
        raise RuntimeError("SLOT_STEP_MINUTES must be positive.")
