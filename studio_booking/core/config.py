import os
from datetime import time

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_time(value: str | None, default: time) -> time:
    if not value:
        return default
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studio_booking.db")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "15"))
STAFF_JWT_EXPIRES_MINUTES = int(os.getenv("STAFF_JWT_EXPIRES_MINUTES", "720"))

OTP_LENGTH = int(os.getenv("OTP_LENGTH", "6"))
OTP_EXPIRY_MINUTES = int(os.getenv("OTP_EXPIRY_MINUTES", "5"))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
OTP_COOLDOWN_SECONDS = max(30, int(os.getenv("OTP_COOLDOWN_SECONDS", "30")))
OTP_DEBUG_ECHO = _get_bool(os.getenv("OTP_DEBUG_ECHO"), default=False)

# 0 keeps a trusted device until it is revoked.
TRUSTED_DEVICE_TTL_DAYS = int(os.getenv("TRUSTED_DEVICE_TTL_DAYS", "0"))

DEFAULT_MIN_BOOKING_HOURS = float(os.getenv("DEFAULT_MIN_BOOKING_HOURS", "1"))
DEFAULT_MAX_BOOKING_HOURS = float(os.getenv("DEFAULT_MAX_BOOKING_HOURS", "8"))
DEFAULT_BOOKING_BUFFER_MINUTES = int(os.getenv("DEFAULT_BOOKING_BUFFER_MINUTES", "0"))
DEFAULT_ADVANCE_BOOKING_DAYS = int(os.getenv("DEFAULT_ADVANCE_BOOKING_DAYS", "30"))
DEFAULT_OPEN_TIME = _get_time(os.getenv("DEFAULT_OPEN_TIME"), time(8, 0))
DEFAULT_CLOSE_TIME = _get_time(os.getenv("DEFAULT_CLOSE_TIME"), time(22, 0))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if APP_ENV.lower() == "production" and OTP_DEBUG_ECHO:
        raise RuntimeError("OTP_DEBUG_ECHO must be disabled in production.")
