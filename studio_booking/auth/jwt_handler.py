from datetime import datetime, timedelta, timezone

import jwt

from studio_booking.core import config

ROLE_CUSTOMER = "customer"
ROLE_STAFF = "staff"


def create_access_token(subject: str, role: str = ROLE_CUSTOMER, expires_minutes: int | None = None) -> str:
    default_minutes = config.STAFF_JWT_EXPIRES_MINUTES if role == ROLE_STAFF else config.JWT_EXPIRES_MINUTES
    expire_minutes = expires_minutes or default_minutes
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "role": role, "exp": now + timedelta(minutes=expire_minutes), "iat": now}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
