from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from studio_booking.auth import jwt_handler

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def _decode(token: str) -> dict:
    try:
        return jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc


def get_token_phone(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
) -> str | None:
    """Phone number proven by an earlier OTP verification, if a customer token was sent."""
    if credentials is None:
        return None
    payload = _decode(credentials.credentials)
    if payload.get("role") != jwt_handler.ROLE_CUSTOMER:
        return None
    return payload.get("sub")


def get_optional_staff(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
) -> str | None:
    if credentials is None:
        return None
    payload = _decode(credentials.credentials)
    if payload.get("role") != jwt_handler.ROLE_STAFF:
        return None
    return payload.get("sub")


def require_staff(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    payload = _decode(credentials.credentials)
    staff_id = payload.get("sub")
    if not staff_id:
        raise HTTPException(status_code=401, detail="Invalid token subject")
    if payload.get("role") != jwt_handler.ROLE_STAFF:
        raise HTTPException(status_code=403, detail="Staff access required")
    return staff_id
