from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio_booking.auth.dependencies import get_token_phone
from studio_booking.core.errors import BookingError
from studio_booking.database import get_db
from studio_booking.routes.common import database_unavailable, ensure_database_ready
from studio_booking.services import device_trust
from studio_booking.services.customers import find_customer

router = APIRouter(tags=['auth'])

MAX_FINGERPRINT_LENGTH = 255


def _clean_fingerprint(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if len(normalized) > MAX_FINGERPRINT_LENGTH:
        raise ValueError(f'Device fingerprint must be {MAX_FINGERPRINT_LENGTH} characters or fewer.')
    return normalized or None


class PhoneRequest(BaseModel):
    phone: str


class DeviceRequest(BaseModel):
    phone: str
    device_fingerprint: str

    @field_validator('device_fingerprint')
    @classmethod
    def validate_fingerprint(cls, value: str) -> str:
        normalized = _clean_fingerprint(value)
        if not normalized:
            raise ValueError('Device fingerprint is required.')
        return normalized


class VerifyOtpRequest(BaseModel):
    phone: str
    code: str
    device_fingerprint: str | None = None
    device_name: str | None = None

    @field_validator('device_fingerprint')
    @classmethod
    def validate_fingerprint(cls, value: str | None) -> str | None:
        return _clean_fingerprint(value)


class SendOtpResponse(BaseModel):
    message: str
    expires_at: datetime
    cooldown_seconds: int
    debug_code: str | None = None


class VerifyOtpResponse(BaseModel):
    verified: bool
    device_trusted: bool
    access_token: str
    token_type: str = 'bearer'


class VerifyDeviceResponse(BaseModel):
    trusted: bool


class RevokeDeviceResponse(BaseModel):
    revoked: int


class AutoLoginResponse(BaseModel):
    authenticated: bool
    phone: str | None = None
    name: str = ''
    email: str = ''
    device_name: str | None = None
    trusted_since: datetime | None = None
    label: str | None = None
    access_token: str | None = None
    token_type: str = 'bearer'


class CheckUserResponse(BaseModel):
    exists: bool
    name: str | None = None
    email: str | None = None


@router.post('/send-otp', response_model=SendOtpResponse)
def send_otp(data: PhoneRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        issue = device_trust.send_otp(db, data.phone)
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return SendOtpResponse(
        message='Verification code sent.',
        expires_at=issue.expires_at,
        cooldown_seconds=issue.cooldown_seconds,
        debug_code=issue.debug_code,
    )


@router.post('/verify-otp', response_model=VerifyOtpResponse)
def verify_otp(data: VerifyOtpRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = device_trust.verify_otp(db, data.phone, data.code, data.device_fingerprint, data.device_name)
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return VerifyOtpResponse(
        verified=result.verified,
        device_trusted=result.device_trusted,
        access_token=result.access_token,
    )


@router.post('/verify-device', response_model=VerifyDeviceResponse)
def verify_device(data: DeviceRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return VerifyDeviceResponse(trusted=device_trust.verify_device(db, data.phone, data.device_fingerprint))
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/verify-device', response_model=RevokeDeviceResponse)
def revoke_device(
    phone: str = Query(...),
    device_fingerprint: str | None = Query(default=None),
    all_devices: bool = Query(default=False),
    token_phone: str | None = Depends(get_token_phone),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        normalized_phone = device_trust.normalize_phone(phone)
        if all_devices:
            if token_phone != normalized_phone:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail='Verify this phone number before removing all trusted devices.',
                )
            return RevokeDeviceResponse(revoked=device_trust.revoke_all_devices(db, normalized_phone))

        fingerprint = (device_fingerprint or '').strip()
        if not fingerprint:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Device fingerprint is required.')
        return RevokeDeviceResponse(revoked=int(device_trust.revoke_device(db, normalized_phone, fingerprint)))
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/auto-login', response_model=AutoLoginResponse)
def auto_login(data: DeviceRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = device_trust.auto_login(db, data.phone, data.device_fingerprint)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return AutoLoginResponse(
        authenticated=result.authenticated,
        phone=result.phone,
        name=result.name,
        email=result.email,
        device_name=result.device_name,
        trusted_since=result.trusted_since,
        label=result.label,
        access_token=result.access_token,
    )


@router.post('/check-user', response_model=CheckUserResponse)
def check_user(
    data: PhoneRequest,
    device_fingerprint: str | None = Query(default=None),
    token_phone: str | None = Depends(get_token_phone),
    db: Session = Depends(get_db),
):
    """Report whether the phone has booked before; contact details only go to its verified owner."""
    ensure_database_ready()

    try:
        phone = device_trust.normalize_phone(data.phone)
        customer = find_customer(db, phone)
        if customer is None:
            return CheckUserResponse(exists=False)

        is_owner = token_phone == phone or device_trust.verify_device(db, phone, device_fingerprint)
        if not is_owner:
            return CheckUserResponse(exists=True)
        return CheckUserResponse(exists=True, name=customer.name, email=customer.email)
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
