from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio_booking.auth.dependencies import get_optional_staff, get_token_phone
from studio_booking.core.errors import BookingError
from studio_booking.database import get_db
from studio_booking.routes.common import database_unavailable, ensure_database_ready
from studio_booking.services import booking_guard, device_trust

router = APIRouter(tags=['bookings'])

MAX_SESSION_DETAILS_LENGTH = 600
MAX_CANCELLATION_REASON_LENGTH = 300


def _trimmed(value: str | None, limit: int, label: str) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if len(normalized) > limit:
        raise ValueError(f'{label} must be {limit} characters or fewer.')
    return normalized or None


class BookingPayload(BaseModel):
    phone: str
    studio: str
    session_type: str
    session_option: str | None = None
    session_details: str | None = None
    date: date
    start_time: str
    end_time: str
    name: str | None = None
    email: str | None = None
    song_count: int | None = None
    otp_code: str | None = None
    device_fingerprint: str | None = None

    @field_validator('session_details')
    @classmethod
    def validate_session_details(cls, value: str | None) -> str | None:
        return _trimmed(value, MAX_SESSION_DETAILS_LENGTH, 'Session details')

    @field_validator('song_count')
    @classmethod
    def validate_song_count(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError('Song count must be at least 1.')
        return value

    def to_request(self) -> booking_guard.BookingRequest:
        return booking_guard.BookingRequest(
            phone=self.phone,
            studio=self.studio,
            session_type=self.session_type,
            date=self.date,
            start_time=self.start_time,
            end_time=self.end_time,
            session_option=self.session_option,
            session_details=self.session_details,
            name=self.name,
            email=self.email,
            song_count=self.song_count,
        )


class CancelBookingRequest(BaseModel):
    phone: str
    reason: str | None = None
    otp_code: str | None = None
    device_fingerprint: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _trimmed(value, MAX_CANCELLATION_REASON_LENGTH, 'Reason')


class BookingResponse(BaseModel):
    id: int
    studio: str
    session_type: str
    session_option: str | None = None
    session_details: str | None = None
    date: date
    start_time: time
    end_time: time
    status: str
    rate_per_hour: int | None = None
    song_count: int | None = None
    total_amount: int | None = None
    phone: str
    name: str | None = None
    email: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True


def _credentials(otp_code, device_fingerprint, token_phone, staff_id) -> booking_guard.Credentials:
    return booking_guard.Credentials(
        otp_code=otp_code,
        device_fingerprint=(device_fingerprint or '').strip() or None,
        token_phone=token_phone,
        staff_id=staff_id,
    )


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingPayload,
    token_phone: str | None = Depends(get_token_phone),
    staff_id: str | None = Depends(get_optional_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_guard.create_booking(
            db,
            data.to_request(),
            _credentials(data.otp_code, data.device_fingerprint, token_phone, staff_id),
        )
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{booking_id}', response_model=BookingResponse)
def modify_booking(
    booking_id: int,
    data: BookingPayload,
    token_phone: str | None = Depends(get_token_phone),
    staff_id: str | None = Depends(get_optional_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_guard.modify_booking(
            db,
            booking_id,
            data.to_request(),
            _credentials(data.otp_code, data.device_fingerprint, token_phone, staff_id),
        )
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    data: CancelBookingRequest,
    token_phone: str | None = Depends(get_token_phone),
    staff_id: str | None = Depends(get_optional_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_guard.cancel_booking(
            db,
            booking_id,
            data.phone,
            _credentials(data.otp_code, data.device_fingerprint, token_phone, staff_id),
            reason=data.reason,
        )
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/upcoming', response_model=list[BookingResponse])
def list_upcoming_bookings(
    phone: str = Query(...),
    device_fingerprint: str | None = Query(default=None),
    token_phone: str | None = Depends(get_token_phone),
    staff_id: str | None = Depends(get_optional_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        device_trust.authorize_mutation(
            db,
            phone,
            device_fingerprint=device_fingerprint,
            token_phone=token_phone,
            is_staff=bool(staff_id),
        )
        return booking_guard.list_upcoming_bookings(db, phone)
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
