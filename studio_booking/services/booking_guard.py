"""The only writer of bookings and staff availability windows.

Every create/modify/cancel re-validates the request against the current
database state while holding a lock scoped to (studio, date); an earlier
availability read is never trusted. PostgreSQL gets a transaction-scoped
advisory lock, every backend additionally gets a process-local lock.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from threading import Lock
from typing import Iterator

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio_booking.core.errors import ConflictError, NotFoundError, ValidationError
from studio_booking.models.availability import AvailabilitySlot
from studio_booking.models.booking import (
    ACTIVE_STATUSES,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STUDIOS,
    Booking,
)
from studio_booking.scheduling import studios
from studio_booking.scheduling.availability import overlaps_any, within_any
from studio_booking.scheduling.slabs import CHOICE_STEP_MINUTES
from studio_booking.scheduling.slots import TimeSlot, combine, hours_between, parse_time, shift, time_to_minutes
from studio_booking.services import device_trust
from studio_booking.services.availability_service import active_bookings_query, is_within_booking_window, load_day_state
from studio_booking.services.booking_settings import BookingSettings, load_booking_settings
from studio_booking.services.customers import remember_customer

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'This time slot is no longer available. Please choose another time.'

_locks_guard = Lock()
_slot_locks: dict[tuple[str, date], Lock] = {}


@dataclass(frozen=True)
class BookingRequest:
    phone: str
    studio: str
    session_type: str
    date: date
    start_time: time | str
    end_time: time | str
    session_option: str | None = None
    session_details: str | None = None
    name: str | None = None
    email: str | None = None
    song_count: int | None = None


@dataclass(frozen=True)
class Credentials:
    """Proof that the caller controls the booking's phone number."""

    otp_code: str | None = None
    device_fingerprint: str | None = None
    token_phone: str | None = None
    staff_id: str | None = None

    @property
    def is_staff(self) -> bool:
        return bool(self.staff_id)


@dataclass(frozen=True)
class ValidatedRequest:
    phone: str
    studio: str
    session_type: str
    session_option: str | None
    session_details: str
    date: date
    start_time: time
    end_time: time
    name: str | None
    email: str | None
    song_count: int | None
    rate: studios.Rate
    total_amount: int


def _process_lock(studio: str, slot_date: date) -> Lock:
    with _locks_guard:
        return _slot_locks.setdefault((studio, slot_date), Lock())


@contextmanager
def slot_lock(db: Session, studio: str, slot_date: date) -> Iterator[None]:
    """Serialize commits for one studio/date; the caller commits inside the block."""
    with _process_lock(studio, slot_date):
        if db.get_bind().dialect.name == 'postgresql':
            db.execute(select(func.pg_advisory_xact_lock(func.hashtext(f'booking:{studio}:{slot_date.isoformat()}'))))
        yield


def validate_request(
    request: BookingRequest,
    settings: BookingSettings,
    now: datetime,
    is_staff: bool = False,
) -> ValidatedRequest:
    phone = device_trust.normalize_phone(request.phone)

    studio = (request.studio or '').strip().upper()
    if studio not in STUDIOS:
        raise ValidationError('Unknown studio.', details={'studio': request.studio})

    session_type = (request.session_type or '').strip()
    if not studios.is_valid_selection(session_type, request.session_option):
        raise ValidationError(
            'Unknown session type or session option.',
            details={'session_type': request.session_type, 'session_option': request.session_option},
        )
    session_option = studios.normalize_option(session_type, request.session_option)

    try:
        start_time = parse_time(request.start_time)
        end_time = parse_time(request.end_time)
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValidationError('Times must use the HH:MM format.') from exc

    if end_time <= start_time:
        raise ValidationError('End time must be after start time.')
    if time_to_minutes(start_time) % CHOICE_STEP_MINUTES or time_to_minutes(end_time) % CHOICE_STEP_MINUTES:
        raise ValidationError(f'Bookings must start and end on {CHOICE_STEP_MINUTES}-minute boundaries.')

    duration = hours_between(start_time, end_time)
    if duration < settings.min_booking_duration:
        raise ValidationError(f'Minimum booking duration is {settings.min_booking_duration:g} hour(s).')
    if duration > settings.max_booking_duration:
        raise ValidationError(f'Maximum booking duration is {settings.max_booking_duration:g} hours.')

    if not is_within_booking_window(request.date, now.date(), settings):
        raise ValidationError(
            f'Bookings can be made from today up to {settings.advance_booking_days} days in advance.'
        )
    if combine(request.date, start_time) <= now:
        raise ValidationError('Bookings must start in the future.')

    suggestion = studios.suggest_studio(session_type, session_option)
    if not is_staff and not suggestion.allows(studio):
        raise ValidationError(
            f'Studio {studio} cannot host this session.',
            details={'allowed_studios': list(suggestion.allowed_studios)},
        )

    rate = studios.studio_rate(studio, session_type, session_option)
    song_count = request.song_count if rate.unit == studios.RATE_PER_SONG else None

    return ValidatedRequest(
        phone=phone,
        studio=studio,
        session_type=session_type,
        session_option=session_option,
        session_details=(request.session_details or '').strip() or studios.describe_selection(session_type, session_option),
        date=request.date,
        start_time=start_time,
        end_time=end_time,
        name=(request.name or '').strip() or None,
        email=(request.email or '').strip().lower() or None,
        song_count=song_count,
        rate=rate,
        total_amount=studios.total_amount(rate, duration, song_count),
    )


def _check_slot_free(
    db: Session,
    validated: ValidatedRequest,
    settings: BookingSettings,
    exclude_booking_id: int | None = None,
) -> None:
    """Re-read the studio/date under the lock and reject anything overlapping."""
    buffer_minutes = settings.booking_buffer
    conflict = active_bookings_query(db, validated.studio, validated.date, exclude_booking_id).filter(
        Booking.start_time < shift(validated.end_time, buffer_minutes),
        Booking.end_time > shift(validated.start_time, -buffer_minutes),
    ).first()
    if conflict is not None:
        raise ConflictError(SLOT_TAKEN_MESSAGE, code='slot_taken')

    state = load_day_state(db, validated.studio, validated.date, settings, exclude_booking_id)
    requested = TimeSlot(validated.start_time, validated.end_time)
    if overlaps_any(requested, state.blocked):
        raise ConflictError(SLOT_TAKEN_MESSAGE, code='slot_blocked')
    if not within_any(requested, state.open_windows):
        raise ValidationError('The requested time is outside studio opening hours.')


def _apply(booking: Booking, validated: ValidatedRequest) -> None:
    booking.phone = validated.phone
    booking.studio = validated.studio
    booking.session_type = validated.session_type
    booking.session_option = validated.session_option
    booking.session_details = validated.session_details
    booking.date = validated.date
    booking.start_time = validated.start_time
    booking.end_time = validated.end_time
    booking.rate_per_hour = validated.rate.amount
    booking.song_count = validated.song_count
    booking.total_amount = validated.total_amount
    if validated.name:
        booking.name = validated.name
    if validated.email:
        booking.email = validated.email


def _authorize(db: Session, phone: str, credentials: Credentials, now: datetime) -> str:
    return device_trust.authorize_mutation(
        db,
        phone,
        otp_code=credentials.otp_code,
        device_fingerprint=credentials.device_fingerprint,
        token_phone=credentials.token_phone,
        is_staff=credentials.is_staff,
        now=now,
    )


def create_booking(
    db: Session,
    request: BookingRequest,
    credentials: Credentials,
    now: datetime | None = None,
) -> Booking:
    now = now or datetime.now()
    settings = load_booking_settings(db)
    validated = validate_request(request, settings, now, is_staff=credentials.is_staff)
    auth_method = _authorize(db, validated.phone, credentials, now)

    try:
        with slot_lock(db, validated.studio, validated.date):
            _check_slot_free(db, validated, settings)

            booking = Booking(status=STATUS_CONFIRMED, created_by_staff=credentials.staff_id)
            _apply(booking, validated)
            db.add(booking)
            remember_customer(db, validated.phone, validated.name, validated.email)
            db.commit()
    except ConflictError:
        db.rollback()
        logger.warning(
            'Booking conflict for studio %s on %s %s-%s',
            validated.studio, validated.date, validated.start_time, validated.end_time,
        )
        raise
    except (ValidationError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(booking)
    logger.info('Booking %s created for studio %s on %s (auth=%s)', booking.id, booking.studio, booking.date, auth_method)
    return booking


def _owned_booking(db: Session, booking_id: int, phone: str, credentials: Credentials) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if booking is None or (not credentials.is_staff and booking.phone != phone):
        raise NotFoundError('Booking not found.', code='booking_not_found')
    return booking


def modify_booking(
    db: Session,
    booking_id: int,
    request: BookingRequest,
    credentials: Credentials,
    now: datetime | None = None,
) -> Booking:
    """Replace an active booking's choices in place, keeping its id."""
    now = now or datetime.now()
    settings = load_booking_settings(db)
    # Malformed requests must not consume a one-time code.
    validated = validate_request(request, settings, now, is_staff=credentials.is_staff)
    _authorize(db, validated.phone, credentials, now)

    booking = _owned_booking(db, booking_id, validated.phone, credentials)
    if booking.status not in ACTIVE_STATUSES:
        raise ValidationError(f'Cannot modify a {booking.status} booking.')
    if combine(booking.date, booking.start_time) <= now:
        raise ValidationError('Cannot modify a booking that has already started.')

    if not credentials.is_staff and validated.phone != booking.phone:
        raise ValidationError('The phone number of a booking cannot be changed.')

    try:
        with slot_lock(db, validated.studio, validated.date):
            _check_slot_free(db, validated, settings, exclude_booking_id=booking.id)
            _apply(booking, validated)
            db.commit()
    except ConflictError:
        db.rollback()
        logger.warning('Modification of booking %s conflicts with an existing booking', booking_id)
        raise
    except (ValidationError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(booking)
    logger.info('Booking %s updated', booking.id)
    return booking


def cancel_booking(
    db: Session,
    booking_id: int,
    phone: str,
    credentials: Credentials,
    reason: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """Cancel an active, not-yet-started booking. Cancelling twice is a no-op."""
    now = now or datetime.now()
    phone = device_trust.normalize_phone(phone)
    auth_method = _authorize(db, phone, credentials, now)

    booking = _owned_booking(db, booking_id, phone, credentials)
    try:
        with slot_lock(db, booking.studio, booking.date):
            db.refresh(booking)
            if booking.status == STATUS_CANCELLED:
                db.rollback()
                logger.info('Booking %s already cancelled', booking_id)
                return booking
            if booking.status not in ACTIVE_STATUSES:
                raise ValidationError(f'Cannot cancel a {booking.status.replace("_", " ")} booking.')
            if combine(booking.date, booking.start_time) <= now:
                raise ValidationError('Cannot cancel a past booking.')

            booking.status = STATUS_CANCELLED
            booking.cancelled_at = now
            booking.cancellation_reason = (reason or '').strip() or 'Cancelled by customer'
            db.commit()
    except (ValidationError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info('Booking %s cancelled (auth=%s)', booking_id, auth_method)
    return booking


def add_availability_window(
    db: Session,
    studio: str,
    slot_date: date,
    start_time: time,
    end_time: time,
    is_available: bool,
    reason: str | None = None,
) -> AvailabilitySlot:
    """Store a staff open or blocked window under the same lock bookings commit under."""
    try:
        with slot_lock(db, studio, slot_date):
            if not is_available:
                overlapping = active_bookings_query(db, studio, slot_date).filter(
                    Booking.start_time < end_time,
                    Booking.end_time > start_time,
                ).first()
                if overlapping is not None:
                    raise ConflictError(
                        'This time is already booked. Cancel the booking before blocking it.',
                        code='slot_booked',
                    )

            window = AvailabilitySlot(
                studio=studio,
                date=slot_date,
                start_time=start_time,
                end_time=end_time,
                is_available=is_available,
                reason=reason,
            )
            db.add(window)
            db.commit()
    except (ConflictError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(window)
    return window


def list_upcoming_bookings(db: Session, phone: str, now: datetime | None = None) -> list[Booking]:
    now = now or datetime.now()
    phone = device_trust.normalize_phone(phone)
    return db.query(Booking).filter(
        Booking.phone == phone,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.date >= now.date(),
    ).order_by(Booking.date.asc(), Booking.start_time.asc()).all()
