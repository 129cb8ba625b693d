"""Read path: one consistent snapshot of a studio/date turned into slot statuses and slabs."""

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.orm import Session

from studio_booking.models.availability import AvailabilitySlot
from studio_booking.models.booking import ACTIVE_STATUSES, STUDIOS, Booking
from studio_booking.scheduling.availability import Interval, SlotAvailability, classify_slots
from studio_booking.scheduling.slabs import Slab, build_slabs
from studio_booking.services.booking_settings import BookingSettings, load_booking_settings


@dataclass(frozen=True)
class DayState:
    bookings: list[Interval]
    open_windows: list[Interval]
    blocked: list[Interval]


@dataclass(frozen=True)
class AvailabilityView:
    studio: str
    date: date
    slots: list[SlotAvailability]
    slabs: list[Slab]
    settings: BookingSettings


def active_bookings_query(db: Session, studio: str, slot_date: date, exclude_booking_id: int | None = None):
    query = db.query(Booking).filter(
        Booking.studio == studio,
        Booking.date == slot_date,
        Booking.status.in_(ACTIVE_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query


def load_day_state(
    db: Session,
    studio: str,
    slot_date: date,
    settings: BookingSettings,
    exclude_booking_id: int | None = None,
) -> DayState:
    bookings = [
        (booking.start_time, booking.end_time)
        for booking in active_bookings_query(db, studio, slot_date, exclude_booking_id)
    ]
    overrides = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.studio == studio,
        AvailabilitySlot.date == slot_date,
    ).all()

    whitelist = [(row.start_time, row.end_time) for row in overrides if row.is_available]
    blocked = [(row.start_time, row.end_time) for row in overrides if not row.is_available]
    open_windows = whitelist or [(settings.default_open_time, settings.default_close_time)]

    return DayState(bookings=bookings, open_windows=open_windows, blocked=blocked)


def is_within_booking_window(slot_date: date, today: date, settings: BookingSettings) -> bool:
    return 0 <= (slot_date - today).days <= settings.advance_booking_days


def get_availability(
    db: Session,
    studio: str,
    slot_date: date,
    min_duration: float | None = None,
    exclude_booking_id: int | None = None,
    now: datetime | None = None,
) -> AvailabilityView:
    now = now or datetime.now()
    settings = load_booking_settings(db)
    min_duration = settings.min_booking_duration if min_duration is None else min_duration

    if studio in STUDIOS and is_within_booking_window(slot_date, now.date(), settings):
        state = load_day_state(db, studio, slot_date, settings, exclude_booking_id)
    else:
        state = DayState(bookings=[], open_windows=[], blocked=[])

    slots = classify_slots(
        slot_date,
        now,
        bookings=state.bookings,
        open_windows=state.open_windows,
        blocked=state.blocked,
        buffer_minutes=settings.booking_buffer,
    )
    return AvailabilityView(
        studio=studio,
        date=slot_date,
        slots=slots,
        slabs=build_slabs(slots, min_duration),
        settings=settings,
    )


def get_bookings_for_date(db: Session, slot_date: date) -> list[Booking]:
    return db.query(Booking).filter(
        Booking.date == slot_date,
        Booking.status.in_(ACTIVE_STATUSES),
    ).order_by(Booking.studio.asc(), Booking.start_time.asc()).all()
