"""Classify every grid slot of a studio/date as past, booked, available or unavailable."""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable

from studio_booking.scheduling.slots import TimeSlot, daily_slots, shift

STATUS_PAST = 'past'
STATUS_BOOKED = 'booked'
STATUS_AVAILABLE = 'available'
STATUS_UNAVAILABLE = 'unavailable'

Interval = tuple[time, time]


@dataclass(frozen=True)
class SlotAvailability:
    slot: TimeSlot
    status: str

    @property
    def start(self) -> time:
        return self.slot.start

    @property
    def end(self) -> time:
        return self.slot.end

    @property
    def available(self) -> bool:
        return self.status == STATUS_AVAILABLE


def is_past_slot(slot_date: date, slot: TimeSlot, now: datetime) -> bool:
    today = now.date()
    if slot_date < today:
        return True
    return slot_date == today and slot.start <= now.time()


def overlaps_any(slot: TimeSlot, intervals: Iterable[Interval], buffer_minutes: int = 0) -> bool:
    for interval_start, interval_end in intervals:
        if slot.overlaps(shift(interval_start, -buffer_minutes), shift(interval_end, buffer_minutes)):
            return True
    return False


def within_any(slot: TimeSlot, windows: Iterable[Interval]) -> bool:
    return any(window_start <= slot.start and slot.end <= window_end for window_start, window_end in windows)


def classify_slot(
    slot_date: date,
    slot: TimeSlot,
    now: datetime,
    bookings: list[Interval],
    open_windows: list[Interval],
    blocked: list[Interval],
    buffer_minutes: int = 0,
) -> str:
    if is_past_slot(slot_date, slot, now):
        return STATUS_PAST
    if overlaps_any(slot, bookings, buffer_minutes):
        return STATUS_BOOKED
    if within_any(slot, open_windows) and not overlaps_any(slot, blocked):
        return STATUS_AVAILABLE
    return STATUS_UNAVAILABLE


def classify_slots(
    slot_date: date,
    now: datetime,
    bookings: list[Interval],
    open_windows: list[Interval],
    blocked: list[Interval] | None = None,
    buffer_minutes: int = 0,
) -> list[SlotAvailability]:
    """Give each of the day's grid slots exactly one status.

    Precedence is past, then booked, then available; anything outside the
    studio's open windows (or blocked) is unavailable. Missing data only ever
    makes slots unavailable.
    """
    blocked = blocked or []
    return [
        SlotAvailability(
            slot=slot,
            status=classify_slot(slot_date, slot, now, bookings, open_windows, blocked, buffer_minutes),
        )
        for slot in daily_slots()
    ]
