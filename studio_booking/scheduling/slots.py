"""The fixed daily grid of one-hour slots shared by every studio."""

from dataclasses import dataclass
from datetime import date, datetime, time

GRID_OPEN_TIME = time(8, 0)
GRID_CLOSE_TIME = time(22, 0)
SLOT_LENGTH_MINUTES = 60


@dataclass(frozen=True)
class TimeSlot:
    start: time
    end: time

    @property
    def label(self) -> str:
        return f'{format_time(self.start)}-{format_time(self.end)}'

    def overlaps(self, start: time, end: time) -> bool:
        return self.start < end and self.end > start


def format_time(value: time) -> str:
    return value.strftime('%H:%M')


def parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    hours, minutes = value.strip().split(':')[:2]
    return time(int(hours), int(minutes))


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def minutes_to_time(total_minutes: int) -> time:
    total_minutes = max(0, min(total_minutes, 24 * 60 - 1))
    return time(total_minutes // 60, total_minutes % 60)


def hours_between(start: time, end: time) -> float:
    return (time_to_minutes(end) - time_to_minutes(start)) / 60


def combine(slot_date: date, slot_time: time) -> datetime:
    return datetime.combine(slot_date, slot_time)


def shift(value: time, minutes: int) -> time:
    return minutes_to_time(time_to_minutes(value) + minutes)


def daily_slots() -> list[TimeSlot]:
    """Return the 14 one-hour slots from 08:00 to 22:00 in time order."""
    slots: list[TimeSlot] = []
    current = time_to_minutes(GRID_OPEN_TIME)
    close = time_to_minutes(GRID_CLOSE_TIME)

    while current + SLOT_LENGTH_MINUTES <= close:
        slots.append(TimeSlot(minutes_to_time(current), minutes_to_time(current + SLOT_LENGTH_MINUTES)))
        current += SLOT_LENGTH_MINUTES

    return slots
