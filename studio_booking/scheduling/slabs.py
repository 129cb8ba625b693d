"""Merge consecutive available slots into bookable ranges and offer start/end choices."""

from dataclasses import dataclass
from datetime import time

from studio_booking.scheduling.availability import SlotAvailability
from studio_booking.scheduling.slots import format_time, hours_between, minutes_to_time, time_to_minutes

CHOICE_STEP_MINUTES = 30


@dataclass(frozen=True)
class Slab:
    start: time
    end: time

    @property
    def duration(self) -> float:
        return hours_between(self.start, self.end)

    @property
    def label(self) -> str:
        return f'{format_time(self.start)} - {format_time(self.end)}'

    def contains(self, start: time, end: time) -> bool:
        return self.start <= start and end <= self.end


def build_slabs(slots: list[SlotAvailability], min_duration: float = 1) -> list[Slab]:
    slabs: list[Slab] = []
    slab_start: time | None = None
    previous_end: time | None = None

    for slot in slots:
        if not slot.available:
            if slab_start is not None:
                slabs.append(Slab(slab_start, previous_end))
                slab_start = None
            continue

        if slab_start is not None and slot.start != previous_end:
            slabs.append(Slab(slab_start, previous_end))
            slab_start = None

        if slab_start is None:
            slab_start = slot.start
        previous_end = slot.end

    if slab_start is not None:
        slabs.append(Slab(slab_start, previous_end))

    return [slab for slab in slabs if slab.duration >= min_duration]


def start_choices(slab: Slab, min_duration: float = 1) -> list[time]:
    latest_start = time_to_minutes(slab.end) - int(min_duration * 60)
    current = time_to_minutes(slab.start)
    choices: list[time] = []

    while current <= latest_start:
        choices.append(minutes_to_time(current))
        current += CHOICE_STEP_MINUTES

    return choices


def end_choices(slab: Slab, start: time, min_duration: float = 1, max_duration: float = 8) -> list[time]:
    if not slab.start <= start < slab.end:
        return []

    start_minutes = time_to_minutes(start)
    earliest_end = start_minutes + int(min_duration * 60)
    latest_end = min(time_to_minutes(slab.end), start_minutes + int(max_duration * 60))
    current = earliest_end
    choices: list[time] = []

    while current <= latest_end:
        choices.append(minutes_to_time(current))
        current += CHOICE_STEP_MINUTES

    return choices


def find_slab(slabs: list[Slab], start: time, end: time) -> Slab | None:
    for slab in slabs:
        if slab.contains(start, end):
            return slab
    return None
