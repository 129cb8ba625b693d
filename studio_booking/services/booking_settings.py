import logging
from dataclasses import asdict, dataclass
from datetime import time

from sqlalchemy.orm import Session

from studio_booking.core import config
from studio_booking.models.setting import BookingSetting
from studio_booking.scheduling.slots import format_time, parse_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingSettings:
    min_booking_duration: float = config.DEFAULT_MIN_BOOKING_HOURS
    max_booking_duration: float = config.DEFAULT_MAX_BOOKING_HOURS
    booking_buffer: int = config.DEFAULT_BOOKING_BUFFER_MINUTES
    advance_booking_days: int = config.DEFAULT_ADVANCE_BOOKING_DAYS
    default_open_time: time = config.DEFAULT_OPEN_TIME
    default_close_time: time = config.DEFAULT_CLOSE_TIME

    def as_public_dict(self) -> dict:
        values = asdict(self)
        values['default_open_time'] = format_time(self.default_open_time)
        values['default_close_time'] = format_time(self.default_close_time)
        return values


_PARSERS = {
    'min_booking_duration': float,
    'max_booking_duration': float,
    'booking_buffer': int,
    'advance_booking_days': int,
    'default_open_time': lambda value: parse_time(value.strip('"')),
    'default_close_time': lambda value: parse_time(value.strip('"')),
}


def load_booking_settings(db: Session) -> BookingSettings:
    """Read stored settings over the configured defaults; bad rows are skipped."""
    values: dict = {}
    for row in db.query(BookingSetting.key, BookingSetting.value).all():
        parser = _PARSERS.get(row.key)
        if parser is None:
            continue
        try:
            values[row.key] = parser(row.value)
        except (TypeError, ValueError):
            logger.warning('Ignoring malformed booking setting %s=%r', row.key, row.value)

    return BookingSettings(**values)
