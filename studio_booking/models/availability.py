"""Availability model definitions."""

from sqlalchemy import Boolean, Column, Date, Integer, String, Time

from studio_booking.database import Base


class AvailabilitySlot(Base):
    """Per-date override of a studio's open hours.

    ``is_available`` rows whitelist open time for the date, the others block it.
    """
    __tablename__ = "availability_slots"

    id = Column(Integer, primary_key=True)
    studio = Column(String(1), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=False)
    reason = Column(String)
