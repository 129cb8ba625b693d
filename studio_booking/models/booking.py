"""Booking model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String, Time

from studio_booking.database import Base

STUDIOS = ('A', 'B', 'C')

STATUS_PENDING = 'pending'
STATUS_CONFIRMED = 'confirmed'
STATUS_CANCELLED = 'cancelled'
STATUS_COMPLETED = 'completed'
STATUS_NO_SHOW = 'no_show'
BOOKING_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_NO_SHOW)
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)


class Booking(Base):
    """A reserved interval in one studio on one date."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    studio = Column(String(1), nullable=False)
    session_type = Column(String, nullable=False)
    session_option = Column(String)
    session_details = Column(String)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=STATUS_CONFIRMED)
    rate_per_hour = Column(Integer)
    song_count = Column(Integer)
    total_amount = Column(Integer)
    phone = Column(String(10), nullable=False, index=True)
    name = Column(String)
    email = Column(String)
    cancellation_reason = Column(String)
    cancelled_at = Column(DateTime)
    created_by_staff = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
