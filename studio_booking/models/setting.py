"""Booking setting model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from studio_booking.database import Base


class BookingSetting(Base):
    """Admin-tunable booking rule stored as a key/value pair."""
    __tablename__ = "booking_settings"

    id = Column(Integer, primary_key=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String, nullable=False)
    description = Column(String)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
