"""Customer model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from studio_booking.database import Base


class Customer(Base):
    """Represents a customer identified by phone number."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(10), unique=True, index=True, nullable=False)
    name = Column(String)
    email = Column(String)
    created_at = Column(DateTime, default=datetime.now)
