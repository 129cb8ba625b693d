"""Device trust and OTP model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint

from studio_booking.database import Base


class TrustedDevice(Base):
    """A device fingerprint allowed to skip OTP for one phone number."""
    __tablename__ = "trusted_devices"
    __table_args__ = (UniqueConstraint('phone', 'device_fingerprint', name='unique_device_per_phone'),)

    id = Column(Integer, primary_key=True)
    phone = Column(String(10), nullable=False)
    device_fingerprint = Column(String(255), nullable=False)
    device_name = Column(String(255))
    trusted_at = Column(DateTime, default=datetime.now)
    last_used_at = Column(DateTime, default=datetime.now)
    is_active = Column(Boolean, nullable=False, default=True)


class OTPChallenge(Base):
    """The current one-time code for a phone number.

    ``last_sent_at`` outlives the code itself so the send cooldown still
    applies after a code is consumed.
    """
    __tablename__ = "otp_challenges"

    id = Column(Integer, primary_key=True)
    phone = Column(String(10), unique=True, nullable=False)
    code_hash = Column(String)
    issued_at = Column(DateTime)
    expires_at = Column(DateTime)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_sent_at = Column(DateTime, nullable=False)
