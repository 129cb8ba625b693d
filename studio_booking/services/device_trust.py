"""OTP issuance/verification and the trusted-device shortcut.

Per (phone, device) the flow is ``unverified -> otp_sent -> verified``; a
verified device is remembered as trusted for that phone until it is revoked
or, when ``TRUSTED_DEVICE_TTL_DAYS`` is set, until the trust ages out.
Failure messages are identical whether or not the phone has ever been seen.
"""

import logging
import math
import re
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Iterator, Protocol

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_booking.auth import jwt_handler
from studio_booking.core import config
from studio_booking.core.errors import AuthError, RateLimitError, ValidationError
from studio_booking.models.device import OTPChallenge, TrustedDevice
from studio_booking.services.customers import find_customer

logger = logging.getLogger(__name__)

otp_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

INVALID_CODE_MESSAGE = 'Invalid or expired code. Please request a new code.'
TRUSTED_DEVICE_LABEL = 'Trusted device, confirm to continue.'

AUTH_METHOD_STAFF = 'staff'
AUTH_METHOD_TOKEN = 'token'
AUTH_METHOD_DEVICE = 'device'
AUTH_METHOD_OTP = 'otp'

_locks_guard = Lock()
_phone_locks: dict[str, Lock] = {}


class OTPSender(Protocol):
    def send(self, phone: str, code: str) -> None:
        ...


class LoggingOTPSender:
    """Development delivery channel: writes the code to the log."""

    def send(self, phone: str, code: str) -> None:
        logger.info('OTP for %s: %s', phone, code)


@dataclass(frozen=True)
class OTPIssue:
    phone: str
    expires_at: datetime
    cooldown_seconds: int
    debug_code: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    device_trusted: bool
    access_token: str


@dataclass(frozen=True)
class AutoLoginResult:
    authenticated: bool
    phone: str | None = None
    name: str = ''
    email: str = ''
    device_name: str | None = None
    trusted_since: datetime | None = None
    label: str | None = None
    access_token: str | None = None


def normalize_phone(phone: str | None) -> str:
    digits = re.sub(r'\D', '', phone or '')
    if len(digits) != 10:
        raise ValidationError('Phone number must be exactly 10 digits.')
    return digits


def generate_otp(length: int | None = None) -> str:
    length = length or config.OTP_LENGTH
    return ''.join(secrets.choice('0123456789') for _ in range(length))


def _cooldown_remaining(challenge: OTPChallenge | None, now: datetime) -> int:
    if challenge is None or challenge.last_sent_at is None:
        return 0
    elapsed = (now - challenge.last_sent_at).total_seconds()
    if elapsed >= config.OTP_COOLDOWN_SECONDS:
        return 0
    return math.ceil(config.OTP_COOLDOWN_SECONDS - elapsed)


def _process_lock(phone: str) -> Lock:
    with _locks_guard:
        return _phone_locks.setdefault(phone, Lock())


@contextmanager
def otp_lock(phone: str) -> Iterator[None]:
    """Serialize OTP issue and check for one phone; row locks are a no-op on SQLite."""
    with _process_lock(phone):
        yield


def _challenge_for_update(db: Session, phone: str) -> OTPChallenge | None:
    return db.query(OTPChallenge).filter(OTPChallenge.phone == phone).populate_existing().with_for_update().first()


def send_otp(
    db: Session,
    phone: str,
    sender: OTPSender | None = None,
    now: datetime | None = None,
) -> OTPIssue:
    phone = normalize_phone(phone)
    now = now or datetime.now()
    sender = sender or LoggingOTPSender()

    with otp_lock(phone):
        challenge = _challenge_for_update(db, phone)
        remaining = _cooldown_remaining(challenge, now)
        if remaining:
            db.rollback()
            logger.warning('OTP requested for %s inside cooldown (%ss left)', phone, remaining)
            raise RateLimitError(
                f'Please wait {remaining} seconds before requesting a new code.',
                retry_after=remaining,
            )

        code = generate_otp()
        expires_at = now + timedelta(minutes=config.OTP_EXPIRY_MINUTES)
        if challenge is None:
            challenge = OTPChallenge(phone=phone)
            db.add(challenge)
        challenge.code_hash = otp_context.hash(code)
        challenge.issued_at = now
        challenge.expires_at = expires_at
        challenge.attempt_count = 0
        challenge.last_sent_at = now

        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise RateLimitError(
                'A code was just sent to this number. Please wait before requesting another.',
                retry_after=config.OTP_COOLDOWN_SECONDS,
            ) from exc

    sender.send(phone, code)
    logger.info('OTP issued for %s', phone)

    return OTPIssue(
        phone=phone,
        expires_at=expires_at,
        cooldown_seconds=config.OTP_COOLDOWN_SECONDS,
        debug_code=code if config.OTP_DEBUG_ECHO else None,
    )


def _invalidate(challenge: OTPChallenge) -> None:
    challenge.code_hash = None
    challenge.expires_at = None


def check_otp(db: Session, phone: str, code: str, now: datetime | None = None) -> None:
    """Consume a valid code or raise ``AuthError``; commits either way."""
    phone = normalize_phone(phone)
    code = (code or '').strip()
    if not re.fullmatch(rf'\d{{{config.OTP_LENGTH}}}', code):
        raise ValidationError(f'Code must be {config.OTP_LENGTH} digits.')
    now = now or datetime.now()

    with otp_lock(phone):
        challenge = _challenge_for_update(db, phone)
        if challenge is None or challenge.code_hash is None:
            db.rollback()
            raise AuthError(INVALID_CODE_MESSAGE, code='invalid_otp')

        if challenge.expires_at is None or challenge.expires_at <= now:
            _invalidate(challenge)
            db.commit()
            raise AuthError(INVALID_CODE_MESSAGE, code='invalid_otp')

        if not otp_context.verify(code, challenge.code_hash):
            challenge.attempt_count = (challenge.attempt_count or 0) + 1
            attempts = challenge.attempt_count
            if attempts >= config.OTP_MAX_ATTEMPTS:
                _invalidate(challenge)
            db.commit()
            logger.warning('Incorrect OTP for %s (attempt %s)', phone, attempts)
            raise AuthError(INVALID_CODE_MESSAGE, code='invalid_otp')

        _invalidate(challenge)
        db.commit()


def trust_device(
    db: Session,
    phone: str,
    device_fingerprint: str,
    device_name: str | None = None,
    now: datetime | None = None,
) -> TrustedDevice:
    now = now or datetime.now()
    device = db.query(TrustedDevice).filter(
        TrustedDevice.phone == phone,
        TrustedDevice.device_fingerprint == device_fingerprint,
    ).first()

    if device is None:
        device = TrustedDevice(phone=phone, device_fingerprint=device_fingerprint, trusted_at=now)
        db.add(device)
    elif not device.is_active or _trust_expired(device, now):
        device.trusted_at = now

    device.device_name = device_name or device.device_name or 'Unknown Device'
    device.last_used_at = now
    device.is_active = True
    db.commit()
    db.refresh(device)
    logger.info('Device trusted for %s', phone)
    return device


def verify_otp(
    db: Session,
    phone: str,
    code: str,
    device_fingerprint: str | None = None,
    device_name: str | None = None,
    now: datetime | None = None,
) -> VerificationResult:
    phone = normalize_phone(phone)
    check_otp(db, phone, code, now)

    device_trusted = False
    fingerprint = (device_fingerprint or '').strip()
    if fingerprint:
        trust_device(db, phone, fingerprint, device_name, now)
        device_trusted = True

    return VerificationResult(
        verified=True,
        device_trusted=device_trusted,
        access_token=jwt_handler.create_access_token(subject=phone),
    )


def _trust_expired(device: TrustedDevice, now: datetime) -> bool:
    if config.TRUSTED_DEVICE_TTL_DAYS <= 0 or device.trusted_at is None:
        return False
    return device.trusted_at + timedelta(days=config.TRUSTED_DEVICE_TTL_DAYS) <= now


def find_trusted_device(
    db: Session,
    phone: str,
    device_fingerprint: str | None,
    now: datetime | None = None,
) -> TrustedDevice | None:
    """Authoritative trust check for an exact (phone, fingerprint) pair. Read-only."""
    fingerprint = (device_fingerprint or '').strip()
    if not fingerprint:
        return None
    now = now or datetime.now()

    device = db.query(TrustedDevice).filter(
        TrustedDevice.phone == phone,
        TrustedDevice.device_fingerprint == fingerprint,
        TrustedDevice.is_active.is_(True),
    ).first()
    if device is None or _trust_expired(device, now):
        return None
    return device


def verify_device(db: Session, phone: str, device_fingerprint: str | None, now: datetime | None = None) -> bool:
    return find_trusted_device(db, normalize_phone(phone), device_fingerprint, now) is not None


def revoke_device(db: Session, phone: str, device_fingerprint: str) -> bool:
    phone = normalize_phone(phone)
    revoked = db.query(TrustedDevice).filter(
        TrustedDevice.phone == phone,
        TrustedDevice.device_fingerprint == device_fingerprint,
        TrustedDevice.is_active.is_(True),
    ).update({TrustedDevice.is_active: False}, synchronize_session=False)
    db.commit()
    if revoked:
        logger.info('Device trust revoked for %s', phone)
    return bool(revoked)


def revoke_all_devices(db: Session, phone: str) -> int:
    phone = normalize_phone(phone)
    revoked = db.query(TrustedDevice).filter(
        TrustedDevice.phone == phone,
        TrustedDevice.is_active.is_(True),
    ).update({TrustedDevice.is_active: False}, synchronize_session=False)
    db.commit()
    logger.info('Revoked %s trusted devices for %s', revoked, phone)
    return revoked


def auto_login(
    db: Session,
    phone: str | None,
    device_fingerprint: str | None,
    now: datetime | None = None,
) -> AutoLoginResult:
    """Skip the OTP flow for a recognised device and pre-fill the customer's identity."""
    try:
        phone = normalize_phone(phone)
    except ValidationError:
        return AutoLoginResult(authenticated=False)
    now = now or datetime.now()

    device = find_trusted_device(db, phone, device_fingerprint, now)
    if device is None:
        return AutoLoginResult(authenticated=False)

    device.last_used_at = now
    db.commit()

    customer = find_customer(db, phone)
    return AutoLoginResult(
        authenticated=True,
        phone=phone,
        name=(customer.name or '') if customer else '',
        email=(customer.email or '') if customer else '',
        device_name=device.device_name,
        trusted_since=device.trusted_at,
        label=TRUSTED_DEVICE_LABEL,
        access_token=jwt_handler.create_access_token(subject=phone),
    )


def authorize_mutation(
    db: Session,
    phone: str,
    otp_code: str | None = None,
    device_fingerprint: str | None = None,
    token_phone: str | None = None,
    is_staff: bool = False,
    now: datetime | None = None,
) -> str:
    """Return how the caller proved control of ``phone`` or raise ``AuthError``.

    A bearer token for the phone counts as an earlier OTP verification. A
    device fingerprint is only accepted if that exact pair is trusted.
    """
    if is_staff:
        return AUTH_METHOD_STAFF

    phone = normalize_phone(phone)
    if token_phone and token_phone == phone:
        return AUTH_METHOD_TOKEN

    if device_fingerprint and find_trusted_device(db, phone, device_fingerprint, now) is not None:
        return AUTH_METHOD_DEVICE

    if otp_code:
        check_otp(db, phone, otp_code, now)
        return AUTH_METHOD_OTP

    if device_fingerprint:
        raise AuthError('This device is not trusted. Verify with a one-time code.', code='untrusted_device')
    raise AuthError('Verification required. Request a one-time code to continue.', code='verification_required')
