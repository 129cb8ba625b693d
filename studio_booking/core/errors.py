"""Business errors raised by the booking guard and the device-trust gate.

Routes convert them to HTTP responses; messages are safe to show to the
customer and never reveal whether a phone number is known.
"""

from typing import Any

from fastapi import HTTPException, status


class BookingError(Exception):
    """Base class for all booking domain errors."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={'message': self.message, 'code': self.code, 'details': self.details},
        )


class ValidationError(BookingError):
    """Malformed phone, date, duration or selector."""


class AuthError(BookingError):
    """Invalid or expired OTP, or an untrusted device on a gated action."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BookingError):
    """The requested slot was taken between the availability read and the commit."""

    status_code = status.HTTP_409_CONFLICT


class RateLimitError(BookingError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str, retry_after: int, code: str | None = None) -> None:
        super().__init__(message, code=code, details={'retry_after': retry_after})
        self.retry_after = retry_after

    def to_http_exception(self) -> HTTPException:
        exception = super().to_http_exception()
        exception.headers = {'Retry-After': str(self.retry_after)}
        return exception
