"""OTP error taxonomy.

Every error carries the HTTP status the API answers with and a
user-facing message, so callers can surface them without a lookup table.
"""

from __future__ import annotations


class OtpError(Exception):
    """Base class for every caller-visible OTP failure."""

    status_code: int = 400
    message: str = "OTP request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidTargetError(OtpError):
    message = "A valid phone number or email address is required"


class AlreadyPendingError(OtpError):
    message = "An OTP was already sent. Please wait before requesting a new one"


class DeliveryError(OtpError):
    status_code = 500
    message = "Failed to send OTP"


class NotFoundError(OtpError):
    message = "Please request a new OTP"


class ExpiredError(OtpError):
    message = "OTP has expired"


class MismatchError(OtpError):
    message = "Invalid OTP"
