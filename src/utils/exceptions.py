"""Custom exceptions for the MemberDesk account system"""

from typing import Iterable, Optional


class MemberDeskError(Exception):
    """Base exception for MemberDesk request errors.

    ``kind`` is the stable machine-readable tag callers branch on;
    the message is for humans only.
    """

    kind = "MemberDeskError"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, fields: Optional[Iterable[str]] = None):
        self.fields = list(fields or [])
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class MissingField(MemberDeskError):
    """A required input field is absent or blank"""

    kind = "MissingField"
    status_code = 400
    default_message = "Missing required fields"

    def __init__(self, message: Optional[str] = None, fields: Optional[Iterable[str]] = None):
        fields = list(fields or [])
        if message is None and fields:
            message = f"Missing required fields: {', '.join(fields)}"
        super().__init__(message, fields)


class InvalidInput(MemberDeskError):
    """Request body has the wrong shape or a field has the wrong type"""

    kind = "InvalidInput"
    status_code = 422
    default_message = "Invalid request body"


class PasswordMismatch(MemberDeskError):
    """Password confirmation does not match"""

    kind = "PasswordMismatch"
    status_code = 400
    default_message = "Passwords do not match"


class PasswordTooLong(MemberDeskError):
    """Password exceeds what bcrypt can hash (72 bytes of UTF-8)"""

    kind = "PasswordTooLong"
    status_code = 400
    default_message = "Password must be at most 72 bytes"


class DuplicateEmail(MemberDeskError):
    """Email already registered to another account"""

    kind = "DuplicateEmail"
    status_code = 409
    default_message = "Email already registered"


class InvalidCredentials(MemberDeskError):
    """Unknown identity or wrong password (deliberately indistinguishable)"""

    kind = "InvalidCredentials"
    status_code = 401
    default_message = "Invalid credentials"


class Unauthorized(MemberDeskError):
    """Missing, invalid or expired session"""

    kind = "Unauthorized"
    status_code = 401
    default_message = "Invalid or expired session"


class NotFound(MemberDeskError):
    """Account record not found"""

    kind = "NotFound"
    status_code = 404
    default_message = "Account not found"


class StoreUnavailable(MemberDeskError):
    """Persistence I/O failure"""

    kind = "StoreUnavailable"
    status_code = 503
    default_message = "Account store unavailable"


class ConfigError(Exception):
    """Configuration error (raised at startup, never per request)"""
    pass
