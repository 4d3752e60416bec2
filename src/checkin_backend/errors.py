"""
Error Types for the Check-in Backend
=====================================
Typed failures raised by the store and the transition service.

Every error carries a ``kind`` (the failure category reported to callers),
an optional machine-readable ``reason`` and a human-readable message.
"""

from typing import Optional


class AttendanceError(Exception):
    """Base class for all check-in failures."""

    kind = "Internal"
    status_code = 500

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "success": False,
            "error": self.kind,
            "reason": self.reason,
            "message": self.message
        }

    def __repr__(self):
        return f"<{self.__class__.__name__}(reason={self.reason}, message={self.message!r})>"


class InvalidArgument(AttendanceError):
    """Malformed or missing identifier."""
    kind = "InvalidArgument"
    status_code = 400


class NotFound(AttendanceError):
    """No record exists for the given id."""
    kind = "NotFound"
    status_code = 404


class InvalidState(AttendanceError):
    """The operation violates the attendance state machine."""
    kind = "InvalidState"
    status_code = 409

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason, reason=reason)


class ConcurrencyConflict(AttendanceError):
    """Lost a race on a conditional write."""
    kind = "ConcurrencyConflict"
    status_code = 409


class InternalError(AttendanceError):
    """Storage-layer failure not otherwise classified."""
    kind = "Internal"
    status_code = 500
