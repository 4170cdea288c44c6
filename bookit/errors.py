"""Rejection reasons raised by the availability and booking engine."""
from __future__ import annotations


class BookingError(Exception):
    """Base class for every rejection the booking core can report."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class ValidationError(BookingError):
    """Malformed input: bad date or time format, non-positive duration."""

    code = "invalid_payload"
    status_code = 400


class NotFoundError(BookingError):
    """Vendor, service, worker or appointment is missing or not active."""

    code = "not_found"
    status_code = 404


class PolicyViolation(BookingError):
    """Same-day booking, unqualified worker, or a forbidden status change."""

    code = "policy_violation"
    status_code = 422


class ConflictError(BookingError):
    """The slot was taken between the availability read and the commit.

    Callers should re-run the availability query rather than retry the same slot.
    """

    code = "conflict"
    status_code = 409


class InternalError(BookingError):
    """Persistence failure."""

    code = "database_error"
    status_code = 500
