"""Domain errors raised by the booking core.

Each error carries a machine-readable ``code`` and the HTTP status the
boundary renders it with. Validation and conflict outcomes are expected
results, not faults.
"""

from __future__ import annotations

from typing import Any


class BookingError(Exception):
    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None, *, code: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        self.extra = extra
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"ok": False, "error": self.code, "message": self.message, **self.extra}


class ValidationFailed(BookingError):
    status_code = 422
    code = "validation_error"
    default_message = "Invalid booking request"


class SlotConflict(BookingError):
    status_code = 409
    code = "duplicate_slot"
    default_message = "That time just became unavailable, please pick another"


class SlotUnavailable(BookingError):
    status_code = 409
    code = "slot_unavailable"
    default_message = "That time cannot be booked, please pick another"


class AlreadyCanceled(BookingError):
    status_code = 409
    code = "already_canceled"
    default_message = "Reservation is already canceled"


class CutoffPassed(BookingError):
    status_code = 409
    code = "cutoff_passed"
    default_message = "Too close to the appointment to cancel"


class ReservationNotFound(BookingError):
    status_code = 404
    code = "not_found"
    default_message = "Reservation not found"


class LockTimeout(BookingError):
    status_code = 503
    code = "lock_timeout"
    default_message = "The slot is busy, please try again"


class StoreError(BookingError):
    status_code = 500
    code = "internal_error"
    default_message = "Reservation store failure"
