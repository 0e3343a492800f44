"""Typed failures of the booking core.

Every error carries a ``kind`` that the HTTP layer maps to a status code,
and a stable ``code`` that clients can switch on. The coordinator passes
these through unchanged.
"""

VALIDATION = "validation"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
AUTHORIZATION = "authorization"
PAYMENT = "payment"
PAYOUT = "payout"
INTEGRITY = "integrity"


class BookingError(Exception):
    """Base exception for booking core failures."""

    kind = INTEGRITY
    default_message = "Booking operation failed."

    def __init__(self, message=None, code=None):
        self.message = message or self.default_message
        self.code = code or _code_for(type(self))
        super().__init__(self.message)


def _code_for(cls) -> str:
    name = cls.__name__
    chars = []
    for index, char in enumerate(name):
        if char.isupper() and index:
            chars.append("_")
        chars.append(char.lower())
    return "".join(chars)


# Validation

class InvalidSlotWindow(BookingError):
    kind = VALIDATION
    default_message = "Slot end time must be after its start time."


class SlotInPast(BookingError):
    kind = VALIDATION
    default_message = "This slot is in the past and can no longer be booked."


class InvalidLedgerStatus(BookingError):
    kind = VALIDATION
    default_message = "Invalid status."


class InvalidAmount(BookingError):
    kind = VALIDATION
    default_message = "Invalid payment amount."


# Not found

class SlotNotFound(BookingError):
    kind = NOT_FOUND
    default_message = "Slot not found."


class AppointmentNotFound(BookingError):
    kind = NOT_FOUND
    default_message = "Appointment not found."


class LedgerEntryNotFound(BookingError):
    kind = NOT_FOUND
    default_message = "Transaction not found."


class DoctorNotFound(BookingError):
    kind = NOT_FOUND
    default_message = "Doctor not found."


# Conflict

class SlotAlreadyBooked(BookingError):
    kind = CONFLICT
    default_message = "Slot already booked."


class DuplicateSlot(BookingError):
    kind = CONFLICT
    default_message = "A slot already exists at this time. Please retry."


class DoctorUnavailable(BookingError):
    kind = CONFLICT
    default_message = "This doctor is not accepting bookings."


class InvalidTransition(BookingError):
    kind = CONFLICT
    default_message = "This change is not allowed in the current state."


class StaleLedgerState(InvalidTransition):
    default_message = "Transactions changed while the payout was running. Please retry."


# Authorization

class Unauthorized(BookingError):
    kind = AUTHORIZATION
    default_message = "Unauthorized"


class DoctorNotVerified(BookingError):
    kind = AUTHORIZATION
    default_message = "Doctor is not verified yet"


# Payment and payout

class PaymentFailed(BookingError):
    kind = PAYMENT
    default_message = "Payment was declined."


class NothingToPayout(BookingError):
    kind = PAYOUT
    default_message = "No pending payouts for this doctor"


# Integrity

class CompensationFailed(BookingError):
    kind = INTEGRITY
    default_message = "Booking failed and the slot could not be released. Operator reconciliation required."


class LedgerImbalance(BookingError):
    kind = INTEGRITY
    default_message = "Transaction amounts do not balance."
