"""
Exception types raised by the availability and reservation engine.

Everything deriving from EngineError is an expected, recoverable condition that
the calling route catches and turns into a client-facing message. StorageError
is an infrastructure failure and is kept outside that hierarchy so callers can
tell "the answer is no" apart from "we could not get an answer".
"""


class EngineError(Exception):
    """Base class for expected engine refusals."""

    default_message = "Error: request could not be completed"

    def __init__(self, message: str = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class InvalidRange(EngineError):
    """Raised for malformed, inverted, too long or past-dated ranges."""

    default_message = "Error: invalid date range"


class VehicleNotFound(EngineError):
    default_message = "Error: vehicle not found"


class ReservationNotFound(EngineError):
    default_message = "Error: reservation not found"


class InvalidTransition(EngineError):
    """Raised when a status change is not allowed from the current status."""

    default_message = "Error: reservation status change not allowed"

    def __init__(self, message: str = None, current_status=None, action: str = None) -> None:
        self.current_status = current_status
        self.action = action
        super().__init__(message)


class AdmissionError(EngineError):
    """Base class for refusals raised by Reservation Admission."""

    default_message = "Error: reservation could not be admitted"


class SlotNoLongerAvailable(AdmissionError):
    """The range stopped being free between rendering the calendar and booking."""

    default_message = "Selected dates are no longer available, please pick new dates"

    def __init__(self, reason=None, message: str = None) -> None:
        self.reason = reason
        super().__init__(message)


class QuoteMismatch(AdmissionError):
    """Client-supplied price disagrees with the server quote."""

    default_message = "Price changed, please review the new quote and retry"

    def __init__(self, server_quote=None, message: str = None) -> None:
        self.server_quote = server_quote
        super().__init__(message)


class IdempotencyKeyReused(AdmissionError):
    """An idempotency key was replayed for a different booking."""

    default_message = "Idempotency key already used for a different reservation"


class ReservationConflict(EngineError):
    """Raised by a store when its atomic overlap guard rejects a write."""

    default_message = "Error: overlapping reservation exists"


class DuplicateIdempotencyKey(EngineError):
    """Raised by a store when a reservation with the same idempotency key exists."""

    default_message = "Error: idempotency key already stored"

    def __init__(self, idempotency_key: str = None, message: str = None) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(message)


class StorageError(Exception):
    """Connectivity, timeout or unexpected backend failure."""

    def __init__(self, message: str = "Error: storage backend unavailable") -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message
