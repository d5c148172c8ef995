"""Error kinds raised by the ride booking core.

Every error carries a ``kind`` (the category the HTTP layer maps to a status
code) and a stable ``code`` identifying the failed precondition.
"""


class RideServiceError(Exception):
    """Base class for all ride booking errors."""

    kind = "Error"
    code = "ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.code


# ===================== Kinds =====================

class NotFoundError(RideServiceError):
    kind = "NotFound"
    code = "NOT_FOUND"


class UnauthorizedError(RideServiceError):
    kind = "Unauthorized"
    code = "UNAUTHORIZED"


class InvalidStateError(RideServiceError):
    kind = "InvalidState"
    code = "INVALID_STATE"


class ConflictError(RideServiceError):
    kind = "Conflict"
    code = "CONFLICT"


class ValidationError(RideServiceError):
    kind = "ValidationError"
    code = "VALIDATION_ERROR"


class UnavailableError(RideServiceError):
    """A dependency did not answer; the caller may retry."""
    kind = "Unavailable"
    code = "SERVICE_UNAVAILABLE"


class StorageUnavailableError(UnavailableError):
    code = "STORAGE_UNAVAILABLE"


# ===================== Not found =====================

class RideNotFoundError(NotFoundError):
    code = "RIDE_NOT_FOUND"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"


# ===================== Invalid state =====================

class NoPendingRequestError(InvalidStateError):
    code = "NO_PENDING_REQUEST"


class NotInRequestsError(InvalidStateError):
    code = "NOT_IN_REQUESTS"


class NotAcceptedPassengerError(InvalidStateError):
    code = "NOT_ACCEPTED_PASSENGER"


class RideNotEditableError(InvalidStateError):
    code = "RIDE_NOT_EDITABLE"


class NoPassengersError(InvalidStateError):
    code = "NO_PASSENGERS"


class NoApprovedBookingError(InvalidStateError):
    code = "NO_APPROVED_BOOKING"


class StartWindowClosedError(InvalidStateError):
    code = "START_WINDOW_CLOSED"


# ===================== Conflict =====================

class DuplicateRequestError(ConflictError):
    code = "DUPLICATE_REQUEST"


class AlreadyBookedError(ConflictError):
    code = "ALREADY_BOOKED"


class InsufficientSeatsError(ConflictError):
    code = "INSUFFICIENT_SEATS"

    def __init__(self, available: int, requested: int):
        super().__init__(
            f"Not enough seats available. Available: {available}, Requested: {requested}"
        )
        self.available = available
        self.requested = requested


class NoSeatsAvailableError(ConflictError):
    code = "NO_SEATS_AVAILABLE"


class ConflictingRideInProgressError(ConflictError):
    code = "CONFLICTING_RIDE_IN_PROGRESS"


class ConcurrentModificationError(ConflictError):
    """The ride changed between load and save."""
    code = "CONCURRENT_MODIFICATION"


class PaymentAlreadyCollectedError(ConflictError):
    code = "PAYMENT_ALREADY_COLLECTED"


# ===================== Validation =====================

class InvalidSeatCountError(ValidationError):
    code = "INVALID_SEAT_COUNT"


class OwnRideBookingError(ValidationError):
    code = "OWN_RIDE"
