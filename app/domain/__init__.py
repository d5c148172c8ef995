"""
Ride booking core: the ride aggregate, its seat ledger and lifecycle.

Nothing in this package touches storage or the network.
"""

from .ride import (
    Booking,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    RecurrenceSchedule,
    Ride,
    RideStatus,
)
from .lifecycle import (
    StartPolicy,
    build_next_ride,
    cancel_ride,
    end_ride,
    is_valid_transition,
    next_occurrence,
    start_ride,
)

__all__ = [
    # Aggregate
    "Booking",
    "BookingStatus",
    "PaymentMethod",
    "PaymentStatus",
    "RecurrenceSchedule",
    "Ride",
    "RideStatus",
    # Lifecycle
    "StartPolicy",
    "build_next_ride",
    "cancel_ride",
    "end_ride",
    "is_valid_transition",
    "next_occurrence",
    "start_ride",
]
