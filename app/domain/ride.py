"""
Ride aggregate: seat ledger and booking lifecycle.

A ride owns its bookings. Active bookings (PENDING or APPROVED) are held in a
map keyed by passenger id, so a passenger has at most one active booking per
ride. The request list, the accepted passenger list and the available seat
count are all projections of that map:

    seats_available = total_seats - sum(seats of APPROVED bookings)

Every operation checks all of its preconditions before touching any field,
so a failed call leaves the aggregate exactly as it was.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from ..utils.clock import utcnow
from .exceptions import (
    AlreadyBookedError,
    DuplicateRequestError,
    InsufficientSeatsError,
    InvalidSeatCountError,
    InvalidStateError,
    NoApprovedBookingError,
    NoPendingRequestError,
    NoSeatsAvailableError,
    NotAcceptedPassengerError,
    NotInRequestsError,
    OwnRideBookingError,
    PaymentAlreadyCollectedError,
    RideNotEditableError,
    ValidationError,
)


class RideStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    REMOVED = "REMOVED"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RecurrenceSchedule(str, enum.Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["RecurrenceSchedule"]:
        """Recognised recurrence tag, or None for anything else"""
        if not value:
            return None
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        return None


TERMINAL_RIDE_STATUSES = (RideStatus.COMPLETED, RideStatus.CANCELED)


@dataclass
class Booking:
    ride_id: UUID
    passenger_id: UUID
    seats_requested: int = 1
    passenger_name: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING
    amount_paid: Optional[Decimal] = None
    payment_collected_at: Optional[datetime] = None
    requested_at: datetime = field(default_factory=utcnow)
    id: UUID = field(default_factory=uuid.uuid4)

    @property
    def seats_held(self) -> int:
        """Seats this booking consumes from the ledger"""
        if self.status != BookingStatus.APPROVED:
            return 0
        return max(1, self.seats_requested)


@dataclass
class Ride:
    owner_id: UUID
    origin: str
    destination: str
    start_time: datetime
    total_seats: int
    price_per_seat: Decimal
    schedule: Optional[str] = None
    owner_name: Optional[str] = None
    owner_contact: Optional[str] = None
    status: RideStatus = RideStatus.SCHEDULED
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    id: UUID = field(default_factory=uuid.uuid4)
    version: int = 0
    bookings: Dict[UUID, Booking] = field(default_factory=dict)
    canceled_requests: List[UUID] = field(default_factory=list)

    # ===================== Projections =====================

    @property
    def requests(self) -> List[UUID]:
        return [pid for pid, b in self.bookings.items() if b.status == BookingStatus.PENDING]

    @property
    def accepted_passengers(self) -> List[UUID]:
        return [pid for pid, b in self.bookings.items() if b.status == BookingStatus.APPROVED]

    @property
    def seats_taken(self) -> int:
        return sum(b.seats_held for b in self.bookings.values())

    @property
    def seats_available(self) -> int:
        return self.total_seats - self.seats_taken

    @property
    def recurrence(self) -> Optional[RecurrenceSchedule]:
        return RecurrenceSchedule.parse(self.schedule)

    def is_owner(self, user_id: UUID) -> bool:
        return self.owner_id == user_id

    def booking_for(self, passenger_id: UUID) -> Optional[Booking]:
        return self.bookings.get(passenger_id)

    def _pending(self, passenger_id: UUID) -> Optional[Booking]:
        booking = self.bookings.get(passenger_id)
        if booking and booking.status == BookingStatus.PENDING:
            return booking
        return None

    def _approved(self, passenger_id: UUID) -> Optional[Booking]:
        booking = self.bookings.get(passenger_id)
        if booking and booking.status == BookingStatus.APPROVED:
            return booking
        return None

    def _ensure_open(self):
        if self.status in TERMINAL_RIDE_STATUSES:
            raise InvalidStateError(f"Ride is {self.status.value} and no longer takes bookings")

    # ===================== Passenger operations =====================

    def request_seats(
        self,
        passenger_id: UUID,
        seats_requested: int = 1,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        passenger_name: Optional[str] = None,
    ) -> Booking:
        """
        Place a PENDING booking for ``passenger_id``.

        Seats are only checked here, not held: they are consumed when the owner
        accepts the request.

        Raises:
            OwnRideBookingError: passenger is the ride owner
            DuplicateRequestError: passenger already has a pending request
            AlreadyBookedError: passenger is already an accepted passenger
            InvalidSeatCountError: fewer than one seat requested
            InsufficientSeatsError: not enough seats currently available
        """
        if self.is_owner(passenger_id):
            raise OwnRideBookingError("Cannot book your own ride")
        self._ensure_open()
        if self._pending(passenger_id):
            raise DuplicateRequestError("Already requested to join this ride")
        if self._approved(passenger_id):
            raise AlreadyBookedError("Already a passenger on this ride")
        if seats_requested is None or seats_requested < 1:
            raise InvalidSeatCountError("Must request at least 1 seat")
        if self.seats_available < seats_requested:
            raise InsufficientSeatsError(self.seats_available, seats_requested)

        booking = Booking(
            ride_id=self.id,
            passenger_id=passenger_id,
            passenger_name=passenger_name,
            seats_requested=seats_requested,
            payment_method=PaymentMethod(payment_method),
        )
        # Replaces any stale record for this passenger
        self.bookings.pop(passenger_id, None)
        self.bookings[passenger_id] = booking
        return booking

    def cancel_own_request(self, passenger_id: UUID) -> Booking:
        """Withdraw a pending request. Not recorded in canceled_requests."""
        booking = self._pending(passenger_id)
        if booking is None:
            raise NoPendingRequestError("No pending request found")

        booking.status = BookingStatus.CANCELLED
        del self.bookings[passenger_id]
        return booking

    # ===================== Owner operations =====================

    def accept_request(self, passenger_id: UUID) -> Booking:
        booking = self._pending(passenger_id)
        if booking is None:
            raise NotInRequestsError("Passenger not in requests")
        self._ensure_open()

        seats = max(1, booking.seats_requested)
        if self.seats_available <= 0 or self.seats_available < seats:
            raise NoSeatsAvailableError(
                f"No seats available. Available: {self.seats_available}, Requested: {seats}"
            )

        booking.status = BookingStatus.APPROVED
        booking.payment_status = PaymentStatus.PENDING
        return booking

    def reject_request(self, passenger_id: UUID) -> Booking:
        booking = self._pending(passenger_id)
        if booking is None:
            raise NotInRequestsError("Passenger not in requests")

        if passenger_id not in self.canceled_requests:
            self.canceled_requests.append(passenger_id)
        booking.status = BookingStatus.REJECTED
        del self.bookings[passenger_id]
        return booking

    def remove_passenger(self, passenger_id: UUID) -> Booking:
        """Drop an accepted passenger and give their seats back."""
        booking = self._approved(passenger_id)
        if booking is None:
            raise NotAcceptedPassengerError("Passenger not found in this ride")
        if self.status != RideStatus.SCHEDULED:
            raise RideNotEditableError("Cannot remove passengers after the ride has started")

        booking.status = BookingStatus.REMOVED
        del self.bookings[passenger_id]
        return booking

    def mark_payment_collected(self, passenger_id: UUID, amount: Decimal, now: Optional[datetime] = None) -> Booking:
        """
        Record that the owner collected ``amount`` from the passenger.

        Repeating the call with the same amount is a no-op; a different amount
        for an already collected booking is rejected.
        """
        booking = self._approved(passenger_id)
        if booking is None:
            raise NoApprovedBookingError("No approved booking found for this passenger")

        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")

        if booking.payment_status == PaymentStatus.COMPLETED:
            if booking.amount_paid == amount:
                return booking
            raise PaymentAlreadyCollectedError(
                f"Payment of {booking.amount_paid} was already collected for this passenger"
            )

        booking.payment_status = PaymentStatus.COMPLETED
        booking.amount_paid = amount
        booking.payment_collected_at = now or utcnow()
        return booking

    def change_total_seats(self, total_seats: int):
        """Resize the ride; availability follows from the approved bookings."""
        if total_seats is None or total_seats < 1:
            raise ValidationError("Total seats must be at least 1")
        if total_seats < self.seats_taken:
            raise ValidationError(
                f"Total seats cannot be lower than the {self.seats_taken} seats already approved"
            )
        self.total_seats = total_seats

    # ===================== Invariants =====================

    def check_invariants(self):
        """Raise InvalidStateError if the ledger or membership is inconsistent."""
        if not 0 <= self.seats_available <= self.total_seats:
            raise InvalidStateError(
                f"Seat ledger out of balance for ride {self.id}: "
                f"{self.seats_available} available of {self.total_seats}"
            )
        for passenger_id, booking in self.bookings.items():
            if booking.passenger_id != passenger_id:
                raise InvalidStateError(f"Booking {booking.id} filed under the wrong passenger")
            if booking.status not in (BookingStatus.PENDING, BookingStatus.APPROVED):
                raise InvalidStateError(f"Booking {booking.id} is {booking.status.value} but still active")
            if booking.seats_requested < 1:
                raise InvalidStateError(f"Booking {booking.id} requests no seats")

    def __repr__(self):
        return (
            f"<Ride(id={self.id}, status={self.status.value}, owner_id={self.owner_id}, "
            f"seats={self.seats_available}/{self.total_seats})>"
        )
