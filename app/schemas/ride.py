from pydantic import BaseModel, BeforeValidator, Field, model_validator
from typing import Annotated, List, Optional
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from ..domain.ride import (
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    RecurrenceSchedule,
    Ride,
    RideStatus,
)

# Fields a patch may change but never clear
NON_NULLABLE_PATCH_FIELDS = ("origin", "destination", "start_time", "total_seats", "price_per_seat")


def _normalise_schedule(value):
    """Accept recurrence tags in any case; unknown tags fall through to enum validation"""
    if value is None or isinstance(value, RecurrenceSchedule):
        return value
    if isinstance(value, str):
        return RecurrenceSchedule.parse(value) or value
    return value


ScheduleTag = Annotated[Optional[RecurrenceSchedule], BeforeValidator(_normalise_schedule)]


# Request schemas
class RideCreateRequest(BaseModel):
    origin: str = Field(..., min_length=1, max_length=500)
    destination: str = Field(..., min_length=1, max_length=500)
    start_time: datetime
    total_seats: int = Field(..., ge=1)
    price_per_seat: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    schedule: ScheduleTag = None
    owner_contact: Optional[str] = Field(None, max_length=100)


class RideUpdateRequest(BaseModel):
    """Partial update: only fields present in the payload are applied.

    Zero or negative numbers are rejected rather than read as "no change".
    ``schedule`` may be sent as null to stop a ride from recurring.
    """
    origin: Optional[str] = Field(None, min_length=1, max_length=500)
    destination: Optional[str] = Field(None, min_length=1, max_length=500)
    start_time: Optional[datetime] = None
    total_seats: Optional[int] = Field(None, ge=1)
    price_per_seat: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    schedule: ScheduleTag = None
    owner_contact: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def check_required_fields_not_cleared(self):
        for name in NON_NULLABLE_PATCH_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self


class BookingRequest(BaseModel):
    seats_requested: int = Field(1, ge=1)
    payment_method: PaymentMethod = PaymentMethod.CASH


class PaymentCollectRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


# Response schemas
class BookingResponse(BaseModel):
    id: UUID
    passenger_id: UUID
    passenger_name: Optional[str] = None
    seats_requested: int
    status: BookingStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    amount_paid: Optional[Decimal] = None
    payment_collected_at: Optional[datetime] = None
    requested_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RideResponse(BaseModel):
    id: UUID
    owner_id: UUID
    owner_name: Optional[str] = None
    owner_contact: Optional[str] = None
    owner_rating: float = 0.0
    origin: str
    destination: str
    start_time: datetime
    schedule: Optional[str] = None
    total_seats: int
    seats_available: int
    price_per_seat: Decimal
    status: RideStatus
    active: bool
    requests: List[UUID] = []
    accepted_passengers: List[UUID] = []
    canceled_requests: List[UUID] = []
    bookings: List[BookingResponse] = []
    created_at: datetime
    version: int

    @classmethod
    def from_ride(cls, ride: Ride, owner_rating: float = 0.0) -> "RideResponse":
        return cls(
            id=ride.id,
            owner_id=ride.owner_id,
            owner_name=ride.owner_name,
            owner_contact=ride.owner_contact,
            owner_rating=owner_rating,
            origin=ride.origin,
            destination=ride.destination,
            start_time=ride.start_time,
            schedule=ride.schedule,
            total_seats=ride.total_seats,
            seats_available=ride.seats_available,
            price_per_seat=ride.price_per_seat,
            status=ride.status,
            active=ride.active,
            requests=ride.requests,
            accepted_passengers=ride.accepted_passengers,
            canceled_requests=list(ride.canceled_requests),
            bookings=[BookingResponse.model_validate(b) for b in ride.bookings.values()],
            created_at=ride.created_at,
            version=ride.version,
        )


class RideListResponse(BaseModel):
    rides: List[RideResponse]
    total: int
    limit: int
    offset: int


class MyRidesResponse(BaseModel):
    pending_requests: List[RideResponse]
    approved_rides: List[RideResponse]
    canceled_rides: List[RideResponse]
    total_pending: int
    total_approved: int
    total_canceled: int


class RideEndResponse(BaseModel):
    ride: RideResponse
    next_ride: Optional[RideResponse] = None


class EarningsResponse(BaseModel):
    cash_earnings: Decimal
    card_earnings: Decimal
    total_earnings: Decimal
    cash_payments_count: int
    card_payments_count: int
    day: Optional[date] = None


class ErrorResponse(BaseModel):
    error: str
    code: str
    message: str
