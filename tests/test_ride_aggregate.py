import uuid
from decimal import Decimal

import pytest

from app.domain import lifecycle
from app.domain.exceptions import (
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
from app.domain.ride import BookingStatus, PaymentMethod, PaymentStatus, RideStatus


def test_request_does_not_hold_seats_until_accepted(make_ride):
    ride = make_ride(total_seats=3)
    a = uuid.uuid4()

    booking = ride.request_seats(a, 2)

    assert booking.status == BookingStatus.PENDING
    assert ride.requests == [a]
    assert ride.seats_available == 3


def test_booking_walkthrough(make_ride):
    ride = make_ride(total_seats=3)
    a, b = uuid.uuid4(), uuid.uuid4()

    ride.request_seats(a, 2)
    ride.accept_request(a)
    assert ride.seats_available == 1
    assert ride.accepted_passengers == [a]
    assert ride.requests == []

    with pytest.raises(InsufficientSeatsError) as exc:
        ride.request_seats(b, 2)
    assert exc.value.available == 1
    assert exc.value.requested == 2
    assert exc.value.message == "Not enough seats available. Available: 1, Requested: 2"

    ride.request_seats(b, 1)
    assert ride.requests == [b]

    ride.reject_request(b)
    assert ride.requests == []
    assert ride.canceled_requests == [b]
    assert ride.seats_available == 1
    ride.check_invariants()


def test_removing_passenger_returns_seats_only_before_start(make_ride):
    owner_id = uuid.uuid4()
    ride = make_ride(owner_id=owner_id, total_seats=3)
    a, c = uuid.uuid4(), uuid.uuid4()
    ride.request_seats(a, 2)
    ride.accept_request(a)

    ride.remove_passenger(a)
    assert ride.seats_available == 3
    assert a not in ride.accepted_passengers

    ride.request_seats(a, 2)
    ride.accept_request(a)
    ride.request_seats(c, 1)
    ride.accept_request(c)
    lifecycle.start_ride(ride, owner_id, owner_has_ride_in_progress=False)

    with pytest.raises(RideNotEditableError):
        ride.remove_passenger(a)
    assert a in ride.accepted_passengers
    assert ride.seats_available == 0


def test_second_acceptance_for_last_seat_fails(make_ride):
    ride = make_ride(total_seats=1)
    a, b = uuid.uuid4(), uuid.uuid4()
    ride.request_seats(a, 1)
    ride.request_seats(b, 1)

    ride.accept_request(a)
    with pytest.raises(NoSeatsAvailableError):
        ride.accept_request(b)

    assert ride.seats_available == 0
    assert ride.requests == [b]


def test_accept_rechecks_seats_for_multi_seat_request(make_ride):
    ride = make_ride(total_seats=3)
    a, b = uuid.uuid4(), uuid.uuid4()
    ride.request_seats(a, 2)
    ride.request_seats(b, 2)
    ride.accept_request(a)

    with pytest.raises(NoSeatsAvailableError):
        ride.accept_request(b)
    assert ride.seats_available == 1


class TestRequestPreconditions:

    def test_owner_cannot_book_own_ride(self, make_ride):
        ride = make_ride()
        with pytest.raises(OwnRideBookingError):
            ride.request_seats(ride.owner_id, 1)

    def test_duplicate_pending_request(self, make_ride):
        ride = make_ride()
        a = uuid.uuid4()
        ride.request_seats(a, 1)
        with pytest.raises(DuplicateRequestError):
            ride.request_seats(a, 1)
        assert len(ride.bookings) == 1

    def test_already_accepted(self, make_ride):
        ride = make_ride()
        a = uuid.uuid4()
        ride.request_seats(a, 1)
        ride.accept_request(a)
        with pytest.raises(AlreadyBookedError):
            ride.request_seats(a, 1)

    @pytest.mark.parametrize("seats", [0, -1])
    def test_seat_count_must_be_positive(self, make_ride, seats):
        ride = make_ride()
        with pytest.raises(InvalidSeatCountError):
            ride.request_seats(uuid.uuid4(), seats)
        assert ride.bookings == {}

    def test_terminal_ride_takes_no_requests(self, make_ride):
        ride = make_ride()
        lifecycle.cancel_ride(ride, ride.owner_id, "USER")
        with pytest.raises(InvalidStateError):
            ride.request_seats(uuid.uuid4(), 1)

    def test_rejected_passenger_may_request_again(self, make_ride):
        ride = make_ride()
        a = uuid.uuid4()
        ride.request_seats(a, 1)
        ride.reject_request(a)

        ride.request_seats(a, 1, PaymentMethod.CARD)

        assert ride.requests == [a]
        assert ride.canceled_requests == [a]
        assert ride.booking_for(a).payment_method == PaymentMethod.CARD


def test_cancel_own_request_is_not_recorded_as_rejection(make_ride):
    ride = make_ride()
    a = uuid.uuid4()
    ride.request_seats(a, 1)

    booking = ride.cancel_own_request(a)

    assert booking.status == BookingStatus.CANCELLED
    assert ride.requests == []
    assert ride.canceled_requests == []
    with pytest.raises(NoPendingRequestError):
        ride.cancel_own_request(a)


def test_owner_operations_need_matching_membership(make_ride):
    ride = make_ride()
    stranger = uuid.uuid4()

    with pytest.raises(NotInRequestsError):
        ride.accept_request(stranger)
    with pytest.raises(NotInRequestsError):
        ride.reject_request(stranger)
    with pytest.raises(NotAcceptedPassengerError):
        ride.remove_passenger(stranger)

    ride.request_seats(stranger, 1)
    with pytest.raises(NotAcceptedPassengerError):
        ride.remove_passenger(stranger)


class TestPaymentCollection:

    @pytest.fixture
    def ride_with_passenger(self, make_ride):
        ride = make_ride()
        passenger_id = uuid.uuid4()
        ride.request_seats(passenger_id, 1, PaymentMethod.CARD)
        ride.accept_request(passenger_id)
        return ride, passenger_id

    def test_collect_marks_booking_completed(self, ride_with_passenger):
        ride, passenger_id = ride_with_passenger

        booking = ride.mark_payment_collected(passenger_id, Decimal("12.50"))

        assert booking.payment_status == PaymentStatus.COMPLETED
        assert booking.amount_paid == Decimal("12.50")
        assert booking.payment_collected_at is not None

    def test_same_amount_twice_is_a_no_op(self, ride_with_passenger):
        ride, passenger_id = ride_with_passenger
        first = ride.mark_payment_collected(passenger_id, Decimal("12.50"))
        collected_at = first.payment_collected_at

        again = ride.mark_payment_collected(passenger_id, Decimal("12.5"))

        assert again.payment_collected_at == collected_at

    def test_different_amount_is_rejected(self, ride_with_passenger):
        ride, passenger_id = ride_with_passenger
        ride.mark_payment_collected(passenger_id, Decimal("12.50"))

        with pytest.raises(PaymentAlreadyCollectedError):
            ride.mark_payment_collected(passenger_id, Decimal("20"))
        assert ride.booking_for(passenger_id).amount_paid == Decimal("12.50")

    def test_amount_must_be_positive(self, ride_with_passenger):
        ride, passenger_id = ride_with_passenger
        with pytest.raises(ValidationError):
            ride.mark_payment_collected(passenger_id, Decimal("0"))

    def test_pending_booking_cannot_pay(self, make_ride):
        ride = make_ride()
        a = uuid.uuid4()
        ride.request_seats(a, 1)
        with pytest.raises(NoApprovedBookingError):
            ride.mark_payment_collected(a, Decimal("5"))


def test_total_seats_cannot_drop_below_approved(make_ride):
    ride = make_ride(total_seats=4)
    a = uuid.uuid4()
    ride.request_seats(a, 3)
    ride.accept_request(a)

    with pytest.raises(ValidationError):
        ride.change_total_seats(2)
    with pytest.raises(ValidationError):
        ride.change_total_seats(0)

    ride.change_total_seats(5)
    assert ride.seats_available == 2
    ride.change_total_seats(3)
    assert ride.seats_available == 0


def test_failed_operation_leaves_ride_unchanged(make_ride):
    ride = make_ride(total_seats=2)
    a, b = uuid.uuid4(), uuid.uuid4()
    ride.request_seats(a, 2)
    ride.accept_request(a)
    before = (ride.requests, ride.accepted_passengers, ride.seats_available, list(ride.canceled_requests))

    for attempt in (
        lambda: ride.request_seats(b, 1),
        lambda: ride.accept_request(b),
        lambda: ride.reject_request(b),
        lambda: ride.request_seats(a, 1),
    ):
        with pytest.raises(Exception):
            attempt()

    assert (ride.requests, ride.accepted_passengers, ride.seats_available, list(ride.canceled_requests)) == before


def test_ledger_holds_after_mixed_operations(make_ride):
    ride = make_ride(total_seats=5)
    passengers = [uuid.uuid4() for _ in range(4)]
    ride.request_seats(passengers[0], 2)
    ride.request_seats(passengers[1], 1)
    ride.request_seats(passengers[2], 1)
    ride.request_seats(passengers[3], 3)
    ride.accept_request(passengers[0])
    ride.accept_request(passengers[1])
    ride.reject_request(passengers[2])
    ride.cancel_own_request(passengers[3])
    ride.remove_passenger(passengers[1])

    ride.check_invariants()
    approved = sum(b.seats_requested for b in ride.bookings.values() if b.status == BookingStatus.APPROVED)
    assert ride.seats_available == ride.total_seats - approved == 3
    assert not set(ride.requests) & set(ride.accepted_passengers)
    assert ride.status == RideStatus.SCHEDULED
