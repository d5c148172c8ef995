"""Ride lifecycle: SCHEDULED -> IN_PROGRESS -> COMPLETED, or CANCELED."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from ..utils.clock import as_utc, utcnow
from .exceptions import (
    ConflictingRideInProgressError,
    InvalidStateError,
    NoPassengersError,
    StartWindowClosedError,
    UnauthorizedError,
)
from .ride import RecurrenceSchedule, Ride, RideStatus


VALID_TRANSITIONS = {
    RideStatus.SCHEDULED: [RideStatus.IN_PROGRESS, RideStatus.CANCELED],
    RideStatus.IN_PROGRESS: [RideStatus.COMPLETED, RideStatus.CANCELED],
    RideStatus.COMPLETED: [],  # Terminal state
    RideStatus.CANCELED: [],   # Terminal state
}

RECURRENCE_STEPS = {
    RecurrenceSchedule.DAILY: timedelta(days=1),
    RecurrenceSchedule.WEEKLY: timedelta(days=7),
}


@dataclass
class StartPolicy:
    """Optional time window for starting a ride"""
    enforce_window: bool = False
    window_minutes: int = 15


def is_valid_transition(current_status: RideStatus, new_status: RideStatus) -> bool:
    return new_status in VALID_TRANSITIONS.get(current_status, [])


def _transition(ride: Ride, new_status: RideStatus, message: str):
    if not is_valid_transition(ride.status, new_status):
        raise InvalidStateError(message)
    ride.status = new_status
    if new_status in (RideStatus.COMPLETED, RideStatus.CANCELED):
        ride.active = False


def start_ride(
    ride: Ride,
    actor_id: UUID,
    owner_has_ride_in_progress: bool,
    now: Optional[datetime] = None,
    policy: Optional[StartPolicy] = None,
) -> Ride:
    """
    Move a scheduled ride to IN_PROGRESS.

    Raises:
        UnauthorizedError: caller is not the owner
        ConflictingRideInProgressError: owner is already driving another ride
        InvalidStateError: ride is not SCHEDULED
        StartWindowClosedError: outside the start window (only if enforced)
        NoPassengersError: nobody has been accepted
    """
    if not ride.is_owner(actor_id):
        raise UnauthorizedError("Only the ride owner can start the ride")
    if owner_has_ride_in_progress:
        raise ConflictingRideInProgressError(
            "You already have a ride in progress. End the current ride before starting a new one."
        )
    if ride.status != RideStatus.SCHEDULED:
        raise InvalidStateError(f"Ride cannot be started from current status: {ride.status.value}")

    policy = policy or StartPolicy()
    if policy.enforce_window and ride.start_time is not None:
        now = as_utc(now) or utcnow()
        earliest = as_utc(ride.start_time)
        latest = earliest + timedelta(minutes=policy.window_minutes)
        if now < earliest:
            raise StartWindowClosedError(
                f"Cannot start ride before the scheduled time {earliest.isoformat()}"
            )
        if now > latest:
            raise StartWindowClosedError(
                f"Cannot start ride more than {policy.window_minutes} minutes after "
                f"the scheduled time. Latest start time was {latest.isoformat()}"
            )

    if not ride.accepted_passengers:
        raise NoPassengersError("Cannot start ride without accepted passengers")

    _transition(ride, RideStatus.IN_PROGRESS, "Ride cannot be started")
    return ride


def end_ride(ride: Ride, actor_id: UUID) -> Ride:
    if not ride.is_owner(actor_id):
        raise UnauthorizedError("Only the ride owner can end the ride")
    if ride.status != RideStatus.IN_PROGRESS:
        raise InvalidStateError("Only rides in progress can be ended")

    _transition(ride, RideStatus.COMPLETED, "Only rides in progress can be ended")
    return ride


def cancel_ride(ride: Ride, actor_id: UUID, actor_role: Optional[str], admin_role: str = "ADMIN") -> Ride:
    """Cancel on behalf of the owner or an administrator."""
    if not ride.is_owner(actor_id) and actor_role != admin_role:
        raise UnauthorizedError("Only the ride owner or an admin can cancel the ride")
    if ride.status == RideStatus.COMPLETED:
        raise InvalidStateError("Cannot cancel a completed ride")
    if ride.status == RideStatus.CANCELED:
        raise InvalidStateError("Ride is already canceled")

    _transition(ride, RideStatus.CANCELED, "Ride cannot be canceled")
    return ride


# ===================== Recurring rides =====================

def next_occurrence(start_time: datetime, schedule: RecurrenceSchedule, now: Optional[datetime] = None) -> datetime:
    """First start time strictly after ``now``, stepping by the schedule"""
    step = RECURRENCE_STEPS[schedule]
    now = as_utc(now) or utcnow()
    candidate = as_utc(start_time) + step
    while candidate <= now:
        candidate += step
    return candidate


def build_next_ride(ride: Ride, now: Optional[datetime] = None) -> Optional[Ride]:
    """Fresh SCHEDULED copy of a recurring ride, or None if it does not recur"""
    schedule = ride.recurrence
    if schedule is None:
        return None

    now = as_utc(now) or utcnow()
    return Ride(
        owner_id=ride.owner_id,
        owner_name=ride.owner_name,
        owner_contact=ride.owner_contact,
        origin=ride.origin,
        destination=ride.destination,
        start_time=next_occurrence(ride.start_time, schedule, now),
        total_seats=ride.total_seats,
        price_per_seat=ride.price_per_seat,
        schedule=schedule.value,
        created_at=now,
    )
