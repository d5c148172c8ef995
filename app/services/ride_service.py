from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Awaitable, Callable, Optional, Tuple
import logging
from uuid import UUID
from decimal import Decimal

from ..config import settings
from ..domain import lifecycle
from ..domain.exceptions import (
    ConcurrentModificationError,
    RideServiceError,
    UnauthorizedError,
    ValidationError,
)
from ..domain.ride import PaymentMethod, Ride
from ..repositories.ride_repository import RideRepository, ride_repository
from ..schemas.ride import RideCreateRequest, RideUpdateRequest
from ..utils.clock import as_utc, utcnow
from ..utils.side_effects import best_effort
from ..utils.user_client import UserClient, UserInfo, user_client
from .event_service import EventService

logger = logging.getLogger(__name__)

Mutation = Callable[[Ride], Awaitable[Any]]


class RideService:
    """Commands on the ride aggregate.

    Each command loads one ride, applies a single transition, and writes the
    whole ride back under a version check. A version conflict means another
    request got there first: the command starts over from a fresh load, up to
    ``settings.max_write_retries`` attempts. Notifications go out only after
    the commit and can never fail the command.
    """

    def __init__(
        self,
        repository: Optional[RideRepository] = None,
        users: Optional[UserClient] = None,
        events: Optional[EventService] = None,
    ):
        self.repository = repository or ride_repository
        self.users = users or user_client
        self.events = events or EventService()

    async def _mutate(self, db: AsyncSession, ride_id: UUID, action: str, mutation: Mutation) -> Tuple[Ride, Any]:
        attempts = max(1, settings.max_write_retries)
        for attempt in range(1, attempts + 1):
            try:
                ride = await self.repository.get(db, ride_id)
                outcome = await mutation(ride)
                await self.repository.save(db, ride)
                await db.commit()
                return ride, outcome
            except ConcurrentModificationError:
                await db.rollback()
                logger.warning(f"Concurrent update on ride {ride_id} during {action} (attempt {attempt}/{attempts})")
            except RideServiceError as e:
                await db.rollback()
                logger.warning(f"Rejected {action} on ride {ride_id}: {e.message}")
                raise
            except Exception as e:
                await db.rollback()
                logger.error(f"Failed to {action} on ride {ride_id}: {e}")
                raise

        raise ConcurrentModificationError(
            "Ride is being modified by other requests, please retry"
        )

    async def _notify(self, user_id: UUID, message: str, severity: str, ride_id: UUID):
        await best_effort(
            f"notify {user_id}",
            lambda: self.events.notify(user_id, message, severity, ride_id),
        )

    async def _publish(self, event_type: str, ride: Ride):
        await best_effort(
            event_type,
            lambda: self.events.publish_ride_event(event_type, {
                "ride_id": str(ride.id),
                "owner_id": str(ride.owner_id),
                "status": ride.status.value,
            }),
        )

    # ===================== Ride management =====================

    async def create_ride(self, ride_data: RideCreateRequest, owner_id: UUID, db: AsyncSession) -> Ride:
        """Create a new scheduled ride owned by ``owner_id``"""
        if ride_data.total_seats is None or ride_data.total_seats < 1:
            raise ValidationError("Total seats must be at least 1")
        if ride_data.price_per_seat is None or ride_data.price_per_seat <= 0:
            raise ValidationError("Price per seat must be greater than 0")

        owner = await self.users.get_user_by_id(owner_id)
        now = utcnow()

        ride = Ride(
            owner_id=owner.id,
            owner_name=owner.name,
            owner_contact=ride_data.owner_contact or owner.contact,
            origin=ride_data.origin,
            destination=ride_data.destination,
            start_time=as_utc(ride_data.start_time),
            schedule=ride_data.schedule.value if ride_data.schedule else None,
            total_seats=ride_data.total_seats,
            price_per_seat=Decimal(str(ride_data.price_per_seat)),
            created_at=now,
        )

        try:
            await self.repository.add(db, ride)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create ride: {e}")
            raise

        logger.info(f"Created ride {ride.id} from {ride.origin} to {ride.destination} for owner {owner.id}")
        await self._publish("ride_created", ride)
        return ride

    async def update_ride(self, ride_id: UUID, patch: RideUpdateRequest, actor: UserInfo, db: AsyncSession) -> Ride:
        """Apply the fields present in ``patch``; absent fields stay unchanged"""
        changes = patch.model_dump(exclude_unset=True)

        async def apply(ride: Ride):
            if not ride.is_owner(actor.id) and actor.role != settings.admin_role:
                raise UnauthorizedError("Only ride owner or admin can update the ride")

            if "total_seats" in changes:
                ride.change_total_seats(changes["total_seats"])
            if "origin" in changes:
                ride.origin = changes["origin"]
            if "destination" in changes:
                ride.destination = changes["destination"]
            if "start_time" in changes:
                ride.start_time = as_utc(changes["start_time"])
            if "price_per_seat" in changes:
                ride.price_per_seat = Decimal(str(changes["price_per_seat"]))
            if "schedule" in changes:
                schedule = changes["schedule"]
                ride.schedule = schedule.value if schedule else None
            if "owner_contact" in changes:
                ride.owner_contact = changes["owner_contact"]

        ride, _ = await self._mutate(db, ride_id, "update", apply)
        logger.info(f"Updated ride {ride_id} fields: {sorted(changes)}")
        return ride

    async def delete_ride(self, ride_id: UUID, actor_id: UUID, db: AsyncSession):
        try:
            ride = await self.repository.get(db, ride_id)
            if not ride.is_owner(actor_id):
                raise UnauthorizedError("Only ride owner can delete the ride")
            await self.repository.delete(db, ride_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Deleted ride {ride_id}")

    # ===================== Bookings =====================

    async def book_ride(
        self,
        ride_id: UUID,
        passenger_id: UUID,
        seats_requested: int,
        payment_method: PaymentMethod,
        db: AsyncSession,
    ) -> Ride:
        """Passenger asks for seats; the owner decides later"""
        passenger_name = None
        try:
            passenger_name = (await self.users.get_user_by_id(passenger_id)).name
        except Exception as e:
            logger.warning(f"Could not fetch passenger name for {passenger_id}: {e}")

        async def request(ride: Ride):
            return ride.request_seats(passenger_id, seats_requested, payment_method, passenger_name)

        ride, _ = await self._mutate(db, ride_id, "book", request)
        logger.info(f"Added booking request for user {passenger_id} to ride {ride_id} with {seats_requested} seats")

        await self._notify(
            ride.owner_id,
            f"New booking request from {passenger_name or 'a user'} {ride.origin} to {ride.destination}",
            "INFO",
            ride.id,
        )
        return ride

    async def cancel_booking_request(self, ride_id: UUID, passenger_id: UUID, db: AsyncSession) -> Ride:
        async def withdraw(ride: Ride):
            return ride.cancel_own_request(passenger_id)

        ride, _ = await self._mutate(db, ride_id, "cancel booking request", withdraw)
        logger.info(f"Canceled booking request for user {passenger_id} on ride {ride_id}")

        await self._notify(
            ride.owner_id, "A passenger canceled their request for your ride", "WARNING", ride.id
        )
        return ride

    def _owner_only(self, ride: Ride, actor_id: UUID, action: str):
        if not ride.is_owner(actor_id):
            logger.warning(f"User {actor_id} tried to {action} on ride {ride.id} they don't own")
            raise UnauthorizedError(f"Only ride owner can {action}")

    async def accept_booking_request(self, ride_id: UUID, passenger_id: UUID, owner_id: UUID, db: AsyncSession) -> Ride:
        async def accept(ride: Ride):
            self._owner_only(ride, owner_id, "accept requests")
            return ride.accept_request(passenger_id)

        ride, booking = await self._mutate(db, ride_id, "accept request", accept)
        logger.info(f"Accepted passenger {passenger_id} for ride {ride_id} with {booking.seats_requested} seats")

        await self._notify(
            passenger_id,
            f"Your request for ride {ride.origin} -> {ride.destination} has been accepted!",
            "SUCCESS",
            ride.id,
        )
        return ride

    async def reject_booking_request(self, ride_id: UUID, passenger_id: UUID, owner_id: UUID, db: AsyncSession) -> Ride:
        async def reject(ride: Ride):
            self._owner_only(ride, owner_id, "reject requests")
            return ride.reject_request(passenger_id)

        ride, _ = await self._mutate(db, ride_id, "reject request", reject)
        logger.info(f"Rejected passenger {passenger_id} for ride {ride_id}")

        await self._notify(
            passenger_id,
            f"Your request for ride {ride.origin} -> {ride.destination} has been rejected.",
            "ERROR",
            ride.id,
        )
        return ride

    async def remove_passenger(self, ride_id: UUID, passenger_id: UUID, owner_id: UUID, db: AsyncSession) -> Ride:
        async def remove(ride: Ride):
            self._owner_only(ride, owner_id, "remove passengers")
            return ride.remove_passenger(passenger_id)

        ride, booking = await self._mutate(db, ride_id, "remove passenger", remove)
        logger.info(f"Removed passenger {passenger_id} from ride {ride_id} and restored {max(1, booking.seats_requested)} seats")

        await self._notify(
            passenger_id,
            f"You have been removed from the ride {ride.origin} -> {ride.destination}.",
            "WARNING",
            ride.id,
        )
        return ride

    async def mark_payment_collected(
        self,
        ride_id: UUID,
        passenger_id: UUID,
        owner_id: UUID,
        amount: Decimal,
        db: AsyncSession,
    ) -> Ride:
        async def collect(ride: Ride):
            self._owner_only(ride, owner_id, "mark payment as collected")
            return ride.mark_payment_collected(passenger_id, amount, utcnow())

        ride, booking = await self._mutate(db, ride_id, "collect payment", collect)
        logger.info(f"Payment of {booking.amount_paid} collected for ride {ride_id}, passenger {passenger_id}")

        await self._notify(
            passenger_id,
            f"Payment of {booking.amount_paid} for your ride has been confirmed.",
            "SUCCESS",
            ride.id,
        )
        return ride

    # ===================== Lifecycle =====================

    async def start_ride(self, ride_id: UUID, actor_id: UUID, db: AsyncSession) -> Ride:
        policy = lifecycle.StartPolicy(
            enforce_window=settings.enforce_start_window,
            window_minutes=settings.start_window_minutes,
        )

        async def start(ride: Ride):
            busy = False
            if ride.is_owner(actor_id):
                busy = await self.repository.owner_has_ride_in_progress(db, ride.owner_id, exclude_ride_id=ride.id)
            return lifecycle.start_ride(ride, actor_id, busy, utcnow(), policy)

        ride, _ = await self._mutate(db, ride_id, "start ride", start)
        logger.info(f"Started ride {ride_id}")

        await self._publish("ride_started", ride)
        await self._notify(actor_id, "You started the ride. Drive safely!", "SUCCESS", ride.id)
        for passenger_id in ride.accepted_passengers:
            await self._notify(
                passenger_id, "The ride has started! Please have your payment ready.", "INFO", ride.id
            )
        return ride

    async def end_ride(self, ride_id: UUID, actor_id: UUID, db: AsyncSession) -> Tuple[Ride, Optional[Ride]]:
        """Complete the ride; a recurring ride also gets its next occurrence"""
        async def end(ride: Ride):
            return lifecycle.end_ride(ride, actor_id)

        ride, _ = await self._mutate(db, ride_id, "end ride", end)
        logger.info(f"Ride {ride_id} marked as COMPLETED. Schedule: '{ride.schedule}'")

        next_ride = None
        if settings.auto_reschedule and ride.recurrence is not None:
            next_ride = await best_effort(
                f"reschedule ride {ride_id}", lambda: self._reschedule(ride, db)
            )

        await self._publish("ride_completed", ride)
        for passenger_id in ride.accepted_passengers:
            await self._notify(
                passenger_id, "The ride has ended. Please take a moment to rate your driver.", "INFO", ride.id
            )
        return ride, next_ride

    async def _reschedule(self, ride: Ride, db: AsyncSession) -> Optional[Ride]:
        next_ride = lifecycle.build_next_ride(ride, utcnow())
        if next_ride is None:
            return None
        try:
            await self.repository.add(db, next_ride)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Rescheduled {ride.schedule} ride {ride.id} as {next_ride.id} at {next_ride.start_time.isoformat()}")
        return next_ride

    async def cancel_ride(self, ride_id: UUID, actor_id: UUID, actor_role: Optional[str], db: AsyncSession) -> Ride:
        async def cancel(ride: Ride):
            return lifecycle.cancel_ride(ride, actor_id, actor_role, settings.admin_role)

        ride, _ = await self._mutate(db, ride_id, "cancel ride", cancel)
        logger.info(f"Ride {ride_id} canceled by {actor_id}")

        await self._publish("ride_canceled", ride)
        for passenger_id in ride.accepted_passengers:
            await self._notify(
                passenger_id, "The ride has been canceled by the owner.", "WARNING", ride.id
            )
        return ride
