from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Iterable, List, Optional
import logging
import re
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal

from ..domain.exceptions import ValidationError
from ..domain.ride import PaymentMethod, PaymentStatus, Ride
from ..models.ride import MembershipKind
from ..repositories.ride_repository import RideRepository, ride_repository
from ..schemas.ride import EarningsResponse, MyRidesResponse, RideListResponse, RideResponse
from ..utils.clock import as_utc, utcnow
from ..utils.rating_client import RatingClient, rating_client
from ..utils.user_client import UserClient, user_client

logger = logging.getLogger(__name__)

TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class RideQueryService:
    """Read-side views over rides; nothing here writes"""

    def __init__(
        self,
        repository: Optional[RideRepository] = None,
        users: Optional[UserClient] = None,
        ratings: Optional[RatingClient] = None,
    ):
        self.repository = repository or ride_repository
        self.users = users or user_client
        self.ratings = ratings or rating_client

    async def present(self, rides: Iterable[Ride]) -> List[RideResponse]:
        """Ride views enriched with each owner's average rating"""
        rides = list(rides)
        if not rides:
            return []
        ratings = await self.ratings.average_ratings(r.owner_id for r in rides)
        return [RideResponse.from_ride(r, ratings.get(r.owner_id, 0.0)) for r in rides]

    async def present_one(self, ride: Ride) -> RideResponse:
        return (await self.present([ride]))[0]

    # ===================== Single ride / listings =====================

    async def get_ride(self, ride_id: UUID, db: AsyncSession) -> RideResponse:
        ride = await self.repository.get(db, ride_id)
        return await self.present_one(ride)

    async def get_all_rides(self, limit: int, offset: int, db: AsyncSession) -> RideListResponse:
        rides, total = await self.repository.list_rides(db, limit, offset)
        return RideListResponse(rides=await self.present(rides), total=total, limit=limit, offset=offset)

    async def get_public_rides(
        self,
        origin: Optional[str],
        destination: Optional[str],
        db: AsyncSession,
    ) -> List[RideResponse]:
        rides = await self.repository.list_open_rides(db, origin, destination)
        logger.info(f"Found {len(rides)} public rides - origin: {origin}, destination: {destination}")
        return await self.present(rides)

    async def search_rides(
        self,
        db: AsyncSession,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        on_date: Optional[str] = None,
        time_from: Optional[str] = None,
        time_to: Optional[str] = None,
        vehicle_type: Optional[str] = None,
    ) -> List[RideResponse]:
        """
        Open rides filtered by route, departure date and time-of-day window.

        Args:
            on_date: departure date as YYYY-MM-DD
            time_from: earliest departure time of day as HH:MM (inclusive)
            time_to: latest departure time of day as HH:MM (inclusive)
            vehicle_type: owner's vehicle type, case-insensitive
        """
        day = self._parse_date(on_date) if on_date else None
        for value in (time_from, time_to):
            if value and not TIME_OF_DAY.match(value):
                raise ValidationError(f"Invalid time '{value}', expected HH:MM")

        rides = await self.repository.list_open_rides(db, origin, destination)

        if day:
            rides = [r for r in rides if as_utc(r.start_time).date() == day]

        if time_from or time_to:
            def in_window(ride: Ride) -> bool:
                ride_time = as_utc(ride.start_time).strftime("%H:%M")
                return (not time_from or ride_time >= time_from) and (not time_to or ride_time <= time_to)

            rides = [r for r in rides if in_window(r)]

        if vehicle_type:
            rides = await self._filter_by_vehicle_type(rides, vehicle_type)

        logger.info(f"Search found {len(rides)} rides after filtering")
        return await self.present(rides)

    @staticmethod
    def _parse_date(value: str) -> date:
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError:
            raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")

    async def _filter_by_vehicle_type(self, rides: List[Ride], vehicle_type: str) -> List[Ride]:
        wanted = vehicle_type.strip().lower()
        owner_vehicles: Dict[UUID, Optional[str]] = {}
        matches = []
        for ride in rides:
            if ride.owner_id not in owner_vehicles:
                try:
                    owner = await self.users.get_user_by_id(ride.owner_id)
                    owner_vehicles[ride.owner_id] = (owner.vehicle_type or "").lower()
                except Exception as e:
                    logger.warning(f"Error filtering by vehicle type for ride {ride.id}: {e}")
                    owner_vehicles[ride.owner_id] = None
            if owner_vehicles[ride.owner_id] == wanted:
                matches.append(ride)
        return matches

    # ===================== Per-user views =====================

    async def get_my_offers(self, owner_id: UUID, limit: int, offset: int, db: AsyncSession) -> RideListResponse:
        rides, total = await self.repository.list_by_owner(db, owner_id, limit, offset)
        return RideListResponse(rides=await self.present(rides), total=total, limit=limit, offset=offset)

    async def get_rides_by_owner(self, owner_id: UUID, db: AsyncSession) -> List[RideResponse]:
        rides, _ = await self.repository.list_by_owner(db, owner_id)
        logger.info(f"Found {len(rides)} rides for owner: {owner_id}")
        return await self.present(rides)

    async def get_my_rides(self, user_id: UUID, limit: int, offset: int, db: AsyncSession) -> MyRidesResponse:
        """Rides the user is approved on, waiting on, or was turned away from"""
        approved, total_approved = await self.repository.list_by_membership(
            db, user_id, MembershipKind.APPROVED, limit, offset
        )
        pending, total_pending = await self.repository.list_by_membership(
            db, user_id, MembershipKind.PENDING, limit, offset
        )
        canceled, total_canceled = await self.repository.list_by_membership(
            db, user_id, MembershipKind.CANCELED, limit, offset
        )

        return MyRidesResponse(
            approved_rides=await self.present(approved),
            pending_requests=await self.present(pending),
            canceled_rides=await self.present(canceled),
            total_approved=total_approved,
            total_pending=total_pending,
            total_canceled=total_canceled,
        )

    # ===================== Earnings =====================

    async def get_today_earnings(
        self,
        owner_id: UUID,
        db: AsyncSession,
        today: Optional[date] = None,
    ) -> EarningsResponse:
        today = today or utcnow().date()
        rides, _ = await self.repository.list_by_owner(db, owner_id)
        earnings = self._fold_earnings(
            rides, lambda collected_at: as_utc(collected_at).date() == today
        )
        earnings.day = today
        logger.info(f"Today's earnings for {owner_id} - Cash: {earnings.cash_earnings}, Card: {earnings.card_earnings}")
        return earnings

    async def get_total_earnings(self, owner_id: UUID, db: AsyncSession) -> EarningsResponse:
        rides, _ = await self.repository.list_by_owner(db, owner_id)
        earnings = self._fold_earnings(rides, lambda collected_at: True)
        logger.info(f"Total earnings for {owner_id} - Cash: {earnings.cash_earnings}, Card: {earnings.card_earnings}")
        return earnings

    @staticmethod
    def _fold_earnings(rides: Iterable[Ride], include) -> EarningsResponse:
        totals = {PaymentMethod.CASH: Decimal("0"), PaymentMethod.CARD: Decimal("0")}
        counts = {PaymentMethod.CASH: 0, PaymentMethod.CARD: 0}

        for ride in rides:
            for booking in ride.bookings.values():
                if (
                    booking.payment_status != PaymentStatus.COMPLETED
                    or booking.payment_collected_at is None
                    or booking.amount_paid is None
                    or not include(booking.payment_collected_at)
                ):
                    continue
                totals[booking.payment_method] += booking.amount_paid
                counts[booking.payment_method] += 1

        return EarningsResponse(
            cash_earnings=totals[PaymentMethod.CASH],
            card_earnings=totals[PaymentMethod.CARD],
            total_earnings=totals[PaymentMethod.CASH] + totals[PaymentMethod.CARD],
            cash_payments_count=counts[PaymentMethod.CASH],
            card_payments_count=counts[PaymentMethod.CARD],
        )
