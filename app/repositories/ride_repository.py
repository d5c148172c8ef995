"""
Persistence for the ride aggregate.

A ride is always written as a whole: the row, its embedded bookings and its
membership index rows go out in one transaction. Writes are guarded by the
``version`` column, so a save based on a stale read updates nothing and
raises ConcurrentModificationError instead of overwriting the newer state.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..domain.exceptions import (
    ConcurrentModificationError,
    RideNotFoundError,
    StorageUnavailableError,
)
from ..domain.ride import (
    Booking,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    Ride,
    RideStatus,
)
from ..models.ride import MembershipKind, RideMembership, RideRecord
from ..utils.clock import as_utc

logger = logging.getLogger(__name__)


# ===================== Document mapping =====================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return as_utc(datetime.fromisoformat(value)) if value else None


def booking_to_document(booking: Booking) -> Dict[str, Any]:
    return {
        "id": str(booking.id),
        "ride_id": str(booking.ride_id),
        "passenger_id": str(booking.passenger_id),
        "passenger_name": booking.passenger_name,
        "seats_requested": booking.seats_requested,
        "status": booking.status.value,
        "payment_method": booking.payment_method.value,
        "payment_status": booking.payment_status.value,
        "amount_paid": str(booking.amount_paid) if booking.amount_paid is not None else None,
        "payment_collected_at": _iso(booking.payment_collected_at),
        "requested_at": _iso(booking.requested_at),
    }


def booking_from_document(doc: Dict[str, Any]) -> Booking:
    amount = doc.get("amount_paid")
    return Booking(
        id=UUID(doc["id"]),
        ride_id=UUID(doc["ride_id"]),
        passenger_id=UUID(doc["passenger_id"]),
        passenger_name=doc.get("passenger_name"),
        seats_requested=int(doc.get("seats_requested") or 1),
        status=BookingStatus(doc["status"]),
        payment_method=PaymentMethod(doc.get("payment_method") or PaymentMethod.CASH.value),
        payment_status=PaymentStatus(doc.get("payment_status") or PaymentStatus.PENDING.value),
        amount_paid=Decimal(amount) if amount is not None else None,
        payment_collected_at=_parse_dt(doc.get("payment_collected_at")),
        requested_at=_parse_dt(doc.get("requested_at")),
    )


def record_to_ride(record: RideRecord) -> Ride:
    bookings = [booking_from_document(doc) for doc in (record.bookings or [])]
    return Ride(
        id=record.id,
        owner_id=record.owner_id,
        owner_name=record.owner_name,
        owner_contact=record.owner_contact,
        origin=record.origin,
        destination=record.destination,
        start_time=as_utc(record.start_time),
        schedule=record.schedule,
        total_seats=record.total_seats,
        price_per_seat=Decimal(str(record.price_per_seat)),
        status=RideStatus(record.status),
        active=record.active,
        created_at=as_utc(record.created_at),
        version=record.version,
        bookings={b.passenger_id: b for b in bookings},
        canceled_requests=[UUID(pid) for pid in (record.canceled_requests or [])],
    )


def ride_to_values(ride: Ride) -> Dict[str, Any]:
    """Column values for a ride row, excluding identity and version"""
    return {
        "owner_id": ride.owner_id,
        "owner_name": ride.owner_name,
        "owner_contact": ride.owner_contact,
        "origin": ride.origin,
        "destination": ride.destination,
        "start_time": ride.start_time,
        "schedule": ride.schedule,
        "total_seats": ride.total_seats,
        "seats_available": ride.seats_available,
        "price_per_seat": ride.price_per_seat,
        "status": ride.status,
        "active": ride.active,
        "bookings": [booking_to_document(b) for b in ride.bookings.values()],
        "canceled_requests": [str(pid) for pid in ride.canceled_requests],
    }


class RideRepository:

    async def _bounded(self, awaitable):
        """Await a storage call within the configured timeout"""
        try:
            return await asyncio.wait_for(awaitable, timeout=settings.storage_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Storage call timed out after {settings.storage_timeout_seconds}s")
            raise StorageUnavailableError("Storage did not respond in time, please retry")
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.error(f"Storage connection lost: {e}")
                raise StorageUnavailableError("Storage connection lost, please retry")
            raise

    # ===================== Aggregate access =====================

    async def find(self, db: AsyncSession, ride_id: UUID) -> Optional[Ride]:
        stmt = (
            select(RideRecord)
            .where(RideRecord.id == ride_id)
            .execution_options(populate_existing=True)
        )
        result = await self._bounded(db.execute(stmt))
        record = result.scalar_one_or_none()
        return record_to_ride(record) if record else None

    async def get(self, db: AsyncSession, ride_id: UUID) -> Ride:
        ride = await self.find(db, ride_id)
        if ride is None:
            logger.warning(f"Ride {ride_id} not found")
            raise RideNotFoundError(f"Ride not found with id: {ride_id}")
        return ride

    async def add(self, db: AsyncSession, ride: Ride) -> Ride:
        ride.check_invariants()
        record = RideRecord(
            id=ride.id,
            created_at=ride.created_at,
            version=0,
            **ride_to_values(ride),
        )
        db.add(record)
        await self._bounded(db.flush())
        await self._write_memberships(db, ride)
        ride.version = 0
        return ride

    async def save(self, db: AsyncSession, ride: Ride) -> Ride:
        """Write the whole aggregate if nobody else wrote it since it was loaded"""
        ride.check_invariants()
        stmt = (
            update(RideRecord)
            .where(RideRecord.id == ride.id, RideRecord.version == ride.version)
            .values(version=ride.version + 1, **ride_to_values(ride))
            .execution_options(synchronize_session=False)
        )
        result = await self._bounded(db.execute(stmt))
        if result.rowcount == 0:
            logger.warning(f"Version conflict saving ride {ride.id} at version {ride.version}")
            raise ConcurrentModificationError(
                "Ride was modified by another request, please retry"
            )

        await self._write_memberships(db, ride)
        ride.version += 1
        return ride

    async def delete(self, db: AsyncSession, ride_id: UUID) -> bool:
        await self._bounded(db.execute(delete(RideMembership).where(RideMembership.ride_id == ride_id)))
        result = await self._bounded(db.execute(delete(RideRecord).where(RideRecord.id == ride_id)))
        return result.rowcount > 0

    async def _write_memberships(self, db: AsyncSession, ride: Ride):
        await self._bounded(db.execute(delete(RideMembership).where(RideMembership.ride_id == ride.id)))

        rows = [
            {"ride_id": ride.id, "passenger_id": pid, "kind": MembershipKind.PENDING}
            for pid in ride.requests
        ]
        rows += [
            {"ride_id": ride.id, "passenger_id": pid, "kind": MembershipKind.APPROVED}
            for pid in ride.accepted_passengers
        ]
        rows += [
            {"ride_id": ride.id, "passenger_id": pid, "kind": MembershipKind.CANCELED}
            for pid in ride.canceled_requests
        ]
        if rows:
            await self._bounded(db.execute(insert(RideMembership), rows))

    # ===================== Read helpers =====================

    async def _page(self, db: AsyncSession, stmt, limit: Optional[int], offset: int) -> Tuple[List[Ride], int]:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await self._bounded(db.execute(count_stmt))).scalar_one()

        if limit is not None:
            stmt = stmt.limit(limit).offset(offset)
        result = await self._bounded(db.execute(stmt))
        return [record_to_ride(r) for r in result.scalars().all()], total

    async def list_rides(self, db: AsyncSession, limit: int = 20, offset: int = 0) -> Tuple[List[Ride], int]:
        stmt = select(RideRecord).order_by(RideRecord.start_time.desc())
        return await self._page(db, stmt, limit, offset)

    async def list_open_rides(
        self,
        db: AsyncSession,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
    ) -> List[Ride]:
        """Active rides with at least one free seat, optionally matching the route"""
        stmt = select(RideRecord).where(
            RideRecord.active.is_(True),
            RideRecord.seats_available > 0,
        )
        if origin:
            stmt = stmt.where(RideRecord.origin.icontains(origin, autoescape=True))
        if destination:
            stmt = stmt.where(RideRecord.destination.icontains(destination, autoescape=True))
        stmt = stmt.order_by(RideRecord.start_time.asc())

        result = await self._bounded(db.execute(stmt))
        return [record_to_ride(r) for r in result.scalars().all()]

    async def list_by_owner(
        self,
        db: AsyncSession,
        owner_id: UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Ride], int]:
        stmt = (
            select(RideRecord)
            .where(RideRecord.owner_id == owner_id)
            .order_by(RideRecord.start_time.desc())
        )
        return await self._page(db, stmt, limit, offset)

    async def list_by_membership(
        self,
        db: AsyncSession,
        passenger_id: UUID,
        kind: MembershipKind,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Ride], int]:
        stmt = (
            select(RideRecord)
            .join(RideMembership, RideMembership.ride_id == RideRecord.id)
            .where(RideMembership.passenger_id == passenger_id, RideMembership.kind == kind)
            .order_by(RideRecord.start_time.desc())
        )
        return await self._page(db, stmt, limit, offset)

    async def owner_has_ride_in_progress(
        self,
        db: AsyncSession,
        owner_id: UUID,
        exclude_ride_id: Optional[UUID] = None,
    ) -> bool:
        stmt = select(func.count()).select_from(RideRecord).where(
            RideRecord.owner_id == owner_id,
            RideRecord.status == RideStatus.IN_PROGRESS,
        )
        if exclude_ride_id is not None:
            stmt = stmt.where(RideRecord.id != exclude_ride_id)
        count = (await self._bounded(db.execute(stmt))).scalar_one()
        return count > 0


# Global repository instance
ride_repository = RideRepository()
