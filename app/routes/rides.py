from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from ..database import get_db
from ..schemas.ride import (
    BookingRequest,
    EarningsResponse,
    MyRidesResponse,
    PaymentCollectRequest,
    RideCreateRequest,
    RideEndResponse,
    RideListResponse,
    RideResponse,
    RideUpdateRequest,
)
from ..services.ride_query_service import RideQueryService
from ..services.ride_service import RideService
from ..utils.user_client import UserInfo
from .deps import (
    get_current_user,
    get_current_user_id,
    get_ride_query_service,
    get_ride_service,
)
from .errors import ERROR_RESPONSES

router = APIRouter(prefix="/api/rides", tags=["rides"], responses=ERROR_RESPONSES)


# ===================== Listings =====================
# Static paths are declared before /{ride_id}

@router.post("", response_model=RideResponse, status_code=status.HTTP_201_CREATED)
async def create_ride(
    ride_data: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Offer a new ride"""
    ride = await rides.create_ride(ride_data, owner_id, db)
    return await views.present_one(ride)


@router.get("", response_model=RideListResponse)
async def list_rides(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    views: RideQueryService = Depends(get_ride_query_service),
):
    return await views.get_all_rides(limit, offset, db)


@router.get("/public", response_model=List[RideResponse])
async def public_rides(
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Active rides with free seats"""
    return await views.get_public_rides(origin, destination, db)


@router.get("/search", response_model=List[RideResponse])
async def search_rides(
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    on_date: Optional[str] = Query(None, alias="date", description="YYYY-MM-DD"),
    time_from: Optional[str] = Query(None, description="HH:MM"),
    time_to: Optional[str] = Query(None, description="HH:MM"),
    vehicle_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    views: RideQueryService = Depends(get_ride_query_service),
):
    return await views.search_rides(
        db,
        origin=origin,
        destination=destination,
        on_date=on_date,
        time_from=time_from,
        time_to=time_to,
        vehicle_type=vehicle_type,
    )


@router.get("/mine/offers", response_model=RideListResponse)
async def my_offers(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Rides offered by the caller"""
    return await views.get_my_offers(user_id, limit, offset, db)


@router.get("/mine/bookings", response_model=MyRidesResponse)
async def my_rides(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Rides the caller booked, is waiting on, or was turned away from"""
    return await views.get_my_rides(user_id, limit, offset, db)


@router.get("/owner/{owner_id}", response_model=List[RideResponse])
async def rides_by_owner(
    owner_id: UUID,
    db: AsyncSession = Depends(get_db),
    views: RideQueryService = Depends(get_ride_query_service),
):
    return await views.get_rides_by_owner(owner_id, db)


@router.get("/earnings/today", response_model=EarningsResponse)
async def today_earnings(
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    views: RideQueryService = Depends(get_ride_query_service),
):
    return await views.get_today_earnings(owner_id, db)


@router.get("/earnings/total", response_model=EarningsResponse)
async def total_earnings(
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    views: RideQueryService = Depends(get_ride_query_service),
):
    return await views.get_total_earnings(owner_id, db)


# ===================== Single ride =====================

@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: UUID,
    db: AsyncSession = Depends(get_db),
    views: RideQueryService = Depends(get_ride_query_service),
):
    return await views.get_ride(ride_id, db)


@router.patch("/{ride_id}", response_model=RideResponse)
async def update_ride(
    ride_id: UUID,
    patch: RideUpdateRequest,
    db: AsyncSession = Depends(get_db),
    actor: UserInfo = Depends(get_current_user),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Update ride details (owner or admin)"""
    ride = await rides.update_ride(ride_id, patch, actor, db)
    return await views.present_one(ride)


@router.delete("/{ride_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ride(
    ride_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
):
    await rides.delete_ride(ride_id, user_id, db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===================== Bookings =====================

@router.post("/{ride_id}/book", response_model=RideResponse)
async def book_ride(
    ride_id: UUID,
    booking: BookingRequest,
    db: AsyncSession = Depends(get_db),
    passenger_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Request seats on a ride"""
    ride = await rides.book_ride(ride_id, passenger_id, booking.seats_requested, booking.payment_method, db)
    return await views.present_one(ride)


@router.delete("/{ride_id}/book", response_model=RideResponse)
async def cancel_booking_request(
    ride_id: UUID,
    db: AsyncSession = Depends(get_db),
    passenger_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Withdraw the caller's pending request"""
    ride = await rides.cancel_booking_request(ride_id, passenger_id, db)
    return await views.present_one(ride)


@router.post("/{ride_id}/requests/{passenger_id}/accept", response_model=RideResponse)
async def accept_request(
    ride_id: UUID,
    passenger_id: UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    ride = await rides.accept_booking_request(ride_id, passenger_id, owner_id, db)
    return await views.present_one(ride)


@router.post("/{ride_id}/requests/{passenger_id}/reject", response_model=RideResponse)
async def reject_request(
    ride_id: UUID,
    passenger_id: UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    ride = await rides.reject_booking_request(ride_id, passenger_id, owner_id, db)
    return await views.present_one(ride)


@router.delete("/{ride_id}/passengers/{passenger_id}", response_model=RideResponse)
async def remove_passenger(
    ride_id: UUID,
    passenger_id: UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    ride = await rides.remove_passenger(ride_id, passenger_id, owner_id, db)
    return await views.present_one(ride)


@router.post("/{ride_id}/passengers/{passenger_id}/payment", response_model=RideResponse)
async def collect_payment(
    ride_id: UUID,
    passenger_id: UUID,
    payment: PaymentCollectRequest,
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Owner confirms the passenger paid"""
    ride = await rides.mark_payment_collected(ride_id, passenger_id, owner_id, payment.amount, db)
    return await views.present_one(ride)


# ===================== Lifecycle =====================

@router.post("/{ride_id}/start", response_model=RideResponse)
async def start_ride(
    ride_id: UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    ride = await rides.start_ride(ride_id, owner_id, db)
    return await views.present_one(ride)


@router.post("/{ride_id}/end", response_model=RideEndResponse)
async def end_ride(
    ride_id: UUID,
    db: AsyncSession = Depends(get_db),
    owner_id: UUID = Depends(get_current_user_id),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    ride, next_ride = await rides.end_ride(ride_id, owner_id, db)
    return RideEndResponse(
        ride=await views.present_one(ride),
        next_ride=await views.present_one(next_ride) if next_ride else None,
    )


@router.post("/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: UserInfo = Depends(get_current_user),
    rides: RideService = Depends(get_ride_service),
    views: RideQueryService = Depends(get_ride_query_service),
):
    """Cancel a ride (owner or admin)"""
    ride = await rides.cancel_ride(ride_id, actor.id, actor.role, db)
    return await views.present_one(ride)
