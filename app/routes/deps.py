from fastapi import Depends, HTTPException, status, Header
from typing import Optional
from uuid import UUID

from ..services.ride_query_service import RideQueryService
from ..services.ride_service import RideService
from ..utils.user_client import UserClient, UserInfo, user_client

# Service instances
ride_service = RideService()
ride_query_service = RideQueryService()


def get_ride_service() -> RideService:
    return ride_service


def get_ride_query_service() -> RideQueryService:
    return ride_query_service


def get_user_client() -> UserClient:
    return user_client


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> UUID:
    """Caller identity; the bearer token is verified upstream by the gateway"""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header"
        )
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity"
        )
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity"
        )


async def get_current_user(
    user_id: UUID = Depends(get_current_user_id),
    users: UserClient = Depends(get_user_client),
) -> UserInfo:
    """Caller identity with role, resolved through the User Service"""
    return await users.get_user_by_id(user_id)
