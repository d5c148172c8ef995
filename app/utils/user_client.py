import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import httpx

from ..config import settings
from ..domain.exceptions import UnavailableError, UserNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class UserInfo:
    id: UUID
    name: str
    role: str = "USER"
    vehicle_type: Optional[str] = None
    contact: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "UserInfo":
        return cls(
            id=UUID(str(payload["id"])),
            name=payload.get("name") or "",
            role=(payload.get("role") or "USER").upper(),
            vehicle_type=payload.get("vehicle_type") or payload.get("vehicleType"),
            contact=payload.get("contact") or payload.get("phone"),
        )


class UserClient:
    """Read-only lookups against the User Service"""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or settings.user_service_url
        self.transport = transport

    async def _fetch(self, path: str, params: Optional[dict] = None) -> UserInfo:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.external_timeout_seconds,
                transport=self.transport,
            ) as client:
                response = await client.get(path, params=params)
            if response.status_code == 404:
                raise UserNotFoundError("User not found")
            response.raise_for_status()
            return UserInfo.from_payload(response.json())
        except httpx.HTTPError as e:
            logger.error(f"User service request failed: {e}")
            raise UnavailableError("User service unavailable, please retry")
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"User service sent an unreadable user: {e}")
            raise UnavailableError("User service returned an invalid response, please retry")

    async def get_user_by_id(self, user_id: UUID) -> UserInfo:
        return await self._fetch(f"/api/users/{user_id}")

    async def get_user_by_email(self, email: str) -> UserInfo:
        return await self._fetch("/api/users/lookup", params={"email": email})


# Global user client instance
user_client = UserClient()
