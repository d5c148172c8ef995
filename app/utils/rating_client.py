import asyncio
import logging
from typing import Dict, Iterable, Optional
from uuid import UUID

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class RatingClient:
    """Average driver ratings from the Review Service (enrichment only)"""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or settings.review_service_url
        self.transport = transport

    async def average_rating(self, driver_id: UUID) -> float:
        """Rating in [0, 5] rounded to one decimal; 0.0 without reviews or on failure"""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.external_timeout_seconds,
                transport=self.transport,
            ) as client:
                response = await client.get(f"/api/reviews/drivers/{driver_id}/average")
            if response.status_code == 404:
                return 0.0
            response.raise_for_status()
            rating = float(response.json().get("average_rating") or 0.0)
            return round(min(max(rating, 0.0), 5.0), 1)
        except Exception as e:
            logger.warning(f"Failed to get rating for driver {driver_id}: {e}")
            return 0.0

    async def average_ratings(self, driver_ids: Iterable[UUID]) -> Dict[UUID, float]:
        unique_ids = list(dict.fromkeys(driver_ids))
        ratings = await asyncio.gather(*(self.average_rating(d) for d in unique_ids))
        return dict(zip(unique_ids, ratings))


# Global rating client instance
rating_client = RatingClient()
