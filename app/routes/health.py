from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from datetime import datetime
from typing import Dict

from ..database import check_database_health
from ..utils.clock import utcnow
from ..utils.redis_client import redis_client

router = APIRouter(prefix="/api/rides", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: datetime
    dependencies: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Readiness probe: storage and Redis must both answer"""
    checks = {
        "database": await check_database_health(),
        "redis": await redis_client.health_check(),
    }
    healthy = all(checks.values())

    response = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        service="ride-booking",
        timestamp=utcnow(),
        dependencies={name: "connected" if ok else "disconnected" for name, ok in checks.items()},
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json"),
    )
