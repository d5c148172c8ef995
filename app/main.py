from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import time
import uuid
import structlog

from .config import settings
from .database import create_tables
from .logging_config import configure_logging
from .utils.redis_client import redis_client
from .routes import health, rides
from .routes.errors import register_exception_handlers

configure_logging(settings.log_level)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and connect to Redis; Redis being down only silences notifications"""
    logger.info("Starting Ride Booking Service", database=settings.database_url.split("@")[-1])

    await create_tables()
    try:
        await redis_client.connect()
    except Exception as e:
        logger.warning("Redis unavailable, notifications will be dropped", error=str(e))

    try:
        yield
    finally:
        logger.info("Shutting down Ride Booking Service")
        try:
            await redis_client.disconnect()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))


app = FastAPI(
    title="Ride Booking Service",
    description="Ride offers, seat bookings and the ride lifecycle",
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag every log line of a request with its correlation id"""
    correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    started = time.perf_counter()
    logger.info("Request started", method=request.method, path=request.url.path)

    response = await call_next(request)

    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    response.headers["x-correlation-id"] = correlation_id
    return response


# health first, otherwise /api/rides/health is read as a ride id
app.include_router(health.router)
app.include_router(rides.router)


@app.get("/")
async def root():
    return {
        "service": "ride-booking",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "rides": "/api/rides",
            "health": "/api/rides/health",
            "docs": "/docs",
        }
    }


@app.get("/health")
async def simple_health():
    """Liveness for load balancers; no dependency checks"""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
