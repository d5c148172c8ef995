import os

# Settings are read at import time; point storage at SQLite before anything in app loads
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.config import settings
from app.domain.exceptions import UserNotFoundError
from app.domain.ride import Ride
from app.repositories.ride_repository import RideRepository
from app.services.ride_query_service import RideQueryService
from app.services.ride_service import RideService
from app.utils.clock import utcnow
from app.utils.user_client import UserInfo


class FakeUserClient:
    """In-memory stand-in for the User Service"""

    def __init__(self):
        self.users = {}

    def add(self, name, role="USER", vehicle_type=None, contact=None) -> UserInfo:
        user = UserInfo(id=uuid.uuid4(), name=name, role=role, vehicle_type=vehicle_type, contact=contact)
        self.users[user.id] = user
        return user

    async def get_user_by_id(self, user_id):
        try:
            return self.users[user_id]
        except KeyError:
            raise UserNotFoundError("User not found")


class StallingRepository(RideRepository):
    """Storage that never answers a ride lookup"""

    async def find(self, db, ride_id):
        return await self._bounded(asyncio.sleep(60))


class FakeRatingClient:
    def __init__(self, ratings=None):
        self.ratings = ratings or {}

    async def average_ratings(self, driver_ids):
        return {d: self.ratings.get(d, 0.0) for d in driver_ids}


class RecordingEvents:
    """Collects notifications and ride events; can be told to fail every publish"""

    def __init__(self, fail=False):
        self.fail = fail
        self.notifications = []
        self.ride_events = []

    async def notify(self, user_id, message, severity="INFO", related_entity_id=None):
        if self.fail:
            raise ConnectionError("redis is down")
        self.notifications.append((user_id, message, severity, related_entity_id))

    async def publish_ride_event(self, event_type, event_data):
        if self.fail:
            raise ConnectionError("redis is down")
        self.ride_events.append((event_type, event_data))

    def messages_for(self, user_id):
        return [message for recipient, message, _, _ in self.notifications if recipient == user_id]


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository():
    return RideRepository()


@pytest.fixture
def stalling_repository(monkeypatch):
    monkeypatch.setattr(settings, "storage_timeout_seconds", 0.05)
    return StallingRepository()


@pytest.fixture
def users():
    return FakeUserClient()


@pytest.fixture
def ratings():
    return FakeRatingClient()


@pytest.fixture
def events():
    return RecordingEvents()


@pytest.fixture
def failing_events():
    return RecordingEvents(fail=True)


@pytest.fixture
def ride_service(repository, users, events):
    return RideService(repository=repository, users=users, events=events)


@pytest.fixture
def query_service(repository, users, ratings):
    return RideQueryService(repository=repository, users=users, ratings=ratings)


@pytest.fixture
def owner(users):
    return users.add("Olivia Owner", vehicle_type="Sedan", contact="+15550100")


@pytest.fixture
def passenger(users):
    return users.add("Paul Passenger")


@pytest.fixture
def other_passenger(users):
    return users.add("Pia Passenger")


@pytest.fixture
def make_ride():
    """Unsaved ride with sensible defaults; keyword arguments override them"""

    def factory(owner_id=None, **overrides):
        values = {
            "owner_id": owner_id or uuid.uuid4(),
            "origin": "Berlin Hbf",
            "destination": "Leipzig",
            "start_time": utcnow() + timedelta(days=1),
            "total_seats": 3,
            "price_per_seat": Decimal("12.50"),
        }
        values.update(overrides)
        return Ride(**values)

    return factory
