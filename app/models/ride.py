from sqlalchemy import Column, String, Integer, Boolean, Numeric, TIMESTAMP, Text, Enum, JSON, Uuid, ForeignKey, Index
from sqlalchemy.sql import func
import uuid
import enum
from ..database import Base
from ..domain.ride import RideStatus


class MembershipKind(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CANCELED = "CANCELED"


class RideRecord(Base):
    """One row per ride; bookings live in the same row as a JSON document"""
    __tablename__ = "rides"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    owner_name = Column(String(200), nullable=True)
    owner_contact = Column(String(100), nullable=True)

    # Itinerary
    origin = Column(Text, nullable=False)
    destination = Column(Text, nullable=False)
    start_time = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    schedule = Column(String(20), nullable=True)

    # Capacity and pricing
    total_seats = Column(Integer, nullable=False)
    seats_available = Column(Integer, nullable=False)  # stored projection of the seat ledger
    price_per_seat = Column(Numeric(10, 2), nullable=False)

    # Lifecycle
    status = Column(Enum(RideStatus), nullable=False, default=RideStatus.SCHEDULED, index=True)
    active = Column(Boolean, nullable=False, default=True, index=True)

    # Embedded collections
    bookings = Column(JSON, nullable=False, default=list)
    canceled_requests = Column(JSON, nullable=False, default=list)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<RideRecord(id={self.id}, status={self.status}, owner_id={self.owner_id}, version={self.version})>"


class RideMembership(Base):
    """Which rides a passenger is pending on, approved on or was turned away from"""
    __tablename__ = "ride_memberships"

    ride_id = Column(Uuid(as_uuid=True), ForeignKey("rides.id", ondelete="CASCADE"), primary_key=True)
    passenger_id = Column(Uuid(as_uuid=True), primary_key=True)
    kind = Column(Enum(MembershipKind), primary_key=True)

    __table_args__ = (
        Index("ix_ride_memberships_passenger_kind", "passenger_id", "kind"),
    )

    def __repr__(self):
        return f"<RideMembership(ride_id={self.ride_id}, passenger_id={self.passenger_id}, kind={self.kind})>"
