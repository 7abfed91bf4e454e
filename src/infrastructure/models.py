"""
SQLAlchemy ORM models  (PostgreSQL).

Tables
------
* ``users``           -- riders, drivers and admins
* ``rides``           -- transportation requests and their lifecycle
* ``bids``            -- driver offers against a ride
* ``counter_offers``  -- negotiation history, one row per counter-offer
* ``promo_codes``     -- discount codes

Indexes
-------
* **B-Tree** on ``status``, ``rider_id``, ``driver_id``, ``scheduled_time``,
  ``expires_at`` and ``idempotency_key`` for the API and the expiry sweep.
* Composite ``(ride_id, status)`` on bids for the open-bid look-ups made
  on every negotiation step.
* Partial unique index on ``bids(ride_id) WHERE status = 'accepted'``.

Enum columns store the lowercase wire values (``values_callable``).
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)

from .database import Base
from src.domain.enums import (
    BidStatus,
    CounterParty,
    DiscountType,
    RideStatus,
    StairsTier,
    UserRole,
    VehicleType,
)


def _enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(_enum(UserRole, "userrole"), default=UserRole.RIDER, nullable=False)
    # Driver onboarding gate: all required documents uploaded and approved
    documents_complete = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference_number = Column(String(20), unique=True, nullable=False)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Itinerary
    pickup_location = Column(Text, nullable=False)
    dropoff_location = Column(Text, nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    scheduled_time = Column(DateTime(timezone=True), nullable=False)

    is_round_trip = Column(Boolean, default=False, nullable=False)
    return_time = Column(DateTime(timezone=True), nullable=True)
    return_pickup_location = Column(Text, nullable=True)
    return_dropoff_location = Column(Text, nullable=True)
    return_pickup_lat = Column(Float, nullable=True)
    return_pickup_lng = Column(Float, nullable=True)
    return_dropoff_lat = Column(Float, nullable=True)
    return_dropoff_lng = Column(Float, nullable=True)

    # Accessibility / options
    vehicle_type = Column(_enum(VehicleType, "vehicletype"), nullable=False)
    pickup_stairs = Column(_enum(StairsTier, "stairstier"), default=StairsTier.NONE, nullable=False)
    dropoff_stairs = Column(_enum(StairsTier, "stairstier"), default=StairsTier.NONE, nullable=False)
    needs_ramp = Column(Boolean, default=False, nullable=False)
    needs_companion = Column(Boolean, default=False, nullable=False)
    needs_stair_chair = Column(Boolean, default=False, nullable=False)
    needs_wait_time = Column(Boolean, default=False, nullable=False)
    wait_time_minutes = Column(Integer, default=0, nullable=False)
    special_instructions = Column(Text, nullable=True)

    # Commercial
    rider_bid = Column(Float, nullable=True)
    suggested_price = Column(Float, nullable=True)
    final_price = Column(Float, nullable=True)
    promo_code = Column(String(40), nullable=True)
    discounted_price = Column(Float, nullable=True)

    # Lifecycle
    status = Column(_enum(RideStatus, "ridestatus"), default=RideStatus.REQUESTED, nullable=False)
    is_urgent = Column(Boolean, default=False, nullable=False)
    urgent_cancellation_fee = Column(Float, default=0.0, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    pending_edit = Column(JSON, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancellation_fee = Column(Float, nullable=True)
    payment_failure_reason = Column(Text, nullable=True)

    idempotency_key = Column(String(64), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_scheduled_time", "scheduled_time"),
        Index("idx_rides_status_expires", "status", "expires_at"),
        Index("idx_rides_idempotency", "idempotency_key"),
    )


class BidModel(Base):
    __tablename__ = "bids"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(_enum(BidStatus, "bidstatus"), default=BidStatus.PENDING, nullable=False)
    bid_count = Column(Integer, default=0, nullable=False)
    counter_party = Column(_enum(CounterParty, "counterparty"), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bids_ride", "ride_id"),
        Index("idx_bids_driver", "driver_id"),
        Index("idx_bids_ride_status", "ride_id", "status"),
        # At most one accepted bid per ride
        Index(
            "uq_bids_one_accepted_per_ride",
            "ride_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
    )


class CounterOfferModel(Base):
    __tablename__ = "counter_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bid_id = Column(Integer, ForeignKey("bids.id"), nullable=False)
    party = Column(_enum(CounterParty, "counterparty"), nullable=False)
    amount = Column(Float, nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_counter_offers_bid", "bid_id"),)


class PromoCodeModel(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(40), unique=True, nullable=False)
    description = Column(Text, nullable=False, default="")
    discount_type = Column(_enum(DiscountType, "discounttype"), nullable=False)
    discount_value = Column(Float, nullable=False)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    applicable_roles = Column(JSON, nullable=False, default=lambda: ["rider", "driver"])
    minimum_amount = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
