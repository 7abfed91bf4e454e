"""
ORM row <-> domain entity conversion.

The domain layer works on plain dataclasses; these helpers copy state in
both directions so a service can load rows, run a pure domain operation
and write the outcome back inside the same session.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .models import BidModel, PromoCodeModel, RideModel
from src.domain.entities import Bid, Location, PromoCode, Ride

# Columns copied one-to-one between RideModel and Ride.
_RIDE_SCALARS = (
    "reference_number",
    "rider_id",
    "driver_id",
    "pickup_location",
    "dropoff_location",
    "scheduled_time",
    "is_round_trip",
    "return_time",
    "return_pickup_location",
    "return_dropoff_location",
    "vehicle_type",
    "pickup_stairs",
    "dropoff_stairs",
    "needs_ramp",
    "needs_companion",
    "needs_stair_chair",
    "needs_wait_time",
    "wait_time_minutes",
    "special_instructions",
    "rider_bid",
    "suggested_price",
    "final_price",
    "promo_code",
    "discounted_price",
    "status",
    "is_urgent",
    "urgent_cancellation_fee",
    "expires_at",
    "pending_edit",
    "cancellation_reason",
    "cancellation_fee",
    "payment_failure_reason",
    "created_at",
)

_DATETIME_FIELDS = {"scheduled_time", "return_time", "expires_at", "created_at"}

# (entity attribute, model latitude column, model longitude column)
_RIDE_LOCATIONS = (
    ("pickup", "pickup_lat", "pickup_lng"),
    ("dropoff", "dropoff_lat", "dropoff_lng"),
    ("return_pickup", "return_pickup_lat", "return_pickup_lng"),
    ("return_dropoff", "return_dropoff_lat", "return_dropoff_lng"),
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ── Rides ─────────────────────────────────────────────────────────────


def ride_to_entity(model: RideModel) -> Ride:
    ride = Ride(id=model.id)
    for name in _RIDE_SCALARS:
        value = getattr(model, name)
        if name in _DATETIME_FIELDS:
            value = as_utc(value)
        setattr(ride, name, value)
    for attr, lat_col, lng_col in _RIDE_LOCATIONS:
        lat, lng = getattr(model, lat_col), getattr(model, lng_col)
        if lat is not None and lng is not None:
            setattr(ride, attr, Location(lat, lng))
    if ride.urgent_cancellation_fee is None:
        ride.urgent_cancellation_fee = 0.0
    return ride


def apply_ride(model: RideModel, ride: Ride) -> RideModel:
    for name in _RIDE_SCALARS:
        value = getattr(ride, name)
        if name == "created_at" and value is None:
            continue
        setattr(model, name, value)
    for attr, lat_col, lng_col in _RIDE_LOCATIONS:
        location = getattr(ride, attr)
        setattr(model, lat_col, location.latitude if location else None)
        setattr(model, lng_col, location.longitude if location else None)
    return model


# ── Bids ──────────────────────────────────────────────────────────────


def bid_to_entity(model: BidModel) -> Bid:
    return Bid(
        id=model.id,
        ride_id=model.ride_id,
        driver_id=model.driver_id,
        amount=model.amount,
        status=model.status,
        bid_count=model.bid_count or 0,
        counter_party=model.counter_party,
        notes=model.notes,
        created_at=as_utc(model.created_at),
    )


def apply_bid(model: BidModel, bid: Bid) -> BidModel:
    model.ride_id = bid.ride_id
    model.driver_id = bid.driver_id
    model.amount = bid.amount
    model.status = bid.status
    model.bid_count = bid.bid_count
    model.counter_party = bid.counter_party
    model.notes = bid.notes
    if bid.created_at is not None:
        model.created_at = bid.created_at
    return model


# ── Promo codes ───────────────────────────────────────────────────────


def promo_to_entity(model: PromoCodeModel) -> PromoCode:
    return PromoCode(
        code=model.code,
        discount_type=model.discount_type,
        discount_value=model.discount_value,
        description=model.description or "",
        is_active=model.is_active,
        expires_at=as_utc(model.expires_at),
        max_uses=model.max_uses,
        used_count=model.used_count or 0,
        minimum_amount=model.minimum_amount or 0.0,
        applicable_roles=list(model.applicable_roles or ["rider", "driver"]),
    )
