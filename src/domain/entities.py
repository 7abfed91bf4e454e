"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (requested -> bidding -> scheduled -> payment_pending -> paid -> en_route
  -> arrived -> in_progress -> completed | cancelled).
- Re-applying the current status is a no-op so duplicate deliveries from
  polling clients are harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .enums import (
    OPEN_BID_STATUSES,
    RIDE_TRANSITIONS,
    BidStatus,
    CounterParty,
    RideStatus,
    StairsTier,
    VehicleType,
)
from .errors import StateConflictError


class InvalidStateTransition(StateConflictError):
    """Raised when a ride status change violates the state machine."""

    code = "invalid_transition"


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    reference_number: Optional[str] = None
    rider_id: int = 0
    driver_id: Optional[int] = None

    # Itinerary
    pickup_location: str = ""
    dropoff_location: str = ""
    pickup: Optional[Location] = None
    dropoff: Optional[Location] = None
    scheduled_time: Optional[datetime] = None
    is_round_trip: bool = False
    return_time: Optional[datetime] = None
    return_pickup_location: Optional[str] = None
    return_dropoff_location: Optional[str] = None
    return_pickup: Optional[Location] = None
    return_dropoff: Optional[Location] = None

    # Accessibility / options
    vehicle_type: VehicleType = VehicleType.STANDARD
    pickup_stairs: StairsTier = StairsTier.NONE
    dropoff_stairs: StairsTier = StairsTier.NONE
    needs_ramp: bool = False
    needs_companion: bool = False
    needs_stair_chair: bool = False
    needs_wait_time: bool = False
    wait_time_minutes: int = 0
    special_instructions: Optional[str] = None

    # Commercial
    rider_bid: Optional[float] = None
    suggested_price: Optional[float] = None
    final_price: Optional[float] = None
    promo_code: Optional[str] = None
    discounted_price: Optional[float] = None

    # Lifecycle
    status: RideStatus = RideStatus.REQUESTED
    is_urgent: bool = False
    urgent_cancellation_fee: float = 0.0
    expires_at: Optional[datetime] = None
    pending_edit: Optional[dict[str, Any]] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: Optional[float] = None
    payment_failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def transition_to(self, new_status: RideStatus) -> bool:
        """Move to *new_status* if the transition is legal, else raise.

        Returns ``False`` when the ride is already in *new_status*.
        """
        if new_status == self.status:
            return False
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition ride from {self.status.value} "
                f"to {new_status.value}"
            )
        self.status = new_status
        return True

    @property
    def price_basis(self) -> float:
        """Amount cancellation fees are computed from."""
        if self.final_price is not None:
            return self.final_price
        return self.rider_bid or 0.0

    @property
    def chargeable_amount(self) -> Optional[float]:
        if self.discounted_price is not None:
            return self.discounted_price
        return self.final_price


@dataclass
class Bid:
    id: Optional[int] = None
    ride_id: int = 0
    driver_id: int = 0
    amount: float = 0.0
    status: BidStatus = BidStatus.PENDING
    bid_count: int = 0
    counter_party: Optional[CounterParty] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_BID_STATUSES


@dataclass
class PromoCode:
    code: str
    discount_type: str
    discount_value: float
    description: str = ""
    is_active: bool = True
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    used_count: int = 0
    minimum_amount: float = 0.0
    applicable_roles: list[str] = field(
        default_factory=lambda: ["rider", "driver"]
    )
