"""
Ride Lifecycle State Machine
============================

Owns everything that moves a ride between statuses once the Bid
Negotiation Ledger has done its part:

* creation checks, urgency flagging and auto-expiry,
* rider edits that need driver re-confirmation,
* the payment sequence (scheduled -> payment_pending -> paid),
* driver-reported progress (paid -> en_route -> arrived -> in_progress
  -> completed),
* cancellation and its fee.

Cancellation fee
----------------
Applies when cancelling from scheduled, paid or en_route:

  hours before pickup    fee
  > 24                   0
  2 .. 24 (inclusive)    50 % of final price (rider bid if unset)
  < 2                    100 %

Urgent rides (scheduled within 24 h of booking) carry a flat urgent
cancellation fee; the larger of the two fees is charged.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from .coordinates import validate_coordinates
from .entities import InvalidStateTransition, Location, Ride
from .enums import (
    DRIVER_PROGRESS,
    FEE_BEARING,
    RIDE_TRANSITIONS,
    UNMATCHED,
    CancellationTier,
    RideStatus,
    StairsTier,
    VehicleType,
)
from .errors import StateConflictError, ValidationError
from .pricing import coerce_choice, round_money

logger = logging.getLogger(__name__)

EXPIRED_REASON = "Ride request expired - no driver bids received within time limit"

EDITABLE_FIELDS = frozenset(
    {"pickup_location", "dropoff_location", "scheduled_time", "special_instructions"}
)


def new_reference_number() -> str:
    return f"RIDE-{uuid.uuid4().hex[:8].upper()}"


@dataclass(frozen=True)
class CancellationPolicy:
    free_cancel_hours: float = 24
    full_charge_hours: float = 2
    partial_rate: float = 0.5

    def tier(self, hours_before_pickup: float) -> CancellationTier:
        if hours_before_pickup > self.free_cancel_hours:
            return CancellationTier.FREE
        if hours_before_pickup >= self.full_charge_hours:
            return CancellationTier.PARTIAL
        return CancellationTier.FULL

    def rate(self, tier: CancellationTier) -> float:
        return {
            CancellationTier.FREE: 0.0,
            CancellationTier.PARTIAL: self.partial_rate,
            CancellationTier.FULL: 1.0,
        }[tier]


@dataclass(frozen=True)
class CancellationQuote:
    status: RideStatus
    hours_before_pickup: float
    tier: CancellationTier
    tier_fee: float
    urgent_fee: float
    fee: float
    refund_amount: float


@dataclass(frozen=True)
class ChargeRequest:
    """What the payment processor is asked to capture."""

    ride_id: Optional[int]
    rider_id: int
    amount: float
    reference_number: Optional[str]


class RideLifecycle:
    def __init__(
        self,
        policy: Optional[CancellationPolicy] = None,
        *,
        urgent_window: timedelta = timedelta(hours=24),
        urgent_cancellation_fee: float = 50.0,
        minimum_bid: float = 10.0,
    ):
        self.policy = policy or CancellationPolicy()
        self.urgent_window = urgent_window
        self.urgent_cancellation_fee = urgent_cancellation_fee
        self.minimum_bid = minimum_bid

    @classmethod
    def from_settings(cls, settings) -> "RideLifecycle":
        return cls(
            CancellationPolicy(
                free_cancel_hours=settings.free_cancellation_hours,
                full_charge_hours=settings.full_charge_hours,
                partial_rate=settings.partial_cancellation_rate,
            ),
            urgent_window=timedelta(hours=settings.urgent_window_hours),
            urgent_cancellation_fee=settings.urgent_cancellation_fee,
            minimum_bid=settings.minimum_bid,
        )

    # ── Creation ─────────────────────────────────────────────────────

    def prepare_new_ride(self, ride: Ride, now: datetime) -> Ride:
        """Validate a freshly submitted ride and stamp its lifecycle fields."""
        if not ride.pickup_location or not ride.dropoff_location:
            raise ValidationError("Pickup and dropoff addresses are required")
        ride.pickup = self._checked(ride.pickup, "Pickup location")
        ride.dropoff = self._checked(ride.dropoff, "Destination")
        ride.vehicle_type = coerce_choice(VehicleType, ride.vehicle_type, "vehicle type")
        ride.pickup_stairs = coerce_choice(StairsTier, ride.pickup_stairs, "pickup stairs tier")
        ride.dropoff_stairs = coerce_choice(StairsTier, ride.dropoff_stairs, "dropoff stairs tier")

        if ride.scheduled_time is None or ride.scheduled_time <= now:
            raise ValidationError("Scheduled time must be in the future")
        if ride.needs_wait_time and (ride.wait_time_minutes or 0) < 0:
            raise ValidationError("Wait time must be zero or more minutes")
        if ride.rider_bid is not None and ride.rider_bid < self.minimum_bid:
            raise ValidationError(f"Bid must be at least ${self.minimum_bid:.2f}")
        if ride.is_round_trip:
            self._prepare_return_leg(ride)

        ride.status = RideStatus.REQUESTED
        ride.created_at = now
        ride.reference_number = ride.reference_number or new_reference_number()
        self.flag_urgency(ride, now)
        return ride

    @staticmethod
    def _checked(location: Optional[Location], label: str) -> Location:
        if location is None:
            raise ValidationError(f"{label}: coordinates are required")
        return validate_coordinates(location.latitude, location.longitude, label)

    def _prepare_return_leg(self, ride: Ride) -> None:
        if ride.return_time is None or ride.return_time <= ride.scheduled_time:
            raise ValidationError("Return time must be after the scheduled pickup time")
        # The return leg mirrors the outbound one unless given explicitly.
        ride.return_pickup_location = ride.return_pickup_location or ride.dropoff_location
        ride.return_dropoff_location = ride.return_dropoff_location or ride.pickup_location
        ride.return_pickup = self._checked(
            ride.return_pickup or ride.dropoff, "Return pickup location"
        )
        ride.return_dropoff = self._checked(
            ride.return_dropoff or ride.pickup, "Return destination"
        )

    def flag_urgency(self, ride: Ride, now: datetime) -> None:
        ride.is_urgent = ride.scheduled_time - now <= self.urgent_window
        if ride.is_urgent:
            ride.expires_at = now + self.urgent_window
            ride.urgent_cancellation_fee = self.urgent_cancellation_fee
        else:
            ride.expires_at = None
            ride.urgent_cancellation_fee = 0.0

    # ── Edits ────────────────────────────────────────────────────────

    def request_edit(self, ride: Ride, changes: dict[str, Any], now: datetime) -> None:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        proposed = {k: v for k, v in changes.items() if v is not None}
        if not proposed:
            raise ValidationError("No changes requested")
        scheduled = proposed.get("scheduled_time")
        if isinstance(scheduled, datetime):
            if scheduled <= now:
                raise ValidationError("Scheduled time must be in the future")
            proposed["scheduled_time"] = scheduled.isoformat()

        if ride.status == RideStatus.EDIT_PENDING:
            if ride.pending_edit == proposed:
                return
            raise StateConflictError("An edit is already awaiting driver confirmation")
        ride.transition_to(RideStatus.EDIT_PENDING)
        ride.pending_edit = proposed

    def resolve_edit(self, ride: Ride, approved: bool) -> None:
        if ride.status == RideStatus.BIDDING and ride.pending_edit is None:
            return
        if ride.status != RideStatus.EDIT_PENDING:
            raise InvalidStateTransition(
                f"Ride has no edit awaiting confirmation (status: {ride.status.value})"
            )
        if approved:
            for name, value in (ride.pending_edit or {}).items():
                if name == "scheduled_time":
                    value = datetime.fromisoformat(value)
                setattr(ride, name, value)
        ride.pending_edit = None
        ride.transition_to(RideStatus.BIDDING)

    # ── Cancellation ─────────────────────────────────────────────────

    def cancellation_quote(self, ride: Ride, now: datetime) -> CancellationQuote:
        if RideStatus.CANCELLED not in RIDE_TRANSITIONS[ride.status]:
            raise InvalidStateTransition(
                f"Cannot cancel a ride that is {ride.status.value}"
            )
        hours = (ride.scheduled_time - now).total_seconds() / 3600

        tier, tier_fee, urgent_fee = CancellationTier.FREE, 0.0, 0.0
        if ride.status in FEE_BEARING:
            tier = self.policy.tier(hours)
            tier_fee = round_money(ride.price_basis * self.policy.rate(tier))
            if ride.is_urgent:
                urgent_fee = ride.urgent_cancellation_fee or 0.0
        fee = max(tier_fee, urgent_fee)

        paid = 0.0
        if ride.status in (RideStatus.PAID, RideStatus.EN_ROUTE):
            paid = ride.chargeable_amount or 0.0
        return CancellationQuote(
            status=ride.status,
            hours_before_pickup=hours,
            tier=tier,
            tier_fee=tier_fee,
            urgent_fee=urgent_fee,
            fee=fee,
            refund_amount=round_money(max(0.0, paid - fee)),
        )

    def cancel(
        self, ride: Ride, now: datetime, reason: Optional[str] = None
    ) -> Optional[CancellationQuote]:
        """Cancel *ride*; returns ``None`` when it was already cancelled."""
        if ride.status == RideStatus.CANCELLED:
            return None
        quote = self.cancellation_quote(ride, now)
        ride.transition_to(RideStatus.CANCELLED)
        ride.cancellation_reason = reason or "Cancelled by rider"
        ride.cancellation_fee = quote.fee
        ride.pending_edit = None
        logger.info(
            "Ride %s cancelled from %s (fee=%.2f, tier=%s)",
            ride.id, quote.status.value, quote.fee, quote.tier.value,
        )
        return quote

    # ── Payment ──────────────────────────────────────────────────────

    def request_payment(self, ride: Ride) -> ChargeRequest:
        """Move to payment_pending and build the charge; re-emitted on retry."""
        if ride.status != RideStatus.PAYMENT_PENDING:
            ride.transition_to(RideStatus.PAYMENT_PENDING)
        amount = ride.chargeable_amount
        if amount is None:
            raise StateConflictError("Ride has no agreed price to charge")
        return ChargeRequest(
            ride_id=ride.id,
            rider_id=ride.rider_id,
            amount=round_money(amount),
            reference_number=ride.reference_number,
        )

    def record_payment(
        self, ride: Ride, succeeded: bool, failure_reason: Optional[str] = None
    ) -> None:
        if succeeded:
            ride.transition_to(RideStatus.PAID)
            ride.payment_failure_reason = None
            return
        if ride.status != RideStatus.PAYMENT_PENDING:
            raise StateConflictError(
                f"No payment is pending for this ride (status: {ride.status.value})"
            )
        ride.payment_failure_reason = failure_reason or "Payment failed"
        logger.info("Payment failed for ride %s: %s", ride.id, ride.payment_failure_reason)

    # ── Driver progress ──────────────────────────────────────────────

    def advance(self, ride: Ride, status: RideStatus | str) -> bool:
        status = coerce_choice(RideStatus, status, "ride status")
        if status not in DRIVER_PROGRESS[1:]:
            raise ValidationError(f"{status.value} is not a driver progress status")
        return ride.transition_to(status)

    # ── Expiry ───────────────────────────────────────────────────────

    @staticmethod
    def is_expired(ride: Ride, now: datetime) -> bool:
        return (
            ride.expires_at is not None
            and ride.status in UNMATCHED
            and now >= ride.expires_at
        )

    def expire(self, ride: Ride, now: datetime) -> bool:
        if not self.is_expired(ride, now):
            return False
        ride.transition_to(RideStatus.CANCELLED)
        ride.cancellation_reason = EXPIRED_REASON
        ride.cancellation_fee = 0.0
        ride.pending_edit = None
        return True
