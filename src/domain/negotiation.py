"""
Bid Negotiation Ledger
======================

Tracks the bids on one ride and enforces how a rider's opening price and
drivers' offers converge on an accepted fare.

Rules
-----
* Bids are only placed while the ride is ``requested`` or ``bidding``;
  the first bid moves the ride to ``bidding``.
* Amounts must be at least the minimum bid and inside the suggested-price
  band (``pricing.bid_bounds``).
* Each bid may be countered at most ``max_counter_offers`` times.
* The rider accepts only ``pending`` bids.  A bid last countered by the
  rider is closed by its driver accepting that counter.
* Drivers may withdraw their own pending or countered bids, which frees
  them to bid on the ride again.
* Accepting a bid rejects every other open bid on the ride, fixes the
  final price and schedules the ride -- all checks run before anything
  is mutated, so a failed call leaves the ledger untouched.

The ledger is pure: callers load the ride and its bids under a per-ride
lock, call one operation, then persist the result.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .entities import Bid, Ride
from .enums import (
    OPEN_FOR_BIDDING,
    BidStatus,
    CounterParty,
    RideStatus,
)
from .errors import (
    CapacityError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from .pricing import BidBounds, bid_bounds


class BidLedger:
    def __init__(
        self,
        ride: Ride,
        bids: list[Bid],
        *,
        minimum_bid: float = 10.0,
        flexibility: float = 0.30,
        max_counter_offers: int = 3,
    ):
        self.ride = ride
        self.bids = list(bids)
        self.minimum_bid = minimum_bid
        self.flexibility = flexibility
        self.max_counter_offers = max_counter_offers

    @classmethod
    def from_settings(cls, ride: Ride, bids: list[Bid], settings) -> "BidLedger":
        return cls(
            ride,
            bids,
            minimum_bid=settings.minimum_bid,
            flexibility=settings.bid_flexibility,
            max_counter_offers=settings.max_counter_offers,
        )

    # ── Queries ──────────────────────────────────────────────────────

    def bounds(self) -> Optional[BidBounds]:
        reference = self.ride.suggested_price or self.ride.rider_bid
        if not reference:
            return None
        return bid_bounds(reference, self.minimum_bid, self.flexibility)

    def get(self, bid_id: int) -> Bid:
        for bid in self.bids:
            if bid.id == bid_id:
                return bid
        raise NotFoundError(f"Bid {bid_id} not found on ride {self.ride.id}")

    def list_bids(self) -> list[Bid]:
        return sorted(
            self.bids,
            key=lambda b: (b.created_at is None, b.created_at or datetime.min, b.id or 0),
        )

    def best_offer(self) -> Optional[Bid]:
        pending = [b for b in self.list_bids() if b.status == BidStatus.PENDING]
        return min(pending, key=lambda b: b.amount, default=None)

    def accepted_bid(self) -> Optional[Bid]:
        return next((b for b in self.bids if b.status == BidStatus.ACCEPTED), None)

    # ── Guards ───────────────────────────────────────────────────────

    def _require_open_ride(self) -> None:
        if self.ride.status not in OPEN_FOR_BIDDING:
            raise StateConflictError(
                f"This ride is no longer accepting bids "
                f"(status: {self.ride.status.value})"
            )

    def _validate_amount(self, amount: float) -> None:
        if amount is None or amount < self.minimum_bid:
            raise ValidationError(f"Bid must be at least ${self.minimum_bid:.2f}")
        bounds = self.bounds()
        if bounds is not None and not bounds.contains(amount):
            raise ValidationError(
                f"Bid must be between ${bounds.low:.2f} and ${bounds.high:.2f}"
            )

    # ── Mutations ────────────────────────────────────────────────────

    def place_bid(
        self,
        driver_id: int,
        amount: float,
        notes: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Bid:
        self._require_open_ride()
        if any(b.driver_id == driver_id and b.is_open for b in self.bids):
            raise StateConflictError("You have already bid on this ride")
        self._validate_amount(amount)

        bid = Bid(
            ride_id=self.ride.id or 0,
            driver_id=driver_id,
            amount=amount,
            status=BidStatus.PENDING,
            bid_count=0,
            notes=notes,
            created_at=now,
        )
        self.bids.append(bid)
        self.ride.transition_to(RideStatus.BIDDING)
        return bid

    def counter_offer(
        self, bid_id: int, new_amount: float, by_party: CounterParty | str
    ) -> Bid:
        bid = self.get(bid_id)
        self._require_open_ride()
        if not bid.is_open:
            raise StateConflictError(
                f"Bid is no longer open for negotiation (status: {bid.status.value})"
            )
        if bid.bid_count >= self.max_counter_offers:
            raise CapacityError(f"Maximum {self.max_counter_offers} bids reached")
        try:
            party = CounterParty(by_party)
        except ValueError:
            raise ValidationError(f"Unknown counter party {by_party!r}") from None
        self._validate_amount(new_amount)

        bid.amount = new_amount
        bid.bid_count += 1
        bid.status = BidStatus.COUNTERED
        bid.counter_party = party
        return bid

    def accept_bid(self, bid_id: int) -> Bid:
        """Rider accepts a driver's untouched offer.

        Only ``pending`` bids qualify; once a bid has been countered the
        negotiation closes through :meth:`driver_accept` instead.
        Re-accepting the bid that already won returns it unchanged.
        """
        bid = self.get(bid_id)
        if self.is_winning(bid):
            return bid
        self._require_open_ride()
        if bid.status != BidStatus.PENDING:
            raise StateConflictError(
                f"Bid is no longer available for acceptance (status: {bid.status.value})"
            )
        return self._award(bid)

    def driver_accept(self, bid_id: int) -> Bid:
        """Driver takes the rider's counter-offer at its current amount."""
        bid = self.get(bid_id)
        if self.is_winning(bid):
            return bid
        self._require_open_ride()
        if bid.status != BidStatus.COUNTERED or bid.counter_party != CounterParty.RIDER:
            raise StateConflictError("Bid must be countered by the rider first")
        return self._award(bid)

    def withdraw_bid(self, bid_id: int, driver_id: int) -> Bid:
        bid = self.get(bid_id)
        if bid.driver_id != driver_id:
            raise PermissionDeniedError("You can only withdraw your own bids")
        if bid.status not in (BidStatus.PENDING, BidStatus.COUNTERED):
            raise StateConflictError(f"Cannot withdraw bid with status: {bid.status.value}")
        bid.status = BidStatus.WITHDRAWN
        return bid

    def is_winning(self, bid: Bid) -> bool:
        return bid.status == BidStatus.ACCEPTED and self.ride.driver_id == bid.driver_id

    def _award(self, bid: Bid) -> Bid:
        if self.accepted_bid() is not None:
            raise StateConflictError("Another bid has already been accepted")
        bid.status = BidStatus.ACCEPTED
        for other in self.bids:
            if other is not bid and other.is_open:
                other.status = BidStatus.REJECTED
        self.ride.final_price = bid.amount
        self.ride.driver_id = bid.driver_id
        self.ride.transition_to(RideStatus.SCHEDULED)
        return bid

    def close_open_bids(self) -> list[Bid]:
        """Reject every open bid; used once the ride leaves bidding for good."""
        closed = []
        for bid in self.bids:
            if bid.is_open:
                bid.status = BidStatus.REJECTED
                closed.append(bid)
        return closed
