"""
Booking service
===============

One ``BookingService`` per DB session.  Every public method is a single
unit of work:

1. lock the ride row (``SELECT ... FOR UPDATE``) before reading its bids,
2. map rows to domain entities and run one pure domain operation,
3. write the outcome back and flush.

The caller (``get_db`` dependency or the expiry worker) commits on success
and rolls back on any exception, so a failed operation leaves nothing
half-applied.  Accepting a bid, scheduling the ride and applying the
rider's promo code therefore land together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, settings as default_settings
from src.domain.entities import Bid, PromoCode, Ride
from src.domain.enums import (
    CounterParty,
    DiscountType,
    RideStatus,
    UserRole,
)
from src.domain.errors import NotFoundError, PermissionDeniedError, StateConflictError
from src.domain.lifecycle import CancellationQuote, ChargeRequest, RideLifecycle
from src.domain.negotiation import BidLedger
from src.domain.pricing import (
    BidBounds,
    FareBreakdown,
    FareCalculator,
    FareRequest,
    RouteInfo,
    bid_bounds,
    coerce_choice,
)
from src.domain.promotions import PromoResult, evaluate_promo, strategy_for
from src.infrastructure.mappers import (
    apply_bid,
    apply_ride,
    bid_to_entity,
    promo_to_entity,
    ride_to_entity,
)
from src.infrastructure.models import (
    BidModel,
    CounterOfferModel,
    PromoCodeModel,
    RideModel,
)
from src.infrastructure.repositories import (
    BidRepository,
    PromoCodeRepository,
    RideRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

# A promo code may still change the price until the ride is paid for.
_PROMO_OPEN = frozenset(
    {
        RideStatus.REQUESTED,
        RideStatus.BIDDING,
        RideStatus.EDIT_PENDING,
        RideStatus.SCHEDULED,
        RideStatus.PAYMENT_PENDING,
    }
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise client timestamps; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Results ───────────────────────────────────────────────────────────


@dataclass
class FareQuote:
    breakdown: FareBreakdown
    suggested_price: float
    bounds: BidBounds
    promo: Optional[PromoResult] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class RideCreation:
    ride: Ride
    created: bool
    warnings: list[str] = field(default_factory=list)


@dataclass
class BidOutcome:
    bid: Bid
    ride: Ride


@dataclass
class BidBoard:
    ride: Ride
    bids: list[Bid]
    best_offer: Optional[Bid]
    bounds: Optional[BidBounds]


@dataclass
class CancellationOutcome:
    ride: Ride
    quote: Optional[CancellationQuote]


@dataclass
class PromoApplication:
    ride: Ride
    result: PromoResult


@dataclass
class PaymentStart:
    ride: Ride
    charge: ChargeRequest


# ── Service ───────────────────────────────────────────────────────────


class BookingService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.config = config
        self.clock = clock
        self.rides = RideRepository(session)
        self.bids = BidRepository(session)
        self.promos = PromoCodeRepository(session)
        self.users = UserRepository(session)
        self.calculator = FareCalculator.from_settings(config)
        self.lifecycle = RideLifecycle.from_settings(config)

    # ── Loading helpers ──────────────────────────────────────────────

    async def _locked_ride(self, ride_id: int) -> tuple[RideModel, Ride]:
        model = await self.rides.get_for_update(ride_id)
        if model is None:
            raise NotFoundError(f"Ride {ride_id} not found")
        return model, ride_to_entity(model)

    async def _ledger(self, ride: Ride) -> tuple[BidLedger, dict[int, BidModel]]:
        rows = await self.bids.list_for_ride(ride.id)
        ledger = BidLedger.from_settings(
            ride, [bid_to_entity(r) for r in rows], self.config
        )
        return ledger, {r.id: r for r in rows}

    async def _bid_ride_id(self, bid_id: int) -> int:
        row = await self.bids.get_by_id(bid_id)
        if row is None:
            raise NotFoundError(f"Bid {bid_id} not found")
        return row.ride_id

    async def _save(
        self,
        model: RideModel,
        ride: Ride,
        ledger: Optional[BidLedger] = None,
        rows: Optional[dict[int, BidModel]] = None,
    ) -> None:
        apply_ride(model, ride)
        if ledger is not None:
            for bid in ledger.bids:
                if bid.id is None:
                    row = await self.bids.create(apply_bid(BidModel(), bid))
                    bid.id = row.id
                else:
                    apply_bid(rows[bid.id], bid)
        await self.session.flush()

    async def _promo_entity(
        self, code: Optional[str]
    ) -> tuple[Optional[PromoCodeModel], Optional[PromoCode]]:
        if not code:
            return None, None
        row = await self.promos.get_by_code(code)
        return row, promo_to_entity(row) if row else None

    @staticmethod
    def _fare_request(ride: Ride, route: Optional[RouteInfo]) -> FareRequest:
        return FareRequest(
            vehicle_type=ride.vehicle_type,
            pickup_stairs=ride.pickup_stairs,
            dropoff_stairs=ride.dropoff_stairs,
            needs_ramp=ride.needs_ramp,
            needs_companion=ride.needs_companion,
            needs_stair_chair=ride.needs_stair_chair,
            needs_wait_time=ride.needs_wait_time,
            wait_time_minutes=ride.wait_time_minutes,
            is_round_trip=ride.is_round_trip,
            route=route,
        )

    # ── Quotes ───────────────────────────────────────────────────────

    async def quote(
        self,
        request: FareRequest,
        promo_code: Optional[str] = None,
        role: str = UserRole.RIDER.value,
    ) -> FareQuote:
        breakdown = self.calculator.calculate(request).rounded()
        suggested = breakdown.total
        quote = FareQuote(
            breakdown=breakdown,
            suggested_price=suggested,
            bounds=bid_bounds(
                suggested, self.config.minimum_bid, self.config.bid_flexibility
            ),
            warnings=list(breakdown.warnings),
        )
        if promo_code:
            _, promo = await self._promo_entity(promo_code)
            quote.promo = evaluate_promo(promo, suggested, role, self.clock())
            if not quote.promo.valid:
                quote.warnings.append(f"Promo code not applied: {quote.promo.description}")
        return quote

    # ── Rides ────────────────────────────────────────────────────────

    async def create_ride(
        self,
        ride: Ride,
        route: Optional[RouteInfo] = None,
        idempotency_key: Optional[str] = None,
    ) -> RideCreation:
        if idempotency_key:
            existing = await self.rides.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                return RideCreation(ride_to_entity(existing), created=False)

        if await self.users.get_by_id(ride.rider_id) is None:
            raise NotFoundError(f"Rider {ride.rider_id} not found")

        now = self.clock()
        ride.scheduled_time = to_utc(ride.scheduled_time)
        ride.return_time = to_utc(ride.return_time)
        self.lifecycle.prepare_new_ride(ride, now)

        breakdown = self.calculator.calculate(self._fare_request(ride, route))
        ride.suggested_price = breakdown.rounded().total
        warnings = list(breakdown.warnings)

        if ride.promo_code:
            _, promo = await self._promo_entity(ride.promo_code)
            result = evaluate_promo(
                promo, ride.rider_bid or ride.suggested_price, UserRole.RIDER.value, now
            )
            if result.valid:
                ride.promo_code = promo.code
            else:
                warnings.append(f"Promo code not applied: {result.description}")
                ride.promo_code = None

        model = apply_ride(RideModel(idempotency_key=idempotency_key), ride)
        await self.rides.create(model)
        ride.id = model.id
        logger.info(
            "Ride %s (%s) created for rider %s: suggested=%.2f urgent=%s",
            ride.id, ride.reference_number, ride.rider_id,
            ride.suggested_price, ride.is_urgent,
        )
        return RideCreation(ride, created=True, warnings=warnings)

    async def get_ride(self, ride_id: int) -> Ride:
        model = await self.rides.get_by_id(ride_id)
        if model is None:
            raise NotFoundError(f"Ride {ride_id} not found")
        return ride_to_entity(model)

    async def list_rides_for_rider(self, rider_id: int) -> list[Ride]:
        return [ride_to_entity(m) for m in await self.rides.list_for_rider(rider_id)]

    # ── Negotiation ──────────────────────────────────────────────────

    async def place_bid(
        self, ride_id: int, driver_id: int, amount: float, notes: Optional[str] = None
    ) -> BidOutcome:
        driver = await self.users.get_by_id(driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        if driver.role != UserRole.DRIVER:
            raise PermissionDeniedError("Only drivers can place bids")
        if not driver.documents_complete:
            raise PermissionDeniedError(
                "Complete your driver documents before bidding on rides"
            )

        model, ride = await self._locked_ride(ride_id)
        ledger, rows = await self._ledger(ride)
        bid = ledger.place_bid(driver_id, amount, notes, now=self.clock())
        await self._save(model, ride, ledger, rows)
        logger.info("Driver %s bid %.2f on ride %s", driver_id, amount, ride_id)
        return BidOutcome(bid, ride)

    async def counter_offer(
        self,
        bid_id: int,
        new_amount: float,
        by_party: CounterParty | str,
        actor_id: Optional[int] = None,
        message: Optional[str] = None,
    ) -> BidOutcome:
        party = coerce_choice(CounterParty, by_party, "counter party")
        model, ride = await self._locked_ride(await self._bid_ride_id(bid_id))
        ledger, rows = await self._ledger(ride)
        bid = ledger.get(bid_id)
        if actor_id is not None:
            owner = ride.rider_id if party == CounterParty.RIDER else bid.driver_id
            if actor_id != owner:
                raise PermissionDeniedError(
                    f"Only the ride's {party.value} can counter this bid"
                )

        ledger.counter_offer(bid_id, new_amount, party)
        await self._save(model, ride, ledger, rows)
        await self.bids.add_counter_offer(
            bid_id, party, new_amount, self.clock(), message=message
        )
        logger.info(
            "Bid %s countered by %s at %.2f (round %d)",
            bid_id, party.value, new_amount, bid.bid_count,
        )
        return BidOutcome(bid, ride)

    async def accept_bid(self, bid_id: int, rider_id: Optional[int] = None) -> BidOutcome:
        model, ride = await self._locked_ride(await self._bid_ride_id(bid_id))
        if rider_id is not None and rider_id != ride.rider_id:
            raise PermissionDeniedError("Only the rider who requested this ride can accept bids")
        ledger, rows = await self._ledger(ride)
        return await self._close_negotiation(model, ride, ledger, rows, bid_id, ledger.accept_bid)

    async def driver_accept(self, bid_id: int, driver_id: Optional[int] = None) -> BidOutcome:
        """Driver agrees to the rider's counter-offer on their bid."""
        model, ride = await self._locked_ride(await self._bid_ride_id(bid_id))
        ledger, rows = await self._ledger(ride)
        if driver_id is not None and driver_id != ledger.get(bid_id).driver_id:
            raise PermissionDeniedError("You can only accept your own bids")
        return await self._close_negotiation(
            model, ride, ledger, rows, bid_id, ledger.driver_accept
        )

    async def _close_negotiation(self, model, ride, ledger, rows, bid_id, accept) -> BidOutcome:
        if ledger.is_winning(ledger.get(bid_id)):
            logger.info("Bid %s already accepted on ride %s", bid_id, ride.id)
            return BidOutcome(ledger.get(bid_id), ride)
        bid = accept(bid_id)
        await self._apply_ride_promo(ride)
        await self._save(model, ride, ledger, rows)
        logger.info(
            "Bid %s accepted: ride %s scheduled with driver %s at %.2f",
            bid_id, ride.id, ride.driver_id, ride.final_price,
        )
        return BidOutcome(bid, ride)

    async def withdraw_bid(self, bid_id: int, driver_id: int) -> BidOutcome:
        model, ride = await self._locked_ride(await self._bid_ride_id(bid_id))
        ledger, rows = await self._ledger(ride)
        bid = ledger.withdraw_bid(bid_id, driver_id)
        await self._save(model, ride, ledger, rows)
        logger.info("Driver %s withdrew bid %s on ride %s", driver_id, bid_id, ride.id)
        return BidOutcome(bid, ride)

    async def list_bids(self, ride_id: int) -> BidBoard:
        model = await self.rides.get_by_id(ride_id)
        if model is None:
            raise NotFoundError(f"Ride {ride_id} not found")
        ride = ride_to_entity(model)
        ledger, _ = await self._ledger(ride)
        return BidBoard(
            ride=ride,
            bids=ledger.list_bids(),
            best_offer=ledger.best_offer(),
            bounds=ledger.bounds(),
        )

    async def bid_history(self, bid_id: int) -> list[CounterOfferModel]:
        await self._bid_ride_id(bid_id)
        return await self.bids.history(bid_id)

    # ── Cancellation ─────────────────────────────────────────────────

    async def cancellation_quote(self, ride_id: int) -> CancellationQuote:
        ride = await self.get_ride(ride_id)
        return self.lifecycle.cancellation_quote(ride, self.clock())

    async def cancel_ride(
        self,
        ride_id: int,
        reason: Optional[str] = None,
        rider_id: Optional[int] = None,
    ) -> CancellationOutcome:
        model, ride = await self._locked_ride(ride_id)
        if rider_id is not None and rider_id != ride.rider_id:
            raise PermissionDeniedError("Only the rider who requested this ride can cancel it")
        ledger, rows = await self._ledger(ride)
        quote = self.lifecycle.cancel(ride, self.clock(), reason)
        if quote is not None:
            ledger.close_open_bids()
            await self._save(model, ride, ledger, rows)
        return CancellationOutcome(ride, quote)

    # ── Edits ────────────────────────────────────────────────────────

    async def request_edit(self, ride_id: int, changes: dict[str, Any]) -> Ride:
        model, ride = await self._locked_ride(ride_id)
        if isinstance(changes.get("scheduled_time"), datetime):
            changes = {**changes, "scheduled_time": to_utc(changes["scheduled_time"])}
        self.lifecycle.request_edit(ride, changes, self.clock())
        await self._save(model, ride)
        logger.info("Edit requested on ride %s: %s", ride_id, sorted(ride.pending_edit))
        return ride

    async def resolve_edit(self, ride_id: int, approved: bool) -> Ride:
        model, ride = await self._locked_ride(ride_id)
        previous_time = ride.scheduled_time
        self.lifecycle.resolve_edit(ride, approved)
        if ride.scheduled_time != previous_time:
            self.lifecycle.flag_urgency(ride, self.clock())
        await self._save(model, ride)
        logger.info(
            "Edit on ride %s %s", ride_id, "approved" if approved else "declined"
        )
        return ride

    # ── Promo codes ──────────────────────────────────────────────────

    async def _apply_ride_promo(self, ride: Ride) -> Optional[PromoResult]:
        """Discount the agreed price with the ride's promo code, if any."""
        if not ride.promo_code or ride.final_price is None:
            return None
        row, promo = await self._promo_entity(ride.promo_code)
        result = evaluate_promo(promo, ride.final_price, UserRole.RIDER.value, self.clock())
        if not result.valid:
            logger.info(
                "Promo %s not applied to ride %s: %s",
                ride.promo_code, ride.id, result.description,
            )
            ride.discounted_price = None
            return result
        first_use = ride.discounted_price is None
        ride.discounted_price = result.final_amount
        if first_use:
            await self.promos.increment_usage(row.id)
        return result

    async def apply_promo(self, ride_id: int, code: str) -> PromoApplication:
        model, ride = await self._locked_ride(ride_id)
        if ride.status not in _PROMO_OPEN:
            raise StateConflictError(
                f"Promo codes can only be applied before payment (status: {ride.status.value})"
            )
        _, promo = await self._promo_entity(code)
        amount = ride.final_price or ride.rider_bid or ride.suggested_price or 0.0
        result = evaluate_promo(promo, amount, UserRole.RIDER.value, self.clock())
        if result.valid:
            if ride.promo_code != promo.code:
                ride.discounted_price = None
            ride.promo_code = promo.code
            await self._apply_ride_promo(ride)
            await self._save(model, ride)
        return PromoApplication(ride, result)

    async def validate_promo(
        self, code: str, amount: float, role: str = UserRole.RIDER.value
    ) -> PromoResult:
        _, promo = await self._promo_entity(code)
        return evaluate_promo(promo, amount, role, self.clock())

    async def create_promo_code(self, promo: PromoCode) -> PromoCodeModel:
        kind = coerce_choice(DiscountType, promo.discount_type, "discount type")
        strategy_for(kind, promo.discount_value)
        if await self.promos.get_by_code(promo.code) is not None:
            raise StateConflictError(f"Promo code {promo.code.upper()} already exists")
        row = await self.promos.create(
            PromoCodeModel(
                code=promo.code,
                description=promo.description,
                discount_type=kind,
                discount_value=promo.discount_value,
                max_uses=promo.max_uses,
                used_count=0,
                expires_at=to_utc(promo.expires_at),
                is_active=promo.is_active,
                applicable_roles=list(promo.applicable_roles),
                minimum_amount=promo.minimum_amount,
                created_at=self.clock(),
            )
        )
        logger.info("Promo code %s created (%s %.2f)", row.code, kind.value, row.discount_value)
        return row

    # ── Payment ──────────────────────────────────────────────────────

    async def start_payment(self, ride_id: int) -> PaymentStart:
        model, ride = await self._locked_ride(ride_id)
        charge = self.lifecycle.request_payment(ride)
        await self._save(model, ride)
        logger.info("Charge of %.2f requested for ride %s", charge.amount, ride_id)
        return PaymentStart(ride, charge)

    async def record_payment(
        self, ride_id: int, succeeded: bool, failure_reason: Optional[str] = None
    ) -> Ride:
        model, ride = await self._locked_ride(ride_id)
        self.lifecycle.record_payment(ride, succeeded, failure_reason)
        await self._save(model, ride)
        return ride

    # ── Driver progress ──────────────────────────────────────────────

    async def advance_status(
        self, ride_id: int, status: RideStatus | str, driver_id: Optional[int] = None
    ) -> Ride:
        model, ride = await self._locked_ride(ride_id)
        if driver_id is not None and driver_id != ride.driver_id:
            raise PermissionDeniedError("Only the assigned driver can update this ride")
        if self.lifecycle.advance(ride, status):
            await self._save(model, ride)
            logger.info("Ride %s is now %s", ride_id, ride.status.value)
        return ride

    # ── Expiry ───────────────────────────────────────────────────────

    async def find_overdue(self) -> list[Ride]:
        """Unmatched rides past their expiry that have not been swept yet."""
        rows = await self.rides.get_expired_unmatched(self.clock())
        return [ride_to_entity(r) for r in rows]

    async def expire_overdue(self) -> list[Ride]:
        now = self.clock()
        expired = []
        for model in await self.rides.get_expired_unmatched(now, for_update=True):
            ride = ride_to_entity(model)
            if not self.lifecycle.expire(ride, now):
                continue
            ledger, rows = await self._ledger(ride)
            ledger.close_open_bids()
            await self._save(model, ride, ledger, rows)
            logger.info("Cancelled expired ride %s (%s)", ride.id, ride.reference_number)
            expired.append(ride)
        if expired:
            logger.info("Expiry sweep cancelled %d ride(s)", len(expired))
        return expired

    async def status_counts(self) -> dict[str, int]:
        counts = await self.rides.count_by_status()
        return {status.value: counts.get(status.value, 0) for status in RideStatus}

