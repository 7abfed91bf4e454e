"""
Fare Calculator
===============

Formula (fixed order, additive)
-------------------------------
one_way  = Base(vehicle) + Stairs(pickup) + Stairs(dropoff) + Add-ons
           + WaitTime + round($2 x miles) + round($0.50 x minutes)
subtotal = one_way + (80 % of one_way if round trip)
total    = subtotal + PlatformFee(5 %) + Tax(8 % of subtotal + fee)

* Route metrics arrive as display strings from the mapping provider
  ("5.2 mi", "1 hour 22 mins").  Anything unparsable contributes zero and
  adds a warning instead of failing the quote.
* Values are carried at full precision; ``rounded()`` is for presentation.

Complexity: O(1) per quote.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .enums import StairsTier, VehicleType
from .errors import ValidationError


def round_money(value: float, places: int = 2) -> float:
    """Half-up rounding, matching what riders see on receipts."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


# ── Route metric parsing ──────────────────────────────────────────────

_LEADING_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?|\.\d+)")
_HOURS = re.compile(r"(\d+(?:\.\d+)?)\s*(?:hours?|hrs?)\b", re.IGNORECASE)
_MINUTES = re.compile(r"(\d+(?:\.\d+)?)\s*(?:minutes?|mins?)\b", re.IGNORECASE)


def parse_distance_miles(text: Optional[str]) -> Optional[float]:
    """Leading decimal number of *text*, e.g. ``"5.2 mi"`` -> 5.2."""
    if not text:
        return None
    match = _LEADING_NUMBER.match(text)
    return float(match.group(1)) if match else None


def parse_duration_minutes(text: Optional[str]) -> Optional[float]:
    """Sum of the hour and minute components, e.g. ``"1 hour 5 mins"`` -> 65."""
    if not text:
        return None
    hours = [float(h) for h in _HOURS.findall(text)]
    minutes = [float(m) for m in _MINUTES.findall(text)]
    if not hours and not minutes:
        return None
    return sum(hours) * 60 + sum(minutes)


# ── Inputs / outputs ──────────────────────────────────────────────────


@dataclass(frozen=True)
class RouteInfo:
    distance: Optional[str] = None
    duration: Optional[str] = None


@dataclass
class FareRequest:
    vehicle_type: VehicleType | str
    pickup_stairs: StairsTier | str = StairsTier.NONE
    dropoff_stairs: StairsTier | str = StairsTier.NONE
    needs_ramp: bool = False
    needs_companion: bool = False
    needs_stair_chair: bool = False
    needs_wait_time: bool = False
    wait_time_minutes: int = 0
    is_round_trip: bool = False
    route: Optional[RouteInfo] = None


@dataclass(frozen=True)
class BidBounds:
    low: float
    high: float

    def contains(self, amount: float) -> bool:
        return self.low <= amount <= self.high


@dataclass
class FareBreakdown:
    base_fare: float
    stairs_fee: float
    services_fee: float
    wait_time_fee: float
    distance_fee: float
    duration_fee: float
    round_trip_fee: float
    subtotal: float
    platform_fee: float
    tax: float
    total: float
    distance_miles: Optional[float] = None
    duration_minutes: Optional[float] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def one_way_total(self) -> float:
        return self.subtotal - self.round_trip_fee

    def rounded(self) -> "FareBreakdown":
        money = (
            "base_fare", "stairs_fee", "services_fee", "wait_time_fee",
            "distance_fee", "duration_fee", "round_trip_fee", "subtotal",
            "platform_fee", "tax", "total",
        )
        return replace(
            self,
            warnings=list(self.warnings),
            **{name: round_money(getattr(self, name)) for name in money},
        )


@dataclass(frozen=True)
class FareSchedule:
    """The canonical price list every call site quotes from."""

    base_fares: dict = field(
        default_factory=lambda: {
            VehicleType.STANDARD: 50.0,
            VehicleType.WHEELCHAIR: 70.0,
            VehicleType.STRETCHER: 90.0,
        }
    )
    stairs_fees: dict = field(
        default_factory=lambda: {
            StairsTier.NONE: 0.0,
            StairsTier.FEW: 5.0,
            StairsTier.SEVERAL: 10.0,
            StairsTier.MANY: 15.0,
            StairsTier.FULL_FLIGHT: 20.0,
        }
    )
    ramp_fee: float = 10.0
    companion_fee: float = 15.0
    stair_chair_fee: float = 20.0
    wait_time_flat: float = 15.0
    wait_time_per_minute: float = 0.25
    rate_per_mile: float = 2.0
    rate_per_minute: float = 0.5
    round_trip_factor: float = 0.8
    platform_fee_rate: float = 0.05
    tax_rate: float = 0.08


# ── Calculator facade ─────────────────────────────────────────────────


def coerce_choice(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {label} {value!r}; expected one of: {allowed}"
        ) from None


def bid_bounds(
    suggested_price: float, minimum: float = 10.0, flexibility: float = 0.30
) -> BidBounds:
    """Drivers may offer up to 30 % below, riders accept up to 30 % above."""
    return BidBounds(
        low=max(minimum, suggested_price * (1 - flexibility)),
        high=suggested_price * (1 + flexibility),
    )


class FareCalculator:
    """High-level API used by the booking service and the quote endpoint."""

    def __init__(self, schedule: Optional[FareSchedule] = None):
        self.schedule = schedule or FareSchedule()

    @classmethod
    def from_settings(cls, settings) -> "FareCalculator":
        return cls(
            FareSchedule(
                platform_fee_rate=settings.platform_fee_rate,
                tax_rate=settings.tax_rate,
            )
        )

    def calculate(self, request: FareRequest) -> FareBreakdown:
        s = self.schedule
        vehicle = coerce_choice(VehicleType, request.vehicle_type, "vehicle type")
        pickup_stairs = coerce_choice(StairsTier, request.pickup_stairs, "pickup stairs tier")
        dropoff_stairs = coerce_choice(StairsTier, request.dropoff_stairs, "dropoff stairs tier")
        warnings: list[str] = []

        base = s.base_fares[vehicle]
        stairs = s.stairs_fees[pickup_stairs] + s.stairs_fees[dropoff_stairs]

        services = 0.0
        if request.needs_ramp:
            services += s.ramp_fee
        if request.needs_companion:
            services += s.companion_fee
        if request.needs_stair_chair:
            services += s.stair_chair_fee

        wait = 0.0
        if request.needs_wait_time:
            if request.wait_time_minutes is None or request.wait_time_minutes < 0:
                raise ValidationError("Wait time must be zero or more minutes")
            wait = s.wait_time_flat + s.wait_time_per_minute * request.wait_time_minutes

        miles = minutes = None
        distance_fee = duration_fee = 0.0
        if request.route is not None:
            miles = parse_distance_miles(request.route.distance)
            if miles is None:
                warnings.append(
                    "Route distance unavailable; price excludes distance charge"
                )
            else:
                distance_fee = round_money(miles * s.rate_per_mile, 0)
            minutes = parse_duration_minutes(request.route.duration)
            if minutes is None:
                warnings.append(
                    "Route duration unavailable; price excludes time charge"
                )
            else:
                duration_fee = round_money(minutes * s.rate_per_minute, 0)

        one_way = base + stairs + services + wait + distance_fee + duration_fee
        round_trip = one_way * s.round_trip_factor if request.is_round_trip else 0.0
        subtotal = one_way + round_trip
        platform_fee = subtotal * s.platform_fee_rate
        tax = (subtotal + platform_fee) * s.tax_rate

        return FareBreakdown(
            base_fare=base,
            stairs_fee=stairs,
            services_fee=services,
            wait_time_fee=wait,
            distance_fee=distance_fee,
            duration_fee=duration_fee,
            round_trip_fee=round_trip,
            subtotal=subtotal,
            platform_fee=platform_fee,
            tax=tax,
            total=subtotal + platform_fee + tax,
            distance_miles=miles,
            duration_minutes=minutes,
            warnings=warnings,
        )

    def suggested_price(self, request: FareRequest) -> float:
        return round_money(self.calculate(request).total)
