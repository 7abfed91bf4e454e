"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.domain.enums import (
    BidStatus,
    CancellationTier,
    CounterParty,
    DiscountType,
    RideStatus,
    StairsTier,
    UserRole,
    VehicleType,
)


class Coordinates(BaseModel):
    latitude: float
    longitude: float

    model_config = {"from_attributes": True}


class RouteIn(BaseModel):
    """Display strings as returned by the mapping provider."""

    distance: Optional[str] = Field(None, examples=["5.2 mi"])
    duration: Optional[str] = Field(None, examples=["1 hour 5 mins"])


# ── Requests ──────────────────────────────────────────────────────────


class FareQuoteRequest(BaseModel):
    vehicle_type: VehicleType = VehicleType.STANDARD
    pickup_stairs: StairsTier = StairsTier.NONE
    dropoff_stairs: StairsTier = StairsTier.NONE
    needs_ramp: bool = False
    needs_companion: bool = False
    needs_stair_chair: bool = False
    needs_wait_time: bool = False
    wait_time_minutes: int = 0
    is_round_trip: bool = False
    route: Optional[RouteIn] = None
    promo_code: Optional[str] = None
    role: UserRole = UserRole.RIDER


class RideCreateRequest(BaseModel):
    rider_id: int
    pickup_location: str = Field(..., min_length=1)
    dropoff_location: str = Field(..., min_length=1)
    pickup: Coordinates
    dropoff: Coordinates
    scheduled_time: datetime

    is_round_trip: bool = False
    return_time: Optional[datetime] = None
    return_pickup_location: Optional[str] = None
    return_dropoff_location: Optional[str] = None
    return_pickup: Optional[Coordinates] = None
    return_dropoff: Optional[Coordinates] = None

    vehicle_type: VehicleType = VehicleType.STANDARD
    pickup_stairs: StairsTier = StairsTier.NONE
    dropoff_stairs: StairsTier = StairsTier.NONE
    needs_ramp: bool = False
    needs_companion: bool = False
    needs_stair_chair: bool = False
    needs_wait_time: bool = False
    wait_time_minutes: int = 0
    special_instructions: Optional[str] = None

    rider_bid: Optional[float] = None
    promo_code: Optional[str] = None
    route: Optional[RouteIn] = None
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class RideCancelRequest(BaseModel):
    reason: Optional[str] = None
    rider_id: Optional[int] = None


class RideEditRequest(BaseModel):
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    special_instructions: Optional[str] = None


class EditResolutionRequest(BaseModel):
    approved: bool


class PromoApplyRequest(BaseModel):
    code: str = Field(..., min_length=1)


class PaymentCallbackRequest(BaseModel):
    succeeded: bool
    failure_reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: RideStatus
    driver_id: Optional[int] = None


class BidCreateRequest(BaseModel):
    ride_id: int
    driver_id: int
    amount: float
    notes: Optional[str] = None


class CounterOfferRequest(BaseModel):
    amount: float
    by_party: CounterParty
    actor_id: Optional[int] = None
    message: Optional[str] = None


class BidAcceptRequest(BaseModel):
    rider_id: Optional[int] = None


class DriverAcceptRequest(BaseModel):
    driver_id: Optional[int] = None


class BidWithdrawRequest(BaseModel):
    driver_id: int


class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)
    role: UserRole = UserRole.RIDER


class PromoCodeCreateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=40)
    description: str = ""
    discount_type: DiscountType
    discount_value: float
    max_uses: Optional[int] = Field(None, ge=1)
    expires_at: Optional[datetime] = None
    is_active: bool = True
    applicable_roles: list[UserRole] = [UserRole.RIDER, UserRole.DRIVER]
    minimum_amount: float = Field(0.0, ge=0)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    reference_number: str
    rider_id: int
    driver_id: Optional[int] = None

    pickup_location: str
    dropoff_location: str
    pickup: Coordinates
    dropoff: Coordinates
    scheduled_time: datetime
    is_round_trip: bool
    return_time: Optional[datetime] = None
    return_pickup_location: Optional[str] = None
    return_dropoff_location: Optional[str] = None
    return_pickup: Optional[Coordinates] = None
    return_dropoff: Optional[Coordinates] = None

    vehicle_type: VehicleType
    pickup_stairs: StairsTier
    dropoff_stairs: StairsTier
    needs_ramp: bool
    needs_companion: bool
    needs_stair_chair: bool
    needs_wait_time: bool
    wait_time_minutes: int
    special_instructions: Optional[str] = None

    rider_bid: Optional[float] = None
    suggested_price: Optional[float] = None
    final_price: Optional[float] = None
    promo_code: Optional[str] = None
    discounted_price: Optional[float] = None

    status: RideStatus
    is_urgent: bool
    urgent_cancellation_fee: float
    expires_at: Optional[datetime] = None
    pending_edit: Optional[dict[str, Any]] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: Optional[float] = None
    payment_failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideCreateResponse(RideResponse):
    warnings: list[str] = []


class BidResponse(BaseModel):
    id: int
    ride_id: int
    driver_id: int
    amount: float
    status: BidStatus
    bid_count: int
    counter_party: Optional[CounterParty] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BidOutcomeResponse(BaseModel):
    bid: BidResponse
    ride: RideResponse


class BidBoundsResponse(BaseModel):
    low: float
    high: float


class BidListResponse(BaseModel):
    ride: RideResponse
    bids: list[BidResponse]
    best_offer: Optional[BidResponse] = None
    bounds: Optional[BidBoundsResponse] = None


class CounterOfferResponse(BaseModel):
    id: int
    bid_id: int
    party: CounterParty
    amount: float
    message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FareBreakdownResponse(BaseModel):
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


class PromoResultResponse(BaseModel):
    valid: bool
    description: str
    original_amount: float
    final_amount: float
    discount_amount: float
    code: Optional[str] = None


class FareQuoteResponse(BaseModel):
    breakdown: FareBreakdownResponse
    suggested_price: float
    bounds: BidBoundsResponse
    promo: Optional[PromoResultResponse] = None
    warnings: list[str] = []


class CancellationQuoteResponse(BaseModel):
    status: RideStatus
    hours_before_pickup: float
    tier: CancellationTier
    tier_fee: float
    urgent_fee: float
    fee: float
    refund_amount: float


class CancellationResponse(BaseModel):
    ride: RideResponse
    quote: Optional[CancellationQuoteResponse] = None


class ChargeResponse(BaseModel):
    ride_id: int
    rider_id: int
    amount: float
    reference_number: str


class PaymentStartResponse(BaseModel):
    ride: RideResponse
    charge: ChargeResponse


class PromoApplicationResponse(BaseModel):
    ride: RideResponse
    result: PromoResultResponse


class PromoCodeResponse(BaseModel):
    id: int
    code: str
    description: str
    discount_type: DiscountType
    discount_value: float
    max_uses: Optional[int] = None
    used_count: int
    expires_at: Optional[datetime] = None
    is_active: bool
    applicable_roles: list[str]
    minimum_amount: float

    model_config = {"from_attributes": True}


class ExpiryResponse(BaseModel):
    expired: int
    rides: list[RideResponse] = []


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
