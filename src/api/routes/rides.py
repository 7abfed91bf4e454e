"""
Ride endpoints
==============

POST   /api/v1/rides                          -- create a ride request
GET    /api/v1/rides?rider_id=                -- a rider's rides
GET    /api/v1/rides/{ride_id}                -- poll a ride
DELETE /api/v1/rides/{ride_id}                -- cancel (optional reason body)
GET    /api/v1/rides/{ride_id}/cancellation-quote
POST   /api/v1/rides/{ride_id}/edit           -- propose changes
POST   /api/v1/rides/{ride_id}/edit/resolve   -- driver approves / declines
POST   /api/v1/rides/{ride_id}/promo          -- apply a promo code
POST   /api/v1/rides/{ride_id}/payment        -- request the charge
POST   /api/v1/rides/{ride_id}/payment/callback
PATCH  /api/v1/rides/{ride_id}/status         -- driver-reported progress

Every mutating endpoint returns the updated ride so polling clients can
reconcile without a second request.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from src.api.dependencies import get_booking_service
from src.api.middleware import limiter
from src.api.schemas import (
    CancellationQuoteResponse,
    CancellationResponse,
    Coordinates,
    EditResolutionRequest,
    PaymentCallbackRequest,
    PaymentStartResponse,
    PromoApplicationResponse,
    PromoApplyRequest,
    RideCancelRequest,
    RideCreateRequest,
    RideCreateResponse,
    RideEditRequest,
    RideResponse,
    StatusUpdateRequest,
)
from src.config import settings
from src.domain.entities import Location, Ride
from src.domain.pricing import RouteInfo
from src.services.booking import BookingService

router = APIRouter(prefix="/rides", tags=["rides"])


def _location(coords: Optional[Coordinates]) -> Optional[Location]:
    if coords is None:
        return None
    return Location(coords.latitude, coords.longitude)


def _ride_from_request(body: RideCreateRequest) -> Ride:
    return Ride(
        rider_id=body.rider_id,
        pickup_location=body.pickup_location.strip(),
        dropoff_location=body.dropoff_location.strip(),
        pickup=_location(body.pickup),
        dropoff=_location(body.dropoff),
        scheduled_time=body.scheduled_time,
        is_round_trip=body.is_round_trip,
        return_time=body.return_time,
        return_pickup_location=body.return_pickup_location,
        return_dropoff_location=body.return_dropoff_location,
        return_pickup=_location(body.return_pickup),
        return_dropoff=_location(body.return_dropoff),
        vehicle_type=body.vehicle_type,
        pickup_stairs=body.pickup_stairs,
        dropoff_stairs=body.dropoff_stairs,
        needs_ramp=body.needs_ramp,
        needs_companion=body.needs_companion,
        needs_stair_chair=body.needs_stair_chair,
        needs_wait_time=body.needs_wait_time,
        wait_time_minutes=body.wait_time_minutes,
        special_instructions=body.special_instructions,
        rider_bid=body.rider_bid,
        promo_code=body.promo_code,
    )


@router.post(
    "",
    status_code=201,
    response_model=RideCreateResponse,
    summary="Create a ride request",
    responses={200: {"description": "Replay of an earlier request with the same idempotency key."}},
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    response: Response,
    body: RideCreateRequest,
    service: BookingService = Depends(get_booking_service),
):
    route = None
    if body.route is not None:
        route = RouteInfo(distance=body.route.distance, duration=body.route.duration)
    creation = await service.create_ride(
        _ride_from_request(body), route, idempotency_key=body.idempotency_key
    )
    if not creation.created:
        response.status_code = 200
    return {**asdict(creation.ride), "warnings": creation.warnings}


@router.get("", response_model=list[RideResponse], summary="List a rider's rides")
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    rider_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.list_rides_for_rider(rider_id)


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_ride(ride_id)


@router.delete(
    "/{ride_id}",
    response_model=CancellationResponse,
    summary="Cancel a ride",
    description=(
        "Cancels the ride and closes its open bids. Cancelling from "
        "scheduled, paid or en_route is charged per the cancellation "
        "policy. Cancelling an already-cancelled ride returns it unchanged."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: Optional[RideCancelRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    body = body or RideCancelRequest()
    return await service.cancel_ride(ride_id, body.reason, rider_id=body.rider_id)


@router.get(
    "/{ride_id}/cancellation-quote",
    response_model=CancellationQuoteResponse,
    summary="Preview the cancellation fee",
)
@limiter.limit(settings.rate_limit)
async def cancellation_quote(
    request: Request,
    ride_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.cancellation_quote(ride_id)


@router.post("/{ride_id}/edit", response_model=RideResponse, summary="Request an edit")
@limiter.limit(settings.rate_limit)
async def request_edit(
    request: Request,
    ride_id: int,
    body: RideEditRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.request_edit(ride_id, body.model_dump(exclude_none=True))


@router.post(
    "/{ride_id}/edit/resolve",
    response_model=RideResponse,
    summary="Approve or decline a pending edit",
)
@limiter.limit(settings.rate_limit)
async def resolve_edit(
    request: Request,
    ride_id: int,
    body: EditResolutionRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.resolve_edit(ride_id, body.approved)


@router.post(
    "/{ride_id}/promo",
    response_model=PromoApplicationResponse,
    summary="Apply a promo code",
    description="An unusable code leaves the ride unchanged and reports why.",
)
@limiter.limit(settings.rate_limit)
async def apply_promo(
    request: Request,
    ride_id: int,
    body: PromoApplyRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.apply_promo(ride_id, body.code)


@router.post(
    "/{ride_id}/payment",
    response_model=PaymentStartResponse,
    summary="Request payment for a scheduled ride",
)
@limiter.limit(settings.rate_limit)
async def start_payment(
    request: Request,
    ride_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.start_payment(ride_id)


@router.post(
    "/{ride_id}/payment/callback",
    response_model=RideResponse,
    summary="Record the payment processor's result",
)
@limiter.limit(settings.rate_limit)
async def payment_callback(
    request: Request,
    ride_id: int,
    body: PaymentCallbackRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.record_payment(ride_id, body.succeeded, body.failure_reason)


@router.patch(
    "/{ride_id}/status",
    response_model=RideResponse,
    summary="Driver progress update",
    description="Repeating the current status is a no-op, so retries are safe.",
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    ride_id: int,
    body: StatusUpdateRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.advance_status(ride_id, body.status, driver_id=body.driver_id)
