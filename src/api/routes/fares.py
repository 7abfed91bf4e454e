"""
Fare endpoints
==============

POST /api/v1/fares/quote -- itemised price, suggested price and bid band
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service
from src.api.middleware import limiter
from src.api.schemas import FareQuoteRequest, FareQuoteResponse
from src.config import settings
from src.domain.pricing import FareRequest, RouteInfo
from src.services.booking import BookingService

router = APIRouter(prefix="/fares", tags=["fares"])


@router.post(
    "/quote",
    response_model=FareQuoteResponse,
    summary="Quote a fare",
    description=(
        "Unparsable route distance or duration is left out of the price "
        "and reported under ``warnings``."
    ),
)
@limiter.limit(settings.rate_limit)
async def quote_fare(
    request: Request,
    body: FareQuoteRequest,
    service: BookingService = Depends(get_booking_service),
):
    fare = FareRequest(
        vehicle_type=body.vehicle_type,
        pickup_stairs=body.pickup_stairs,
        dropoff_stairs=body.dropoff_stairs,
        needs_ramp=body.needs_ramp,
        needs_companion=body.needs_companion,
        needs_stair_chair=body.needs_stair_chair,
        needs_wait_time=body.needs_wait_time,
        wait_time_minutes=body.wait_time_minutes,
        is_round_trip=body.is_round_trip,
        route=RouteInfo(body.route.distance, body.route.duration) if body.route else None,
    )
    return await service.quote(fare, promo_code=body.promo_code, role=body.role.value)
