"""
Bid endpoints
=============

POST   /api/v1/bids                        -- driver places a bid
POST   /api/v1/bids/{bid_id}/accept        -- rider accepts a pending bid
POST   /api/v1/bids/{bid_id}/driver-accept -- driver takes the rider's counter
POST   /api/v1/bids/{bid_id}/counter       -- counter-offer (max 3 rounds per bid)
DELETE /api/v1/bids/{bid_id}               -- driver withdraws their bid
GET    /api/v1/bids/ride/{ride_id}         -- bids on a ride, with the best offer
GET    /api/v1/bids/{bid_id}/history       -- counter-offer history
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service
from src.api.middleware import limiter
from src.api.schemas import (
    BidAcceptRequest,
    BidCreateRequest,
    BidListResponse,
    BidOutcomeResponse,
    BidWithdrawRequest,
    CounterOfferRequest,
    CounterOfferResponse,
    DriverAcceptRequest,
)
from src.config import settings
from src.services.booking import BookingService

router = APIRouter(prefix="/bids", tags=["bids"])


@router.post(
    "",
    status_code=201,
    response_model=BidOutcomeResponse,
    summary="Place a bid on a ride",
)
@limiter.limit(settings.rate_limit)
async def place_bid(
    request: Request,
    body: BidCreateRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.place_bid(body.ride_id, body.driver_id, body.amount, body.notes)


@router.post(
    "/{bid_id}/accept",
    response_model=BidOutcomeResponse,
    summary="Accept a bid",
    description=(
        "Accepts the bid, rejects every other open bid on the ride, fixes "
        "the final price and schedules the ride in one transaction."
    ),
)
@limiter.limit(settings.rate_limit)
async def accept_bid(
    request: Request,
    bid_id: int,
    body: Optional[BidAcceptRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    rider_id = body.rider_id if body else None
    return await service.accept_bid(bid_id, rider_id=rider_id)


@router.post(
    "/{bid_id}/driver-accept",
    response_model=BidOutcomeResponse,
    summary="Driver accepts the rider's counter-offer",
)
@limiter.limit(settings.rate_limit)
async def driver_accept(
    request: Request,
    bid_id: int,
    body: Optional[DriverAcceptRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    driver_id = body.driver_id if body else None
    return await service.driver_accept(bid_id, driver_id=driver_id)


@router.delete(
    "/{bid_id}",
    response_model=BidOutcomeResponse,
    summary="Withdraw a bid",
)
@limiter.limit(settings.rate_limit)
async def withdraw_bid(
    request: Request,
    bid_id: int,
    body: BidWithdrawRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.withdraw_bid(bid_id, body.driver_id)


@router.post(
    "/{bid_id}/counter",
    response_model=BidOutcomeResponse,
    summary="Counter a bid",
)
@limiter.limit(settings.rate_limit)
async def counter_offer(
    request: Request,
    bid_id: int,
    body: CounterOfferRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.counter_offer(
        bid_id,
        body.amount,
        body.by_party,
        actor_id=body.actor_id,
        message=body.message,
    )


@router.get(
    "/ride/{ride_id}",
    response_model=BidListResponse,
    summary="List bids on a ride",
)
@limiter.limit(settings.rate_limit)
async def list_bids(
    request: Request,
    ride_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.list_bids(ride_id)


@router.get(
    "/{bid_id}/history",
    response_model=list[CounterOfferResponse],
    summary="Counter-offer history of a bid",
)
@limiter.limit(settings.rate_limit)
async def bid_history(
    request: Request,
    bid_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.bid_history(bid_id)
