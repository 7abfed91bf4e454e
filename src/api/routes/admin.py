"""
Admin / operations endpoints
============================

GET  /api/v1/admin/health         -- simple health check
POST /api/v1/admin/promo-codes    -- create a promo code
GET  /api/v1/admin/expired-rides  -- overdue requests not yet swept
POST /api/v1/admin/expire-rides   -- run the expiry sweep now
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service
from src.api.middleware import limiter
from src.api.schemas import (
    ExpiryResponse,
    HealthResponse,
    PromoCodeCreateRequest,
    PromoCodeResponse,
    RideResponse,
)
from src.config import settings
from src.domain.entities import PromoCode
from src.services.booking import BookingService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()


@router.post(
    "/promo-codes",
    status_code=201,
    response_model=PromoCodeResponse,
    summary="Create a promo code",
)
@limiter.limit(settings.rate_limit)
async def create_promo_code(
    request: Request,
    body: PromoCodeCreateRequest,
    service: BookingService = Depends(get_booking_service),
):
    promo = PromoCode(
        code=body.code,
        description=body.description,
        discount_type=body.discount_type,
        discount_value=body.discount_value,
        is_active=body.is_active,
        expires_at=body.expires_at,
        max_uses=body.max_uses,
        minimum_amount=body.minimum_amount,
        applicable_roles=[role.value for role in body.applicable_roles],
    )
    return await service.create_promo_code(promo)


@router.get(
    "/expired-rides",
    response_model=list[RideResponse],
    summary="List overdue ride requests awaiting the expiry sweep",
)
@limiter.limit(settings.rate_limit)
async def expired_rides(
    request: Request,
    service: BookingService = Depends(get_booking_service),
):
    return await service.find_overdue()


@router.post(
    "/expire-rides",
    response_model=ExpiryResponse,
    summary="Cancel overdue ride requests now",
)
@limiter.limit(settings.rate_limit)
async def expire_rides(
    request: Request,
    service: BookingService = Depends(get_booking_service),
):
    expired = await service.expire_overdue()
    return {"expired": len(expired), "rides": expired}
