"""
Promo code endpoints
====================

POST /api/v1/promo-codes/validate -- check a code against an amount
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service
from src.api.middleware import limiter
from src.api.schemas import PromoResultResponse, PromoValidateRequest
from src.config import settings
from src.services.booking import BookingService

router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])


@router.post(
    "/validate",
    response_model=PromoResultResponse,
    summary="Validate a promo code",
    description="Unusable codes return ``valid: false`` with the reason.",
)
@limiter.limit(settings.rate_limit)
async def validate_promo(
    request: Request,
    body: PromoValidateRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.validate_promo(body.code, body.amount, body.role.value)
