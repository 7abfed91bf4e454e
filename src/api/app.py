"""
FastAPI application factory.

* Registers routes for fares, rides, bids, promo codes and admin.
* Starts / stops the background ride-expiry worker via lifespan events.
* Translates booking errors into ``{"detail", "code"}`` responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, bids, fares, promo_codes, rides
from src.config import settings
from src.domain.errors import (
    BookingError,
    CapacityError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from src.infrastructure.redis_client import close_redis
from src.workers import expiry as _expiry

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

# Most specific first; InvalidStateTransition is a StateConflictError.
_STATUS_CODES = (
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (ValidationError, 422),
    (CapacityError, 409),
    (StateConflictError, 409),
)


def status_code_for(exc: BookingError) -> int:
    for error_cls, status_code in _STATUS_CODES:
        if isinstance(exc, error_cls):
            return status_code
    return 400


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info(
        "%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc
    )
    return JSONResponse(
        status_code=status_code, content={"detail": str(exc), "code": exc.code}
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry worker on startup; stop on shutdown."""
    await _expiry.start_expiry_loop()
    yield
    await _expiry.stop_expiry_loop()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Medical Transport Booking API",
        description=(
            "Non-emergency medical transport: fare quotes, rider/driver bid "
            "negotiation and the ride lifecycle from request to completion, "
            "including cancellation fees and urgent-ride expiry."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(BookingError, booking_error_handler)

    # Routers
    app.include_router(fares.router, prefix="/api/v1")
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bids.router, prefix="/api/v1")
    app.include_router(promo_codes.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
