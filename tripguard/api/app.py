"""
FastAPI application factory.

* Registers routes for handoff, trips, mileage integrity and admin.
* Starts / stops the notification dispatch worker via lifespan events.
* Maps domain errors to HTTP: 422 invalid input, 409 precondition
  (retry later), 404 unknown resource.  Bodies are ``{"detail", "code"}``.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from tripguard.api.middleware import limiter
from tripguard.api.routes import admin, handoff, mileage, trips
from tripguard.infrastructure.database import dispose_engine
from tripguard.infrastructure.redis_client import close_redis_pool
from tripguard.domain.entities import (
    DomainValidationError,
    NotFound,
    PreconditionFailed,
    TripGuardError,
)
from tripguard.workers import notifier as _notifier

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (DomainValidationError, 422),
    (PreconditionFailed, 409),
    (NotFound, 404),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the dispatch worker on startup; stop it and release pools on shutdown."""
    await _notifier.start_dispatch_loop()
    yield
    await _notifier.stop_dispatch_loop()
    await close_redis_pool()
    await dispose_engine()


async def domain_error_handler(request: Request, exc: TripGuardError) -> JSONResponse:
    status_code = next(
        (code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 400
    )
    logger.info(
        "%s %s rejected (%d %s): %s",
        request.method, request.url.path, status_code, exc.code, exc,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": exc.code},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="TripGuard Handoff & Reconciliation API",
        description=(
            "Verifies in-person vehicle handoffs for peer-to-peer car "
            "rentals, flags odometer gaps between rentals, and settles "
            "end-of-trip charges."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(TripGuardError, domain_error_handler)

    # Routers
    app.include_router(handoff.router, prefix="/api/v1")
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(mileage.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
