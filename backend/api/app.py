"""
FastAPI application factory.

Creates and configures the FastAPI application instance.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import get_settings
from shared.exceptions import (
    AuthenticationError,
    AuthorizationError,
    CreditMeterError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from modules.ledger.exceptions import ConsistencyViolationError, LedgerUnavailableError
from modules.metering.exceptions import (
    ExecutorNotConfiguredError,
    ExternalOperationError,
    InsufficientCreditsError,
    OperationThrottledError,
)
from modules.payments.exceptions import WebhookVerificationError
from modules.dedup.routes import router as cache_router
from modules.ledger.routes import router as credits_router
from modules.metering.routes import router as operations_router
from modules.payments.routes import router as payments_router
from .routes import health, users

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES: list[tuple[type[CreditMeterError], int]] = [
    (InsufficientCreditsError, 402),
    (OperationThrottledError, 429),
    (WebhookVerificationError, 400),
    (ExternalOperationError, 502),
    (ExternalServiceError, 502),
    (ExecutorNotConfiguredError, 503),
    (LedgerUnavailableError, 503),
    (ConsistencyViolationError, 500),
    (NotFoundError, 404),
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
]


def status_code_for(exc: CreditMeterError) -> int:
    """HTTP status for a domain exception (400 for other business-rule failures)."""
    for exc_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def credit_meter_error_handler(request: Request, exc: CreditMeterError) -> JSONResponse:
    """Render domain exceptions as {"error", "message", "details"}."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")

    headers = {}
    if isinstance(exc, OperationThrottledError):
        headers["Retry-After"] = str(exc.retry_after)
    elif exc.retryable and status_code == 503:
        headers["Retry-After"] = "1"
    return JSONResponse(status_code=status_code, content=jsonable_encoder(exc.to_dict()), headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs startup and shutdown logic.
    """
    from modules.dedup.reaper import CacheReaper
    from .dependencies import get_container

    # Startup
    settings = get_settings()
    logger.info(
        f"Starting {settings.app_name} on {settings.host}:{settings.port} "
        f"(storage: {settings.storage_backend})"
    )
    container = get_container()
    reaper = None
    if settings.cache_purge_interval_seconds > 0:
        reaper = CacheReaper(container.caches, settings.cache_purge_interval_seconds)
        reaper.start()
    app.state.cache_reaper = reaper
    yield
    if reaper is not None:
        reaper.shutdown()
    # Shutdown: let charges for abandoned requests finish
    if container._meter is not None:
        await container._meter.wait_settled()
    logger.info(f"Shutting down {settings.app_name}")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Prepaid credit ledger and idempotent usage metering API",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    app.add_exception_handler(CreditMeterError, credit_meter_error_handler)

    # Register routes
    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(users.router, prefix="/api/users", tags=["users"])
    app.include_router(credits_router, prefix="/api/credits", tags=["credits"])
    app.include_router(cache_router, prefix="/api/credits", tags=["credits"])
    app.include_router(operations_router, prefix="/api/operations", tags=["operations"])
    app.include_router(payments_router, prefix="/api/payments", tags=["payments"])

    return app


# Application instance for uvicorn
app = create_app()
