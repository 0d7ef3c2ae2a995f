"""
Health check endpoints.

Provides endpoints for monitoring application health and readiness.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.config import Settings, get_settings
from ..dependencies import get_container

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    status: str
    storage: str
    database: str
    executor: str


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns 200 if the API is running.
    """
    return HealthResponse(status="healthy", version=settings.app_version)


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(settings: Settings = Depends(get_settings)):
    """
    Readiness check endpoint.

    With Supabase storage, the ledger must answer a read. Responds 503
    when it does not.
    """
    container = get_container()
    database = "not_used"
    if settings.storage_backend == "supabase":
        try:
            await container.ledger.list_account_ids()
            database = "connected"
        except Exception as e:
            logger.error(f"Readiness check failed: {e}")
            database = "unavailable"

    response = ReadinessResponse(
        status="ready" if database != "unavailable" else "not_ready",
        storage=settings.storage_backend,
        database=database,
        executor="configured" if container.has_executor else "missing",
    )
    if database == "unavailable":
        return JSONResponse(status_code=503, content=response.model_dump())
    return response
