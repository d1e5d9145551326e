"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from catalog_sync import __version__
from catalog_sync.api.dependencies import get_catalog_store
from catalog_sync.config import Settings, get_settings
from catalog_sync.services.store import CatalogStore

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    dependencies: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns the service status and version information.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies={
            "database": "configured",
            "erp": "configured" if settings.erp_api_key else "missing_api_key",
            "webhook_secret": "configured" if settings.erp_webhook_secret else "missing",
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
) -> ReadinessResponse:
    """
    Readiness check endpoint.

    Verifies that the local store answers queries.
    """
    checks = {"database": await store.ping()}
    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Returns 200 while the process is running."""
    return {"status": "alive"}
