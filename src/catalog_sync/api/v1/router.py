"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from catalog_sync.api.v1 import catalog, health, sync, webhooks

api_router = APIRouter()

api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    catalog.router,
    tags=["Catalog"],
)

api_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["Sync"],
)

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["Webhooks"],
)
