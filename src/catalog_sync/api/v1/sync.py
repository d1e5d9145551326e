"""Manual synchronization trigger and status."""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from catalog_sync.api.dependencies import (
    FullSyncRunner,
    get_catalog_store,
    get_full_sync_runner,
    run_in_background,
)
from catalog_sync.services.reconciliation import FULL_SYNC_JOB
from catalog_sync.services.store import CatalogStore

router = APIRouter()
logger = structlog.get_logger()


class SyncAcceptedResponse(BaseModel):
    message: str


class SyncStatusResponse(BaseModel):
    id: str
    status: str
    records_synced: int
    last_sync_at: Any = None
    error_message: str | None = None
    updated_at: Any = None


@router.post("", status_code=202, response_model=SyncAcceptedResponse)
async def trigger_full_sync(
    background_tasks: BackgroundTasks,
    runner: Annotated[FullSyncRunner, Depends(get_full_sync_runner)],
) -> SyncAcceptedResponse:
    """Start a full synchronization in the background."""
    log = logger.bind(trigger="manual")
    log.info("Manual full synchronization requested")
    background_tasks.add_task(run_in_background, runner, log=log)
    return SyncAcceptedResponse(message="Full synchronization started.")


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
) -> SyncStatusResponse:
    status = await store.get_sync_status(FULL_SYNC_JOB)
    if status is None:
        raise HTTPException(status_code=404, detail="No synchronization has run yet")
    return SyncStatusResponse(**status)
