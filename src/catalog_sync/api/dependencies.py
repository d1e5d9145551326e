"""FastAPI dependencies shared by the v1 routers."""

from typing import Any, Awaitable, Callable

import structlog

from catalog_sync.infrastructure.database.connection import get_session_factory
from catalog_sync.services.reconciliation import open_sync_engine
from catalog_sync.services.store import CatalogStore
from catalog_sync.services.webhooks import process_webhook_event

logger = structlog.get_logger()

EventProcessor = Callable[[dict[str, Any], Any], Awaitable[Any]]
FullSyncRunner = Callable[[Any], Awaitable[Any]]


def get_catalog_store() -> CatalogStore:
    return CatalogStore(get_session_factory())


async def _run_full_sync(log: Any) -> dict[str, dict[str, int]]:
    async with open_sync_engine() as engine:
        return await engine.run_full_sync(log=log)


def get_event_processor() -> EventProcessor:
    """Callable that applies one webhook event."""
    return process_webhook_event


def get_full_sync_runner() -> FullSyncRunner:
    """Callable that runs one full synchronization."""
    return _run_full_sync


async def run_in_background(
    action: Callable[..., Awaitable[Any]], *args: Any, log: Any = None
) -> None:
    """Await a background job; its failure is logged, never re-raised."""
    log = log or logger
    try:
        await action(*args, log)
    except Exception as e:
        log.error("Background job failed", error=str(e), error_type=type(e).__name__)
