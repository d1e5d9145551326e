"""Catalog synchronization tasks.

Each task runs its coroutine in a fresh event loop with a dedicated
connection pool, which is disposed before the task returns.
"""

import asyncio
from typing import Any

import structlog
from celery import shared_task

from catalog_sync.services.reconciliation import open_sync_engine
from catalog_sync.services.webhooks import process_webhook_event as dispatch_webhook_event

logger = structlog.get_logger()


async def _full_sync(log: Any) -> dict:
    async with open_sync_engine(dedicated_database=True) as engine:
        return await engine.run_full_sync(log=log)


async def _stock_sync(log: Any) -> dict:
    async with open_sync_engine(dedicated_database=True) as engine:
        return await engine.sync_stock_levels(log=log)


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def run_full_sync(self) -> dict:
    """
    Run a full ERP to cache reconciliation.

    Returns:
        dict: Per-stage counters
    """
    log = logger.bind(task="run_full_sync", task_id=self.request.id)
    return asyncio.run(_full_sync(log))


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def sync_stock_levels(self) -> dict:
    """Refresh stock levels of every cached product and variant."""
    log = logger.bind(task="sync_stock_levels", task_id=self.request.id)
    return asyncio.run(_stock_sync(log))


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def process_webhook_event(self, event: dict) -> dict:
    """
    Apply one webhook event queued by another process.

    Args:
        event: The raw webhook body (``triggercode`` and ``object``)
    """
    log = logger.bind(task="process_webhook_event", task_id=self.request.id)
    asyncio.run(dispatch_webhook_event(event, log, dedicated_database=True))
    return {"success": True, "triggercode": event.get("triggercode")}
