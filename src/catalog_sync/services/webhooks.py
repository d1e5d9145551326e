"""Dispatch of ERP webhook events to incremental sync operations."""

from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from catalog_sync.services.reconciliation import SyncEngine, open_sync_engine
from catalog_sync.services.transformers import external_id, first_present

logger = structlog.get_logger()


class TriggerCode(str, Enum):
    """Dolibarr trigger codes handled by the dispatcher."""

    PRODUCT_CREATE = "PRODUCT_CREATE"
    PRODUCT_MODIFY = "PRODUCT_MODIFY"
    PRODUCT_DELETE = "PRODUCT_DELETE"
    CATEGORY_CREATE = "CATEGORY_CREATE"
    CATEGORY_MODIFY = "CATEGORY_MODIFY"
    CATEGORY_DELETE = "CATEGORY_DELETE"
    STOCK_MOVEMENT = "STOCK_MOVEMENT"


Handler = Callable[[dict[str, Any], Any], Awaitable[Any]]


class WebhookDispatcher:
    """Route one webhook event to its handler.

    Unknown trigger codes are logged and ignored. Handler failures are logged
    and re-raised to the caller.
    """

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self._handlers: dict[TriggerCode, Handler] = {
            TriggerCode.PRODUCT_CREATE: self._upsert_product,
            TriggerCode.PRODUCT_MODIFY: self._upsert_product,
            TriggerCode.PRODUCT_DELETE: self._delete_product,
            TriggerCode.CATEGORY_CREATE: self._upsert_category,
            TriggerCode.CATEGORY_MODIFY: self._upsert_category,
            TriggerCode.CATEGORY_DELETE: self._delete_category,
            TriggerCode.STOCK_MOVEMENT: self._stock_movement,
        }

    async def dispatch(self, event: dict[str, Any], log: Any = None) -> Any:
        triggercode = event.get("triggercode")
        obj = event.get("object")
        object_id = external_id(obj.get("id")) if isinstance(obj, dict) else None
        log = (log or logger).bind(triggercode=triggercode, external_id=object_id)

        try:
            code = TriggerCode(triggercode)
        except ValueError:
            log.info("Unhandled webhook trigger, ignoring")
            return None
        if not isinstance(obj, dict):
            log.warning("Webhook event without object payload, skipping")
            return None

        log.info("Processing webhook event")
        try:
            result = await self._handlers[code](obj, log)
        except Exception as e:
            log.error("Webhook processing failed", error=str(e), error_type=type(e).__name__)
            raise
        log.info("Webhook event processed")
        return result

    async def _upsert_product(self, obj: dict[str, Any], log: Any) -> Any:
        return await self.engine.upsert_product_from_event(obj, log)

    async def _delete_product(self, obj: dict[str, Any], log: Any) -> Any:
        return await self.engine.delete_product(external_id(obj.get("id")), log)

    async def _upsert_category(self, obj: dict[str, Any], log: Any) -> Any:
        return await self.engine.upsert_category_from_event(obj, log)

    async def _delete_category(self, obj: dict[str, Any], log: Any) -> Any:
        return await self.engine.delete_category(external_id(obj.get("id")), log)

    async def _stock_movement(self, obj: dict[str, Any], log: Any) -> Any:
        # Stock movement objects carry the product in product_id/fk_product.
        product_ext_id = external_id(first_present(obj, "product_id", "fk_product", "id"))
        if not product_ext_id:
            log.warning("Stock movement without product id, skipping")
            return None
        return await self.engine.sync_product_stock(product_ext_id, log.bind(product_external_id=product_ext_id))


async def process_webhook_event(
    event: dict[str, Any], log: Any = None, dedicated_database: bool = False
) -> Any:
    """Open an engine and dispatch one event through it."""
    async with open_sync_engine(dedicated_database=dedicated_database) as engine:
        return await WebhookDispatcher(engine).dispatch(event, log)
