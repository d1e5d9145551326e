"""Reconciliation of the ERP catalog into the local cache.

The full sync runs five sequential stages (categories, products with their
variants, images, stock). Every item is isolated: a failure is logged and
the item skipped, the stage and the following stages keep going. The
incremental operations used by webhooks converge to the same state however
many times they are replayed.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import Settings, get_settings
from catalog_sync.exceptions import (
    DeleteOutcome,
    ErpApiError,
    ErpNotFoundError,
    PersistenceError,
)
from catalog_sync.infrastructure.database.connection import (
    get_async_engine,
    get_async_session_factory,
    get_session_factory,
)
from catalog_sync.infrastructure.database.models import SyncState
from catalog_sync.infrastructure.erp.client import ErpClient
from catalog_sync.services.store import CatalogStore
from catalog_sync.services.transformers import (
    external_id,
    first_present,
    image_filename,
    transform_category,
    transform_product,
    transform_product_changes,
    transform_product_image,
    transform_stock_level,
    transform_variant,
)
from catalog_sync.services.variants import VariantGrouper, variant_payload_from_product

logger = structlog.get_logger()

T = TypeVar("T")

FULL_SYNC_JOB = "full_sync"


class SyncEngine:
    """Orchestrates full and single-entity synchronization."""

    def __init__(
        self,
        erp: ErpClient,
        store: CatalogStore,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.erp = erp
        self.store = store
        self.page_size = settings.sync_page_size
        self.prune_missing = settings.sync_prune_missing
        self.cdn_base_url = settings.cdn_base_url
        self.grouper = VariantGrouper(settings.variant_suffix_pattern)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _isolated(
        self, step: str, action: Callable[[], Awaitable[T]], log: Any
    ) -> T | None:
        """Run one follow-up step; failures are logged and swallowed."""
        try:
            return await action()
        except Exception as e:
            log.error("Sync step failed", step=step, error=str(e), error_type=type(e).__name__)
            return None

    async def _fetch_all_pages(
        self,
        fetch: Callable[[int, int], Awaitable[list[dict[str, Any]]]],
        entity: str,
        log: Any,
    ) -> tuple[list[dict[str, Any]], bool]:
        """Page through a listing until a short or empty page.

        Returns the items and whether pagination ran to the end.
        """
        items: list[dict[str, Any]] = []
        page = 0
        while True:
            try:
                batch = await fetch(page, self.page_size)
            except ErpNotFoundError:
                break
            except ErpApiError as e:
                log.error("Error fetching page", entity=entity, page=page, error=str(e))
                return items, False
            if not batch:
                break
            items.extend(batch)
            if len(batch) < self.page_size:
                break
            page += 1
        log.info("Fetched listing", entity=entity, count=len(items), pages=page + 1)
        return items, True

    async def _prune(
        self,
        entity: str,
        existing: set[str],
        seen: set[str],
        delete: Callable[[str], Awaitable[DeleteOutcome]],
        log: Any,
    ) -> int:
        pruned = 0
        for stale_id in sorted(existing - seen):
            outcome = await self._isolated(
                f"prune_{entity}", lambda stale_id=stale_id: delete(stale_id), log
            )
            if outcome == DeleteOutcome.DELETED:
                pruned += 1
                log.info("Pruned entity missing upstream", entity=entity, external_id=stale_id)
        return pruned

    # =========================================================================
    # Full sync
    # =========================================================================

    async def run_full_sync(self, log: Any = None) -> dict[str, dict[str, int]]:
        """Run every stage in dependency order.

        Only a failure to reach the local store escapes; everything else is
        logged and reflected in the returned counters.
        """
        log = (log or logger).bind(sync=FULL_SYNC_JOB)
        log.info("=== Starting full data synchronization ===")
        await self.store.update_sync_status(FULL_SYNC_JOB, SyncState.RUNNING)

        stages: list[tuple[str, Callable[..., Awaitable[dict[str, int]]]]] = [
            ("categories", self.sync_categories),
            ("products", self.sync_products),
            ("images", self.sync_images),
            ("stock", self.sync_stock_levels),
        ]
        summary: dict[str, dict[str, int]] = {}
        try:
            for name, stage in stages:
                summary[name] = await stage(log=log.bind(stage=name))
        except PersistenceError as e:
            log.error("Full synchronization aborted, local store unavailable", error=str(e))
            await self._isolated(
                "record_failure",
                lambda: self.store.update_sync_status(
                    FULL_SYNC_JOB, SyncState.FAILED, error_message=str(e)
                ),
                log,
            )
            raise

        records = sum(stage.get("synced", 0) for stage in summary.values())
        errors = sum(stage.get("errors", 0) for stage in summary.values())
        await self.store.update_sync_status(
            FULL_SYNC_JOB,
            SyncState.IDLE,
            records_synced=records,
            error_message=f"{errors} item(s) failed" if errors else None,
        )
        log.info("=== Full data synchronization finished ===", records=records, errors=errors)
        return summary

    async def sync_categories(self, log: Any = None) -> dict[str, int]:
        """Stage 1: upsert every ERP category, then resolve parents."""
        log = log or logger.bind(stage="categories")
        raw_categories, complete = await self._fetch_all_pages(
            self.erp.fetch_categories, "category", log
        )
        id_map = await self.store.category_id_map()
        stats = {"fetched": len(raw_categories), "synced": 0, "errors": 0, "pruned": 0}
        seen: set[str] = set()

        for raw in raw_categories:
            data = transform_category(raw)
            ext_id = data["external_id"]
            if not ext_id:
                log.warning("Skipping category without id", payload=raw)
                continue
            seen.add(ext_id)
            data["parent_id"] = id_map.get(data["parent_external_id"]) if data["parent_external_id"] else None
            try:
                id_map[ext_id] = await self.store.upsert_category(data)
                stats["synced"] += 1
            except Exception as e:
                stats["errors"] += 1
                log.error("Error syncing category", external_id=ext_id, error=str(e))

        for orphan in await self.store.resolve_category_parents():
            log.warning(
                "Parent category not found locally",
                external_id=orphan["external_id"],
                parent_external_id=orphan["parent_external_id"],
            )

        if self.prune_missing and complete:
            stats["pruned"] = await self._prune(
                "category",
                await self.store.list_category_external_ids(),
                seen,
                self.store.delete_category_by_external_id,
                log,
            )
        log.info("Category synchronization finished", **stats)
        return stats

    async def sync_products(self, log: Any = None) -> dict[str, int]:
        """Stage 2: products, their category links and their variants."""
        log = log or logger.bind(stage="products")
        category_map = await self.store.category_id_map()
        raw_products, complete = await self._fetch_all_pages(
            self.erp.fetch_products, "product", log
        )
        groups = self.grouper.group(raw_products)
        known_products = await self.store.list_product_external_ids()
        stats = {
            "fetched": len(raw_products),
            "synced": 0,
            "errors": 0,
            "variants": 0,
            "pruned": 0,
        }
        seen: set[str] = set()

        for group in groups:
            data = transform_product(group.parent)
            ext_id = data["external_id"]
            if not ext_id:
                log.warning("Skipping product without id", payload=group.parent)
                continue
            seen.add(ext_id)
            plog = log.bind(external_id=ext_id, sku=data["sku"])
            try:
                product = await self.store.upsert_product(data)
            except Exception as e:
                stats["errors"] += 1
                plog.error("Error syncing product", error=str(e))
                continue
            stats["synced"] += 1

            await self._isolated(
                "category_links",
                lambda: self.rebuild_category_links(product, category_map, plog),
                plog,
            )

            # Products now grouped as variants are no longer base products.
            for variant_product in group.variants:
                variant_ext_id = external_id(variant_product.get("id"))
                if variant_ext_id in known_products:
                    await self._isolated(
                        "reclassify_variant",
                        lambda: self.store.delete_product_by_external_id(variant_ext_id),
                        plog,
                    )

            result = await self._isolated(
                "variants",
                lambda: self.reconcile_variants(product, group.parent, group.variants, plog),
                plog,
            )
            if result:
                stats["variants"] += result["upserted"]

        if self.prune_missing and complete:
            stats["pruned"] = await self._prune(
                "product",
                await self.store.list_product_external_ids(),
                seen,
                self.store.delete_product_by_external_id,
                log,
            )
        log.info("Product synchronization finished", **stats)
        return stats

    async def rebuild_category_links(
        self,
        product: dict[str, Any],
        category_map: dict[str, int] | None,
        log: Any,
    ) -> int:
        """Replace the product's category links with the ERP's current set.

        Memberships are fetched before the old links are cleared so a failed
        fetch leaves the existing links in place.
        """
        try:
            memberships = await self.erp.fetch_product_categories(product["external_id"])
        except ErpNotFoundError:
            memberships = []
        if category_map is None:
            category_map = await self.store.category_id_map()

        cleared = await self.store.clear_product_category_links(product["id"])
        linked = 0
        for membership in memberships:
            category_ext_id = external_id(membership.get("id")) if isinstance(membership, dict) else None
            category_id = category_map.get(category_ext_id) if category_ext_id else None
            if category_id is None:
                log.warning("Local category not found for product link", category_external_id=category_ext_id)
                continue
            await self.store.link_product_category(product["id"], category_id)
            linked += 1
        log.debug("Rebuilt category links", cleared=cleared, linked=linked)
        return linked

    async def reconcile_variants(
        self,
        product: dict[str, Any],
        parent_raw: dict[str, Any],
        suffix_variants: list[dict[str, Any]],
        log: Any,
        keep_stored_suffix_variants: bool = False,
    ) -> dict[str, int] | None:
        """Make the product's variant set mirror the ERP (full replace).

        The set is the suffix-named sibling products plus the ERP's explicit
        variant listing. A failed listing fetch skips the replace entirely.
        """
        try:
            api_variants = await self.erp.fetch_product_variants(product["external_id"])
        except ErpNotFoundError:
            api_variants = []
        except ErpApiError as e:
            log.error("Error fetching variants, keeping existing variants", error=str(e))
            return None

        payloads = [variant_payload_from_product(parent_raw, v) for v in suffix_variants]
        payloads.extend(v for v in api_variants if isinstance(v, dict))

        keep: set[str] = set()
        upserted = 0
        for raw in payloads:
            data = transform_variant({"parent_ref": parent_raw.get("ref"), **raw}, product["id"])
            ext_id = data["external_id"]
            if not ext_id:
                log.warning("Skipping variant without id", payload=raw)
                continue
            keep.add(ext_id)
            try:
                await self.store.upsert_variant(data)
                upserted += 1
            except Exception as e:
                log.error("Error syncing variant", variant_external_id=ext_id, error=str(e))

        if keep_stored_suffix_variants and product.get("sku"):
            for stored in await self.store.list_variants(product["id"]):
                if self.grouper.root_sku(stored["sku_variant"]) == product["sku"]:
                    keep.add(stored["external_id"])

        deleted = await self.store.delete_variants_except(product["id"], keep)
        if deleted:
            log.info("Deleted variants missing upstream", variant_external_ids=deleted)
        return {"upserted": upserted, "deleted": len(deleted)}

    async def sync_images(self, log: Any = None) -> dict[str, int]:
        """Stage 3: image metadata for every product and its variants."""
        log = log or logger.bind(stage="images")
        products = await self.store.list_products_for_sync()
        stats = {"products": len(products), "synced": 0, "errors": 0}
        for product in products:
            plog = log.bind(external_id=product["external_id"])
            written = await self._isolated(
                "images", lambda: self.sync_product_images(product, plog), plog
            )
            if written is None:
                stats["errors"] += 1
            else:
                stats["synced"] += written
        log.info("Product image metadata synchronization finished", **stats)
        return stats

    async def _fetch_images(self, ext_id: str) -> list[dict[str, Any]]:
        try:
            record = await self.erp.fetch_product_by_id(ext_id)
        except ErpNotFoundError:
            return []
        images = record.get("photos") or record.get("images") or []
        return [image for image in images if isinstance(image, dict)]

    def _image_rows(
        self,
        images: list[dict[str, Any]],
        product_id: int | None,
        variant_id: int | None,
        log: Any,
    ) -> list[dict[str, Any]]:
        rows = []
        for info in images:
            filename = image_filename(info)
            if not filename:
                log.warning("Skipping image without filename", image=info)
                continue
            rows.append(
                transform_product_image(info, product_id, variant_id, filename, self.cdn_base_url)
            )
        return rows

    async def sync_product_images(self, product: dict[str, Any], log: Any) -> int:
        """Upsert the product's images; variants without own images inherit them."""
        written = 0
        for row in self._image_rows(await self._fetch_images(product["external_id"]), product["id"], None, log):
            try:
                await self.store.upsert_product_image(row)
                written += 1
            except Exception as e:
                log.error("Error upserting image metadata", filename=row["original_filename"], error=str(e))

        base_images = await self.store.list_product_images(product["id"])
        for variant in await self.store.list_variants(product["id"]):
            vlog = log.bind(variant_external_id=variant["external_id"])
            try:
                own = self._image_rows(await self._fetch_images(variant["external_id"]), None, variant["id"], vlog)
            except ErpApiError as e:
                vlog.error("Error fetching variant images", error=str(e))
                continue
            if own:
                for row in own:
                    await self.store.upsert_variant_image(row)
                    written += 1
                continue
            for image in base_images:
                inherited = {**image, "product_id": None, "variant_id": variant["id"]}
                if await self.store.add_variant_image_if_missing(inherited):
                    written += 1
        return written

    async def sync_stock_levels(self, log: Any = None) -> dict[str, int]:
        """Stage 4: per-warehouse stock for every product and variant."""
        log = log or logger.bind(stage="stock")
        targets: dict[str, tuple[int, int | None]] = {}
        for product in await self.store.list_products_for_sync():
            targets[product["external_id"]] = (product["id"], None)
        for variant in await self.store.list_variant_external_ids():
            targets.setdefault(variant["external_id"], (variant["product_id"], variant["id"]))

        stats = {"sources": len(targets), "synced": 0, "errors": 0}
        for ext_id, (product_id, variant_id) in targets.items():
            slog = log.bind(external_id=ext_id)
            written = await self._isolated(
                "stock",
                lambda: self.sync_stock_for_target(ext_id, product_id, variant_id, slog),
                slog,
            )
            if written is None:
                stats["errors"] += 1
            else:
                stats["synced"] += written
        log.info("Stock level synchronization finished", **stats)
        return stats

    async def sync_stock_for_target(
        self, ext_id: str, product_id: int, variant_id: int | None, log: Any
    ) -> int:
        """Fetch one stock source and upsert one row per warehouse.

        A 404 means the ERP has no stock records for it.
        """
        try:
            payload = await self.erp.fetch_product_stock(ext_id)
        except ErpNotFoundError:
            log.debug("No stock data for product")
            return 0

        warehouses = first_present(payload or {}, "stock_by_warehouse", "stock_warehouses") or {}
        if not isinstance(warehouses, dict):
            log.warning("Unexpected stock payload shape", payload=payload)
            return 0
        updated_at = first_present(payload, "updated_at", "tms")

        written = 0
        for warehouse_id, detail in warehouses.items():
            detail = detail if isinstance(detail, dict) else {"quantity": detail}
            entry = {
                "warehouse_id": warehouse_id,
                "quantity": first_present(detail, "quantity", "real", "qty", "stock_reel"),
                "updated_at": updated_at,
            }
            data = transform_stock_level(entry, product_id, variant_id)
            try:
                await self.store.upsert_stock_level(data)
                written += 1
            except Exception as e:
                log.error("Error upserting stock level", warehouse_id=data["warehouse_id"], error=str(e))
        return written

    # =========================================================================
    # Incremental (webhook driven)
    # =========================================================================

    async def sync_product_stock(self, ext_id: str, log: Any = None) -> int:
        """Re-derive absolute stock for one product (and its variants) or one variant."""
        log = log or logger.bind(external_id=ext_id)
        product = await self.store.get_product_by_external_id(ext_id)
        if product is not None:
            written = await self.sync_stock_for_target(ext_id, product["id"], None, log)
            for variant in await self.store.list_variants(product["id"]):
                written += await self.sync_stock_for_target(
                    variant["external_id"], product["id"], variant["id"], log
                )
            return written

        variant = await self.store.get_variant_by_external_id(ext_id)
        if variant is not None:
            return await self.sync_stock_for_target(
                ext_id, variant["product_id"], variant["id"], log
            )

        log.warning("Stock source not found locally, skipping")
        return 0

    async def upsert_product_from_event(
        self, payload: dict[str, Any], log: Any = None
    ) -> dict[str, Any] | None:
        """PRODUCT_CREATE / PRODUCT_MODIFY.

        The event object may be a partial snapshot. It is merged over the
        current ERP record, and an existing row only has the columns present
        in the merged snapshot rewritten. The row itself is written first and
        a store failure propagates. The category, variant and stock follow-ups
        are isolated from each other.
        """
        log = log or logger
        ext_id = external_id(payload.get("id"))
        if not ext_id:
            log.warning("Product event without id, skipping")
            return None

        snapshot = {**await self._fetch_current_product(ext_id, log), **payload}
        changes = transform_product_changes(snapshot)

        root_sku = self.grouper.root_sku(changes.get("sku"))
        if root_sku:
            parent = await self.store.get_product_by_sku(root_sku)
            if parent is not None and parent["external_id"] != ext_id:
                return await self._upsert_variant_from_event(parent, snapshot, log)

        product = await self.store.update_product_by_external_id(ext_id, changes)
        if product is None:
            log.info("Product not found locally, inserting")
            product = await self.store.upsert_product(transform_product(snapshot))

        await self._isolated(
            "category_links", lambda: self.rebuild_category_links(product, None, log), log
        )
        await self._isolated(
            "variants",
            lambda: self.reconcile_variants(
                product, snapshot, [], log, keep_stored_suffix_variants=True
            ),
            log,
        )
        await self._isolated("stock", lambda: self.sync_product_stock(ext_id, log), log)
        log.info("Product synchronized from event", product_id=product["id"])
        return product

    async def _fetch_current_product(self, ext_id: str, log: Any) -> dict[str, Any]:
        """Current ERP record for a product, or an empty dict when it cannot be read."""
        try:
            record = await self.erp.fetch_product_by_id(ext_id)
        except ErpNotFoundError:
            log.debug("Product not found in ERP, using event payload")
            return {}
        except ErpApiError as e:
            log.warning("Product refresh failed, using event payload", error=str(e))
            return {}
        return {key: value for key, value in (record or {}).items() if key != "photos"}

    async def _upsert_variant_from_event(
        self, parent: dict[str, Any], payload: dict[str, Any], log: Any
    ) -> dict[str, Any]:
        parent_raw = {
            "ref": parent["sku"],
            "description": parent["description"],
            "price": parent["price"],
        }
        data = transform_variant(variant_payload_from_product(parent_raw, payload), parent["id"])
        variant_id = await self.store.upsert_variant(data)
        # A suffixed product stored as a base product before its parent existed.
        await self.store.delete_product_by_external_id(data["external_id"])
        log.info(
            "Variant synchronized from event",
            parent_external_id=parent["external_id"],
            variant_id=variant_id,
        )
        await self._isolated(
            "stock", lambda: self.sync_product_stock(data["external_id"], log), log
        )
        return {**data, "id": variant_id}

    async def delete_product(self, ext_id: str | None, log: Any = None) -> DeleteOutcome:
        """PRODUCT_DELETE; an already-deleted product is not an error."""
        log = log or logger
        if not ext_id:
            log.warning("Product delete event without id, skipping")
            return DeleteOutcome.NOT_FOUND
        outcome = await self.store.delete_product_by_external_id(ext_id)
        if outcome == DeleteOutcome.NOT_FOUND:
            variant = await self.store.get_variant_by_external_id(ext_id)
            if variant is not None:
                await self.store.delete_variants_except(
                    variant["product_id"],
                    [
                        v["external_id"]
                        for v in await self.store.list_variants(variant["product_id"])
                        if v["external_id"] != ext_id
                    ],
                )
                outcome = DeleteOutcome.DELETED
        log.info("Product delete processed", outcome=outcome.value)
        return outcome

    async def upsert_category_from_event(
        self, payload: dict[str, Any], log: Any = None
    ) -> int | None:
        """CATEGORY_CREATE / CATEGORY_MODIFY."""
        log = log or logger
        data = transform_category(payload)
        ext_id = data["external_id"]
        if not ext_id:
            log.warning("Category event without id, skipping")
            return None

        data["parent_id"] = None
        if data["parent_external_id"]:
            parent = await self.store.get_category_by_external_id(data["parent_external_id"])
            if parent is None:
                log.warning(
                    "Parent category not found locally",
                    parent_external_id=data["parent_external_id"],
                )
            else:
                data["parent_id"] = parent["id"]

        category_id = await self.store.upsert_category(data)
        adopted = await self.store.attach_category_children(ext_id, category_id)
        log.info("Category synchronized from event", category_id=category_id, adopted_children=adopted)
        return category_id

    async def delete_category(self, ext_id: str | None, log: Any = None) -> DeleteOutcome:
        """CATEGORY_DELETE; an already-deleted category is not an error."""
        log = log or logger
        if not ext_id:
            log.warning("Category delete event without id, skipping")
            return DeleteOutcome.NOT_FOUND
        outcome = await self.store.delete_category_by_external_id(ext_id)
        log.info("Category delete processed", outcome=outcome.value)
        return outcome


@asynccontextmanager
async def open_sync_engine(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    erp: ErpClient | None = None,
    dedicated_database: bool = False,
) -> AsyncGenerator[SyncEngine, None]:
    """Build an engine with its ERP client and store, closing what it opened.

    ``dedicated_database`` creates a private connection pool, needed when the
    caller runs in a fresh event loop (Celery tasks, CLI).
    """
    settings = settings or get_settings()
    db_engine = None
    if session_factory is None:
        if dedicated_database:
            db_engine = get_async_engine()
            session_factory = get_async_session_factory(db_engine)
        else:
            session_factory = get_session_factory()
    erp_client = erp or ErpClient.from_settings(settings)
    try:
        yield SyncEngine(erp_client, CatalogStore(session_factory), settings)
    finally:
        if erp is None:
            await erp_client.close()
        if db_engine is not None:
            await db_engine.dispose()
