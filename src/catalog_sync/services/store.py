"""Local store gateway for the catalog cache.

Each public method runs in its own session and commits immediately; the
synchronization engine never relies on a transaction spanning several
gateway calls. Upserts are keyed by the ERP identifier (or the documented
composite key) so replays converge on the same rows.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Iterable

import orjson
import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.exceptions import DeleteOutcome, PersistenceError
from catalog_sync.infrastructure.database.models import SyncState

logger = structlog.get_logger()

PRODUCT_SORT_COLUMNS = ("name", "price", "created_at", "updated_at")
CATEGORY_SORT_COLUMNS = ("name", "created_at", "updated_at")
PRODUCT_UPDATE_COLUMNS = (
    "sku",
    "name",
    "description",
    "long_description",
    "price",
    "is_active",
    "slug",
    "attributes",
    "external_created_at",
    "external_updated_at",
)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the ``DateTime`` columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _dump_json(value: dict[str, Any] | None) -> str:
    return orjson.dumps(value or {}).decode()


def _to_dict(row: Any) -> dict[str, Any]:
    data = dict(row)
    if isinstance(data.get("attributes"), (str, bytes)):
        data["attributes"] = orjson.loads(data["attributes"])
    return data


class CatalogStore:
    """Parameterized queries against the relational catalog cache."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(
        self, operation: str, context: dict[str, Any]
    ) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(
                    "Store operation failed", operation=operation, error=str(e), **context
                )
                raise PersistenceError(operation, context, e) from e

    async def _fetch_one(
        self, operation: str, query: Any, params: dict[str, Any]
    ) -> dict[str, Any] | None:
        async with self._session(operation, params) as session:
            result = await session.execute(query, params)
            row = result.mappings().first()
        return _to_dict(row) if row is not None else None

    async def _fetch_all(
        self, operation: str, query: Any, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        params = params or {}
        async with self._session(operation, params) as session:
            result = await session.execute(query, params)
            rows = result.mappings().all()
        return [_to_dict(row) for row in rows]

    async def _execute(self, operation: str, query: Any, params: dict[str, Any]) -> int:
        async with self._session(operation, params) as session:
            result = await session.execute(query, params)
            return result.rowcount

    # =========================================================================
    # Health
    # =========================================================================

    async def ping(self) -> bool:
        try:
            await self._fetch_one("ping", text("SELECT 1 AS ok"), {})
        except PersistenceError:
            return False
        return True

    # =========================================================================
    # Categories
    # =========================================================================

    async def upsert_category(self, category: dict[str, Any]) -> int:
        """Insert or update a category by external id; returns the local id."""
        now = utcnow()
        query = text("""
            INSERT INTO categories
            (external_id, name, description, parent_external_id, parent_id,
             external_created_at, external_updated_at, created_at, updated_at)
            VALUES
            (:external_id, :name, :description, :parent_external_id, :parent_id,
             :external_created_at, :external_updated_at, :now, :now)
            ON CONFLICT (external_id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                parent_external_id = excluded.parent_external_id,
                parent_id = excluded.parent_id,
                external_created_at = excluded.external_created_at,
                external_updated_at = excluded.external_updated_at,
                updated_at = excluded.updated_at
            RETURNING id
        """)
        row = await self._fetch_one(
            "upsert_category",
            query,
            {
                "external_id": category["external_id"],
                "name": category.get("name"),
                "description": category.get("description"),
                "parent_external_id": category.get("parent_external_id"),
                "parent_id": category.get("parent_id"),
                "external_created_at": category.get("external_created_at"),
                "external_updated_at": category.get("external_updated_at"),
                "now": now,
            },
        )
        return row["id"]

    async def get_category_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        query = text("SELECT * FROM categories WHERE external_id = :external_id")
        return await self._fetch_one(
            "get_category_by_external_id", query, {"external_id": external_id}
        )

    async def category_id_map(self) -> dict[str, int]:
        """Map every category external id to its local id."""
        rows = await self._fetch_all(
            "category_id_map", text("SELECT id, external_id FROM categories")
        )
        return {row["external_id"]: row["id"] for row in rows}

    async def resolve_category_parents(self) -> list[dict[str, Any]]:
        """Point every ``parent_id`` at the local row of its parent external id.

        Returns the categories whose parent reference could not be resolved.
        """
        await self._execute(
            "resolve_category_parents",
            text("""
                UPDATE categories SET parent_id = (
                    SELECT parent.id FROM categories parent
                    WHERE parent.external_id = categories.parent_external_id
                )
            """),
            {},
        )
        return await self._fetch_all(
            "list_unresolved_category_parents",
            text("""
                SELECT external_id, parent_external_id FROM categories
                WHERE parent_external_id IS NOT NULL AND parent_id IS NULL
            """),
        )

    async def attach_category_children(self, external_id: str, category_id: int) -> int:
        """Link categories that arrived before their parent; returns the count."""
        return await self._execute(
            "attach_category_children",
            text("""
                UPDATE categories SET parent_id = :category_id
                WHERE parent_external_id = :external_id
                  AND (parent_id IS NULL OR parent_id <> :category_id)
            """),
            {"external_id": external_id, "category_id": category_id},
        )

    async def list_category_external_ids(self) -> set[str]:
        rows = await self._fetch_all(
            "list_category_external_ids", text("SELECT external_id FROM categories")
        )
        return {row["external_id"] for row in rows}

    async def delete_category_by_external_id(self, external_id: str) -> DeleteOutcome:
        params = {"external_id": external_id}
        async with self._session("delete_category_by_external_id", params) as session:
            result = await session.execute(
                text("SELECT id FROM categories WHERE external_id = :external_id"), params
            )
            category_id = result.scalar()
            if category_id is None:
                return DeleteOutcome.NOT_FOUND
            ids = {"id": category_id}
            await session.execute(
                text("UPDATE categories SET parent_id = NULL WHERE parent_id = :id"), ids
            )
            await session.execute(
                text("DELETE FROM product_categories WHERE category_id = :id"), ids
            )
            await session.execute(text("DELETE FROM categories WHERE id = :id"), ids)
        return DeleteOutcome.DELETED

    # =========================================================================
    # Products
    # =========================================================================

    def _product_params(self, product: dict[str, Any]) -> dict[str, Any]:
        return {
            "external_id": product["external_id"],
            "sku": product.get("sku"),
            "name": product.get("name"),
            "description": product.get("description"),
            "long_description": product.get("long_description"),
            "price": product.get("price", 0.0),
            "is_active": product.get("is_active", True),
            "slug": product["slug"],
            "attributes": _dump_json(product.get("attributes")),
            "external_created_at": product.get("external_created_at"),
            "external_updated_at": product.get("external_updated_at"),
            "now": utcnow(),
        }

    async def upsert_product(self, product: dict[str, Any]) -> dict[str, Any]:
        """Insert or update all columns of a product keyed by external id."""
        query = text("""
            INSERT INTO products
            (external_id, sku, name, description, long_description, price, is_active,
             slug, attributes, external_created_at, external_updated_at, created_at, updated_at)
            VALUES
            (:external_id, :sku, :name, :description, :long_description, :price, :is_active,
             :slug, :attributes, :external_created_at, :external_updated_at, :now, :now)
            ON CONFLICT (external_id) DO UPDATE SET
                sku = excluded.sku,
                name = excluded.name,
                description = excluded.description,
                long_description = excluded.long_description,
                price = excluded.price,
                is_active = excluded.is_active,
                slug = excluded.slug,
                attributes = excluded.attributes,
                external_created_at = excluded.external_created_at,
                external_updated_at = excluded.external_updated_at,
                updated_at = excluded.updated_at
            RETURNING id, external_id, sku, description, price
        """)
        return await self._fetch_one("upsert_product", query, self._product_params(product))

    async def update_product_by_external_id(
        self, external_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Update only the given columns of a product; returns None when no row matched."""
        columns = [column for column in PRODUCT_UPDATE_COLUMNS if column in changes]
        params = {column: changes[column] for column in columns}
        if "attributes" in params:
            params["attributes"] = _dump_json(params["attributes"])
        assignments = "".join(f"{column} = :{column}, " for column in columns)
        query = text(f"""
            UPDATE products
            SET {assignments}updated_at = :now
            WHERE external_id = :external_id
            RETURNING id, external_id, sku, description, price
        """)
        params.update(external_id=external_id, now=utcnow())
        return await self._fetch_one("update_product_by_external_id", query, params)

    async def get_product_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        query = text("SELECT * FROM products WHERE external_id = :external_id")
        return await self._fetch_one(
            "get_product_by_external_id", query, {"external_id": external_id}
        )

    async def get_product_by_id(self, product_id: int) -> dict[str, Any] | None:
        query = text("SELECT * FROM products WHERE id = :id")
        return await self._fetch_one("get_product_by_id", query, {"id": product_id})

    async def get_product_by_sku(self, sku: str) -> dict[str, Any] | None:
        query = text("SELECT * FROM products WHERE sku = :sku ORDER BY id LIMIT 1")
        return await self._fetch_one("get_product_by_sku", query, {"sku": sku})

    async def list_products_for_sync(self) -> list[dict[str, Any]]:
        query = text("""
            SELECT id, external_id, sku, description, price
            FROM products ORDER BY id
        """)
        return await self._fetch_all("list_products_for_sync", query)

    async def list_product_external_ids(self) -> set[str]:
        rows = await self._fetch_all(
            "list_product_external_ids", text("SELECT external_id FROM products")
        )
        return {row["external_id"] for row in rows}

    async def delete_product_by_external_id(self, external_id: str) -> DeleteOutcome:
        """Delete a product together with its links, variants, images and stock."""
        params = {"external_id": external_id}
        async with self._session("delete_product_by_external_id", params) as session:
            result = await session.execute(
                text("SELECT id FROM products WHERE external_id = :external_id"), params
            )
            product_id = result.scalar()
            if product_id is None:
                return DeleteOutcome.NOT_FOUND
            ids = {"id": product_id}
            variant_ids = "SELECT id FROM product_variants WHERE product_id = :id"
            await session.execute(
                text("DELETE FROM product_categories WHERE product_id = :id"), ids
            )
            await session.execute(
                text(f"DELETE FROM stock_levels WHERE product_id = :id OR variant_id IN ({variant_ids})"),
                ids,
            )
            await session.execute(
                text(f"DELETE FROM product_images WHERE product_id = :id OR variant_id IN ({variant_ids})"),
                ids,
            )
            await session.execute(
                text("DELETE FROM product_variants WHERE product_id = :id"), ids
            )
            await session.execute(text("DELETE FROM products WHERE id = :id"), ids)
        return DeleteOutcome.DELETED

    # =========================================================================
    # Product <-> category links
    # =========================================================================

    async def clear_product_category_links(self, product_id: int) -> int:
        return await self._execute(
            "clear_product_category_links",
            text("DELETE FROM product_categories WHERE product_id = :product_id"),
            {"product_id": product_id},
        )

    async def link_product_category(self, product_id: int, category_id: int) -> bool:
        inserted = await self._execute(
            "link_product_category",
            text("""
                INSERT INTO product_categories (product_id, category_id)
                VALUES (:product_id, :category_id)
                ON CONFLICT (product_id, category_id) DO NOTHING
            """),
            {"product_id": product_id, "category_id": category_id},
        )
        return inserted > 0

    async def get_product_category_ids(self, product_id: int) -> set[int]:
        rows = await self._fetch_all(
            "get_product_category_ids",
            text("SELECT category_id FROM product_categories WHERE product_id = :product_id"),
            {"product_id": product_id},
        )
        return {row["category_id"] for row in rows}

    # =========================================================================
    # Variants
    # =========================================================================

    async def upsert_variant(self, variant: dict[str, Any]) -> int:
        query = text("""
            INSERT INTO product_variants
            (external_id, product_id, sku_variant, price_modifier, attributes,
             external_created_at, external_updated_at, created_at, updated_at)
            VALUES
            (:external_id, :product_id, :sku_variant, :price_modifier, :attributes,
             :external_created_at, :external_updated_at, :now, :now)
            ON CONFLICT (external_id) DO UPDATE SET
                product_id = excluded.product_id,
                sku_variant = excluded.sku_variant,
                price_modifier = excluded.price_modifier,
                attributes = excluded.attributes,
                external_created_at = excluded.external_created_at,
                external_updated_at = excluded.external_updated_at,
                updated_at = excluded.updated_at
            RETURNING id
        """)
        row = await self._fetch_one(
            "upsert_variant",
            query,
            {
                "external_id": variant["external_id"],
                "product_id": variant["product_id"],
                "sku_variant": variant.get("sku_variant"),
                "price_modifier": variant.get("price_modifier", 0.0),
                "attributes": _dump_json(variant.get("attributes")),
                "external_created_at": variant.get("external_created_at"),
                "external_updated_at": variant.get("external_updated_at"),
                "now": utcnow(),
            },
        )
        return row["id"]

    async def list_variants(self, product_id: int) -> list[dict[str, Any]]:
        query = text("""
            SELECT * FROM product_variants WHERE product_id = :product_id ORDER BY id
        """)
        return await self._fetch_all("list_variants", query, {"product_id": product_id})

    async def list_variant_external_ids(self) -> list[dict[str, Any]]:
        query = text("SELECT id, product_id, external_id FROM product_variants ORDER BY id")
        return await self._fetch_all("list_variant_external_ids", query)

    async def get_variant_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        query = text("SELECT * FROM product_variants WHERE external_id = :external_id")
        return await self._fetch_one(
            "get_variant_by_external_id", query, {"external_id": external_id}
        )

    async def delete_variants_except(
        self, product_id: int, keep_external_ids: Iterable[str]
    ) -> list[str]:
        """Delete the product's variants whose external id is not kept.

        Images and stock of the removed variants go with them. Returns the
        external ids that were deleted.
        """
        keep = set(keep_external_ids)
        params = {"product_id": product_id}
        async with self._session("delete_variants_except", params) as session:
            result = await session.execute(
                text("SELECT id, external_id FROM product_variants WHERE product_id = :product_id"),
                params,
            )
            stale = [row for row in result.mappings().all() if row["external_id"] not in keep]
            if not stale:
                return []
            ids = {"ids": [row["id"] for row in stale]}
            for table in ("stock_levels", "product_images"):
                await session.execute(
                    text(f"DELETE FROM {table} WHERE variant_id IN :ids").bindparams(
                        bindparam("ids", expanding=True)
                    ),
                    ids,
                )
            await session.execute(
                text("DELETE FROM product_variants WHERE id IN :ids").bindparams(
                    bindparam("ids", expanding=True)
                ),
                ids,
            )
        return [row["external_id"] for row in stale]

    # =========================================================================
    # Images
    # =========================================================================

    _IMAGE_COLUMNS = """
        (product_id, variant_id, cdn_url, alt_text, display_order, is_thumbnail,
         external_image_id, original_filename, original_path, created_at, updated_at)
        VALUES
        (:product_id, :variant_id, :cdn_url, :alt_text, :display_order, :is_thumbnail,
         :external_image_id, :original_filename, :original_path, :now, :now)
    """
    _IMAGE_UPDATE = """
        cdn_url = excluded.cdn_url,
        alt_text = excluded.alt_text,
        display_order = excluded.display_order,
        is_thumbnail = excluded.is_thumbnail,
        external_image_id = excluded.external_image_id,
        original_path = excluded.original_path,
        updated_at = excluded.updated_at
    """

    def _image_params(self, image: dict[str, Any]) -> dict[str, Any]:
        return {
            "product_id": image.get("product_id"),
            "variant_id": image.get("variant_id"),
            "cdn_url": image["cdn_url"],
            "alt_text": image.get("alt_text"),
            "display_order": image.get("display_order", 0),
            "is_thumbnail": image.get("is_thumbnail", False),
            "external_image_id": image.get("external_image_id"),
            "original_filename": image["original_filename"],
            "original_path": image.get("original_path"),
            "now": utcnow(),
        }

    async def upsert_product_image(self, image: dict[str, Any]) -> None:
        """Upsert a base product image keyed by ``(product_id, original_filename)``."""
        query = text(f"""
            INSERT INTO product_images {self._IMAGE_COLUMNS}
            ON CONFLICT (product_id, original_filename) DO UPDATE SET {self._IMAGE_UPDATE}
        """)
        await self._execute("upsert_product_image", query, self._image_params(image))

    async def upsert_variant_image(self, image: dict[str, Any]) -> None:
        """Upsert a variant image keyed by ``(variant_id, original_filename)``."""
        query = text(f"""
            INSERT INTO product_images {self._IMAGE_COLUMNS}
            ON CONFLICT (variant_id, original_filename) DO UPDATE SET {self._IMAGE_UPDATE}
        """)
        await self._execute(
            "upsert_variant_image", query, self._image_params({**image, "product_id": None})
        )

    async def add_variant_image_if_missing(self, image: dict[str, Any]) -> bool:
        """Insert a variant image unless the variant already has that file."""
        query = text(f"""
            INSERT INTO product_images {self._IMAGE_COLUMNS}
            ON CONFLICT (variant_id, original_filename) DO NOTHING
        """)
        inserted = await self._execute(
            "add_variant_image_if_missing",
            query,
            self._image_params({**image, "product_id": None}),
        )
        return inserted > 0

    async def list_product_images(self, product_id: int) -> list[dict[str, Any]]:
        query = text("""
            SELECT * FROM product_images
            WHERE product_id = :product_id AND variant_id IS NULL
            ORDER BY display_order, id
        """)
        return await self._fetch_all("list_product_images", query, {"product_id": product_id})

    async def list_variant_images(self, variant_id: int) -> list[dict[str, Any]]:
        query = text("""
            SELECT * FROM product_images WHERE variant_id = :variant_id
            ORDER BY display_order, id
        """)
        return await self._fetch_all("list_variant_images", query, {"variant_id": variant_id})

    # =========================================================================
    # Stock
    # =========================================================================

    async def upsert_stock_level(self, stock: dict[str, Any]) -> None:
        """Last-write-wins upsert keyed by (product, variant, warehouse).

        ``last_checked_at`` always moves to now, even when the quantity is
        unchanged. Base-product rows conflict on the partial unique index over
        ``(product_id, warehouse_id) WHERE variant_id IS NULL``.
        """
        product_id = stock.get("product_id")
        variant_id = stock.get("variant_id")
        if product_id is None:
            raise ValueError("stock level needs a product_id")

        if variant_id is None:
            conflict_target = "(product_id, warehouse_id) WHERE variant_id IS NULL"
        else:
            conflict_target = "(product_id, variant_id, warehouse_id)"
        query = text(f"""
            INSERT INTO stock_levels
            (product_id, variant_id, warehouse_id, quantity,
             external_updated_at, last_checked_at, updated_at)
            VALUES
            (:product_id, :variant_id, :warehouse_id, :quantity,
             :external_updated_at, :now, :now)
            ON CONFLICT {conflict_target} DO UPDATE SET
                quantity = excluded.quantity,
                external_updated_at = excluded.external_updated_at,
                last_checked_at = excluded.last_checked_at,
                updated_at = excluded.updated_at
        """)
        params = {
            "product_id": product_id,
            "variant_id": variant_id,
            "warehouse_id": str(stock["warehouse_id"]),
            "quantity": stock.get("quantity", 0),
            "external_updated_at": stock.get("external_updated_at"),
            "now": utcnow(),
        }
        async with self._session("upsert_stock_level", params) as session:
            await session.execute(query, params)

    async def list_stock_levels(self, product_id: int) -> list[dict[str, Any]]:
        query = text("""
            SELECT * FROM stock_levels
            WHERE product_id = :product_id
               OR variant_id IN (SELECT id FROM product_variants WHERE product_id = :product_id)
            ORDER BY variant_id, warehouse_id
        """)
        return await self._fetch_all("list_stock_levels", query, {"product_id": product_id})

    # =========================================================================
    # Sync status
    # =========================================================================

    async def update_sync_status(
        self,
        sync_id: str,
        status: SyncState,
        records_synced: int = 0,
        error_message: str | None = None,
    ) -> None:
        """Upsert the sync status record for a job."""
        now = utcnow()
        query = text("""
            INSERT INTO sync_status (id, status, records_synced, last_sync_at, updated_at, error_message)
            VALUES (:id, :status, :records_synced, :last_sync_at, :updated_at, :error_message)
            ON CONFLICT (id) DO UPDATE SET
                status = excluded.status,
                records_synced = CASE
                    WHEN excluded.records_synced > 0 THEN excluded.records_synced
                    ELSE sync_status.records_synced
                END,
                last_sync_at = COALESCE(excluded.last_sync_at, sync_status.last_sync_at),
                updated_at = excluded.updated_at,
                error_message = excluded.error_message
        """)
        await self._execute(
            "update_sync_status",
            query,
            {
                "id": sync_id,
                "status": status.value,
                "records_synced": records_synced,
                "last_sync_at": now if status == SyncState.IDLE else None,
                "updated_at": now,
                "error_message": error_message,
            },
        )

    async def get_sync_status(self, sync_id: str) -> dict[str, Any] | None:
        return await self._fetch_one(
            "get_sync_status", text("SELECT * FROM sync_status WHERE id = :id"), {"id": sync_id}
        )

    # =========================================================================
    # Read API
    # =========================================================================

    async def list_products(
        self,
        limit: int,
        offset: int,
        category_id: int | None = None,
        sort_by: str = "name",
        sort_order: str = "asc",
    ) -> list[dict[str, Any]]:
        sort_column = sort_by if sort_by in PRODUCT_SORT_COLUMNS else "name"
        direction = "DESC" if sort_order.lower() == "desc" else "ASC"
        join = ""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if category_id is not None:
            join = "JOIN product_categories pc ON pc.product_id = p.id AND pc.category_id = :category_id"
            params["category_id"] = category_id
        query = text(f"""
            SELECT
                p.id, p.external_id, p.sku, p.name, p.description, p.price, p.slug, p.is_active,
                (SELECT pi.cdn_url FROM product_images pi
                 WHERE pi.product_id = p.id
                 ORDER BY pi.is_thumbnail DESC, pi.display_order, pi.id LIMIT 1) AS thumbnail_url
            FROM products p
            {join}
            ORDER BY p.{sort_column} {direction}, p.id
            LIMIT :limit OFFSET :offset
        """)
        return await self._fetch_all("list_products", query, params)

    async def count_products(self, category_id: int | None = None) -> int:
        if category_id is None:
            query = text("SELECT COUNT(*) AS total FROM products")
            params: dict[str, Any] = {}
        else:
            query = text("""
                SELECT COUNT(DISTINCT product_id) AS total FROM product_categories
                WHERE category_id = :category_id
            """)
            params = {"category_id": category_id}
        row = await self._fetch_one("count_products", query, params)
        return row["total"] if row else 0

    async def search_products(
        self, term: str, limit: int, offset: int
    ) -> tuple[list[dict[str, Any]], int]:
        pattern = f"%{term.lower()}%"
        where = """
            WHERE is_active = :active AND (
                LOWER(name) LIKE :pattern
                OR LOWER(COALESCE(description, '')) LIKE :pattern
                OR LOWER(COALESCE(sku, '')) LIKE :pattern
            )
        """
        params = {"pattern": pattern, "active": True, "limit": limit, "offset": offset}
        rows = await self._fetch_all(
            "search_products",
            text(f"""
                SELECT id, external_id, sku, name, description, price, slug
                FROM products {where}
                ORDER BY name, id
                LIMIT :limit OFFSET :offset
            """),
            params,
        )
        total = await self._fetch_one(
            "count_search_products",
            text(f"SELECT COUNT(*) AS total FROM products {where}"),
            params,
        )
        return rows, total["total"] if total else 0

    async def list_categories(
        self, limit: int, offset: int, sort_by: str = "name", sort_order: str = "asc"
    ) -> list[dict[str, Any]]:
        sort_column = sort_by if sort_by in CATEGORY_SORT_COLUMNS else "name"
        direction = "DESC" if sort_order.lower() == "desc" else "ASC"
        query = text(f"""
            SELECT id, external_id, name, description, parent_id, parent_external_id
            FROM categories
            ORDER BY {sort_column} {direction}, id
            LIMIT :limit OFFSET :offset
        """)
        return await self._fetch_all(
            "list_categories", query, {"limit": limit, "offset": offset}
        )

    async def count_categories(self) -> int:
        row = await self._fetch_one(
            "count_categories", text("SELECT COUNT(*) AS total FROM categories"), {}
        )
        return row["total"] if row else 0

    async def get_product_detail_by_slug(self, slug: str) -> dict[str, Any] | None:
        """Active product with categories, variants, images and stock."""
        product = await self._fetch_one(
            "get_product_by_slug",
            text("SELECT * FROM products WHERE slug = :slug AND is_active = :active"),
            {"slug": slug, "active": True},
        )
        if product is None:
            return None

        product_id = product["id"]
        categories = await self._fetch_all(
            "get_product_categories",
            text("""
                SELECT c.id, c.external_id, c.name, c.description
                FROM product_categories pc JOIN categories c ON c.id = pc.category_id
                WHERE pc.product_id = :product_id
                ORDER BY c.name
            """),
            {"product_id": product_id},
        )
        variants = await self.list_variants(product_id)
        images = await self._fetch_all(
            "get_product_images",
            text("""
                SELECT * FROM product_images
                WHERE product_id = :product_id
                   OR variant_id IN (SELECT id FROM product_variants WHERE product_id = :product_id)
                ORDER BY display_order, id
            """),
            {"product_id": product_id},
        )
        stock = await self.list_stock_levels(product_id)

        return {
            **product,
            "categories": categories,
            "variants": [
                {
                    **variant,
                    "images": [img for img in images if img["variant_id"] == variant["id"]],
                    "stock": [s for s in stock if s["variant_id"] == variant["id"]],
                }
                for variant in variants
            ],
            "base_images": [img for img in images if img["variant_id"] is None],
            "base_stock": [s for s in stock if s["variant_id"] is None],
        }
