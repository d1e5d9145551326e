"""Unit tests for the catalog store gateway against SQLite."""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from catalog_sync.exceptions import DeleteOutcome
from catalog_sync.infrastructure.database.models import SyncState
from catalog_sync.services.store import CatalogStore
from catalog_sync.services.transformers import transform_category, transform_product


async def count_rows(store: CatalogStore, table: str, where: str = "1 = 1", **params) -> int:
    async with store.session_factory() as session:
        result = await session.execute(text(f"SELECT COUNT(*) FROM {table} WHERE {where}"), params)
        return result.scalar()


class TestProducts:
    @pytest.mark.asyncio
    async def test_upsert_converges_on_one_row(self, store: CatalogStore) -> None:
        first = await store.upsert_product(transform_product({"id": 99, "ref": "A", "label": "Old"}))
        second = await store.upsert_product(transform_product({"id": 99, "ref": "A", "label": "New"}))

        assert first["id"] == second["id"]
        assert await count_rows(store, "products", "external_id = :e", e="99") == 1
        stored = await store.get_product_by_external_id("99")
        assert stored["name"] == "New"
        assert (await store.get_product_by_id(first["id"]))["external_id"] == "99"

    @pytest.mark.asyncio
    async def test_update_returns_none_when_missing(self, store: CatalogStore) -> None:
        data = transform_product({"id": 5, "ref": "B"})
        assert await store.update_product_by_external_id("5", data) is None

    @pytest.mark.asyncio
    async def test_update_touches_only_given_columns(self, store: CatalogStore) -> None:
        await store.upsert_product(
            transform_product({"id": 99, "ref": "P-99", "label": "Old", "price": "120", "description": "d"})
        )

        updated = await store.update_product_by_external_id("99", {"name": "New", "external_id": "7"})

        stored = await store.get_product_by_external_id("99")
        assert updated["id"] == stored["id"]
        assert (stored["name"], stored["sku"], stored["slug"]) == ("New", "P-99", "p-99")
        assert stored["price"] == pytest.approx(120.0)
        assert stored["description"] == "d"

    @pytest.mark.asyncio
    async def test_attributes_round_trip_as_dict(self, store: CatalogStore, sample_product: dict) -> None:
        await store.upsert_product(transform_product(sample_product))

        stored = await store.get_product_by_external_id("99")

        assert stored["attributes"]["material"] == "oak"

    @pytest.mark.asyncio
    async def test_delete_missing_reports_not_found(self, store: CatalogStore) -> None:
        assert await store.delete_product_by_external_id("404") == DeleteOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store: CatalogStore) -> None:
        product = await store.upsert_product(transform_product({"id": 1, "ref": "A"}))
        category_id = await store.upsert_category(transform_category({"id": 1, "label": "C"}))
        await store.link_product_category(product["id"], category_id)
        variant_id = await store.upsert_variant(
            {"external_id": "11", "product_id": product["id"], "sku_variant": "A_C1"}
        )
        await store.upsert_stock_level({"product_id": product["id"], "variant_id": variant_id, "warehouse_id": "1", "quantity": 3})
        await store.upsert_stock_level({"product_id": product["id"], "variant_id": None, "warehouse_id": "1", "quantity": 4})

        assert await store.delete_product_by_external_id("1") == DeleteOutcome.DELETED

        for table in ("products", "product_variants", "product_categories", "stock_levels"):
            assert await count_rows(store, table) == 0
        assert await count_rows(store, "categories") == 1


class TestCategories:
    @pytest.mark.asyncio
    async def test_resolve_parents_after_out_of_order_insert(self, store: CatalogStore) -> None:
        await store.upsert_category(transform_category({"id": 2, "label": "Child", "fk_parent": 1}))
        parent_id = await store.upsert_category(transform_category({"id": 1, "label": "Root"}))

        unresolved = await store.resolve_category_parents()

        assert unresolved == []
        child = await store.get_category_by_external_id("2")
        assert child["parent_id"] == parent_id

    @pytest.mark.asyncio
    async def test_unresolved_parent_reported(self, store: CatalogStore) -> None:
        await store.upsert_category(transform_category({"id": 2, "label": "Child", "fk_parent": 77}))

        unresolved = await store.resolve_category_parents()

        assert unresolved == [{"external_id": "2", "parent_external_id": "77"}]

    @pytest.mark.asyncio
    async def test_attach_children(self, store: CatalogStore) -> None:
        await store.upsert_category(transform_category({"id": 2, "label": "Child", "fk_parent": 1}))
        parent_id = await store.upsert_category(transform_category({"id": 1, "label": "Root"}))

        assert await store.attach_category_children("1", parent_id) == 1
        assert await store.attach_category_children("1", parent_id) == 0

    @pytest.mark.asyncio
    async def test_delete_detaches_children(self, store: CatalogStore) -> None:
        parent_id = await store.upsert_category(transform_category({"id": 1, "label": "Root"}))
        await store.upsert_category({**transform_category({"id": 2, "label": "Child", "fk_parent": 1}), "parent_id": parent_id})

        assert await store.delete_category_by_external_id("1") == DeleteOutcome.DELETED
        assert await store.delete_category_by_external_id("1") == DeleteOutcome.NOT_FOUND
        child = await store.get_category_by_external_id("2")
        assert child["parent_id"] is None


class TestLinks:
    @pytest.mark.asyncio
    async def test_link_is_idempotent(self, store: CatalogStore) -> None:
        product = await store.upsert_product(transform_product({"id": 1, "ref": "A"}))
        category_id = await store.upsert_category(transform_category({"id": 1, "label": "C"}))

        assert await store.link_product_category(product["id"], category_id) is True
        assert await store.link_product_category(product["id"], category_id) is False
        assert await store.get_product_category_ids(product["id"]) == {category_id}


class TestVariants:
    @pytest.mark.asyncio
    async def test_delete_variants_except(self, store: CatalogStore) -> None:
        product = await store.upsert_product(transform_product({"id": 1, "ref": "A"}))
        for ext in ("a", "b", "c"):
            await store.upsert_variant({"external_id": ext, "product_id": product["id"]})

        deleted = await store.delete_variants_except(product["id"], {"a", "c"})

        assert deleted == ["b"]
        assert {v["external_id"] for v in await store.list_variants(product["id"])} == {"a", "c"}


class TestStockLevels:
    @pytest.mark.asyncio
    async def test_upsert_without_variant_converges_on_one_row(self, store: CatalogStore) -> None:
        product = await store.upsert_product(transform_product({"id": 1, "ref": "A"}))
        row = {"product_id": product["id"], "variant_id": None, "warehouse_id": "1"}

        await store.upsert_stock_level({**row, "quantity": 5})
        await store.upsert_stock_level({**row, "quantity": 2})

        levels = await store.list_stock_levels(product["id"])
        assert len(levels) == 1
        assert levels[0]["quantity"] == 2

    @pytest.mark.asyncio
    async def test_variant_and_base_rows_stay_separate(self, store: CatalogStore) -> None:
        product = await store.upsert_product(transform_product({"id": 1, "ref": "A"}))
        variant_id = await store.upsert_variant({"external_id": "11", "product_id": product["id"]})
        row = {"product_id": product["id"], "variant_id": variant_id, "warehouse_id": "1"}

        await store.upsert_stock_level({**row, "quantity": 5})
        await store.upsert_stock_level({**row, "quantity": 3})
        await store.upsert_stock_level({**row, "variant_id": None, "quantity": 9})

        levels = await store.list_stock_levels(product["id"])
        assert {(level["variant_id"], level["quantity"]) for level in levels} == {
            (variant_id, 3),
            (None, 9),
        }

    @pytest.mark.asyncio
    async def test_schema_rejects_second_base_row(self, store: CatalogStore) -> None:
        product = await store.upsert_product(transform_product({"id": 1, "ref": "A"}))
        insert = text("""
            INSERT INTO stock_levels
            (product_id, variant_id, warehouse_id, quantity, last_checked_at, updated_at)
            VALUES (:product_id, NULL, '1', 1, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
        """)

        async with store.session_factory() as session:
            await session.execute(insert, {"product_id": product["id"]})
            with pytest.raises(IntegrityError):
                await session.execute(insert, {"product_id": product["id"]})
            await session.rollback()

    @pytest.mark.asyncio
    async def test_requires_a_product(self, store: CatalogStore) -> None:
        with pytest.raises(ValueError):
            await store.upsert_stock_level({"product_id": None, "variant_id": None, "warehouse_id": "1"})


class TestImages:
    @pytest.mark.asyncio
    async def test_inherited_image_not_duplicated(self, store: CatalogStore) -> None:
        product = await store.upsert_product(transform_product({"id": 1, "ref": "A"}))
        variant_id = await store.upsert_variant({"external_id": "v", "product_id": product["id"]})
        image = {
            "product_id": product["id"],
            "variant_id": None,
            "cdn_url": "https://cdn.test/A/A-1.jpg",
            "original_filename": "A-1.jpg",
        }
        await store.upsert_product_image(image)
        await store.upsert_product_image(image)

        inherited = {**image, "product_id": None, "variant_id": variant_id}
        assert await store.add_variant_image_if_missing(inherited) is True
        assert await store.add_variant_image_if_missing(inherited) is False

        assert len(await store.list_product_images(product["id"])) == 1
        assert len(await store.list_variant_images(variant_id)) == 1


class TestSyncStatus:
    @pytest.mark.asyncio
    async def test_status_transitions(self, store: CatalogStore) -> None:
        await store.update_sync_status("full_sync", SyncState.RUNNING)
        await store.update_sync_status("full_sync", SyncState.IDLE, records_synced=12)
        await store.update_sync_status("full_sync", SyncState.RUNNING)

        status = await store.get_sync_status("full_sync")

        assert status["status"] == "running"
        assert status["records_synced"] == 12
        assert status["last_sync_at"] is not None


class TestReadApi:
    @pytest.mark.asyncio
    async def test_search_is_case_insensitive_and_active_only(self, store: CatalogStore) -> None:
        await store.upsert_product(transform_product({"id": 1, "ref": "OAK-1", "label": "Oak Chair"}))
        await store.upsert_product(
            transform_product({"id": 2, "ref": "OAK-2", "label": "Oak Table", "status_tosell": 0})
        )

        rows, total = await store.search_products("oak", limit=10, offset=0)

        assert total == 1
        assert rows[0]["external_id"] == "1"

    @pytest.mark.asyncio
    async def test_detail_by_slug_hides_inactive(self, store: CatalogStore) -> None:
        await store.upsert_product(transform_product({"id": 2, "ref": "X", "status_tosell": 0}))
        assert await store.get_product_detail_by_slug("x") is None

    @pytest.mark.asyncio
    async def test_list_products_by_category(self, store: CatalogStore) -> None:
        a = await store.upsert_product(transform_product({"id": 1, "ref": "A", "label": "A"}))
        await store.upsert_product(transform_product({"id": 2, "ref": "B", "label": "B"}))
        category_id = await store.upsert_category(transform_category({"id": 1, "label": "C"}))
        await store.link_product_category(a["id"], category_id)

        rows = await store.list_products(10, 0, category_id=category_id)

        assert [row["sku"] for row in rows] == ["A"]
        assert await store.count_products(category_id) == 1
        assert await store.count_products() == 2
