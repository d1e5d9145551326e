"""Unit tests for the read-only catalog endpoints."""

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from catalog_sync.api.dependencies import get_catalog_store
from catalog_sync.infrastructure.database.models import SyncState
from catalog_sync.services.store import CatalogStore
from catalog_sync.services.transformers import transform_category, transform_product


@pytest_asyncio.fixture
async def async_client(app: Any, store: CatalogStore) -> AsyncGenerator[AsyncClient, None]:
    """Create asynchronous test client sharing the test store."""
    app.dependency_overrides[get_catalog_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def catalog(store: CatalogStore) -> dict:
    category_id = await store.upsert_category(transform_category({"id": 1, "label": "Chairs"}))
    chair = await store.upsert_product(
        transform_product({"id": 10, "ref": "CHAIR", "label": "Oak Chair", "price": 100})
    )
    await store.upsert_product(transform_product({"id": 20, "ref": "DESK", "label": "Desk", "price": 300}))
    await store.link_product_category(chair["id"], category_id)
    await store.upsert_product_image(
        {
            "product_id": chair["id"],
            "cdn_url": "https://cdn.test/CHAIR/CHAIR-1.jpg",
            "original_filename": "CHAIR-1.jpg",
        }
    )
    variant_id = await store.upsert_variant(
        {"external_id": "11", "product_id": chair["id"], "sku_variant": "CHAIR_C1", "attributes": {"Size": "XL"}}
    )
    await store.upsert_stock_level({"product_id": chair["id"], "variant_id": variant_id, "warehouse_id": "1", "quantity": 4})
    return {"category_id": category_id, "chair_id": chair["id"]}


@pytest.mark.asyncio
async def test_list_products(async_client: AsyncClient, catalog: dict) -> None:
    response = await async_client.get("/api/v1/products", params={"sort_by": "price", "sort_order": "desc"})

    assert response.status_code == 200
    data = response.json()
    assert [p["sku"] for p in data["data"]] == ["DESK", "CHAIR"]
    assert data["data"][1]["thumbnail_url"] == "https://cdn.test/CHAIR/CHAIR-1.jpg"
    assert data["pagination"] == {"page": 1, "limit": 20, "total": 2, "total_pages": 1}


@pytest.mark.asyncio
async def test_list_products_by_category(async_client: AsyncClient, catalog: dict) -> None:
    response = await async_client.get("/api/v1/products", params={"category_id": catalog["category_id"]})

    assert [p["sku"] for p in response.json()["data"]] == ["CHAIR"]


@pytest.mark.asyncio
async def test_invalid_sort_rejected(async_client: AsyncClient, catalog: dict) -> None:
    response = await async_client.get("/api/v1/products", params={"sort_by": "sku; DROP TABLE products"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_search(async_client: AsyncClient, catalog: dict) -> None:
    response = await async_client.get("/api/v1/products/search", params={"q": "OAK"})

    assert response.status_code == 200
    assert [p["sku"] for p in response.json()["data"]] == ["CHAIR"]


@pytest.mark.asyncio
async def test_product_detail(async_client: AsyncClient, catalog: dict) -> None:
    response = await async_client.get("/api/v1/products/chair")

    assert response.status_code == 200
    product = response.json()
    assert product["is_active"] is True
    assert [c["name"] for c in product["categories"]] == ["Chairs"]
    assert product["variants"][0]["attributes"] == {"Size": "XL"}
    assert product["variants"][0]["stock"][0]["quantity"] == 4
    assert len(product["base_images"]) == 1
    assert product["base_stock"] == []


@pytest.mark.asyncio
async def test_product_detail_not_found(async_client: AsyncClient, catalog: dict) -> None:
    response = await async_client.get("/api/v1/products/missing")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_categories(async_client: AsyncClient, catalog: dict) -> None:
    response = await async_client.get("/api/v1/categories")

    assert response.status_code == 200
    assert response.json()["data"][0]["name"] == "Chairs"


@pytest.mark.asyncio
async def test_sync_status(async_client: AsyncClient, store: CatalogStore) -> None:
    assert (await async_client.get("/api/v1/sync/status")).status_code == 404

    await store.update_sync_status("full_sync", SyncState.IDLE, records_synced=3)
    response = await async_client.get("/api/v1/sync/status")

    assert response.status_code == 200
    assert response.json()["records_synced"] == 3
