"""Read-only catalog endpoints served from the local cache."""

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from catalog_sync.api.dependencies import get_catalog_store
from catalog_sync.services.store import CatalogStore

router = APIRouter()


# =============================================================================
# Models
# =============================================================================


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class CategoryItem(BaseModel):
    id: int
    external_id: str
    name: str | None = None
    description: str | None = None
    parent_id: int | None = None
    parent_external_id: str | None = None


class CategoryListResponse(BaseModel):
    data: list[CategoryItem]
    pagination: Pagination


class ProductItem(BaseModel):
    id: int
    external_id: str
    sku: str | None = None
    name: str | None = None
    description: str | None = None
    price: float
    slug: str
    thumbnail_url: str | None = None


class ProductListResponse(BaseModel):
    data: list[ProductItem]
    pagination: Pagination


def _pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, total_pages=-(-total // limit))


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/categories", response_model=CategoryListResponse)
async def list_categories(
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    sort_by: Literal["name", "created_at", "updated_at"] = "name",
    sort_order: Literal["asc", "desc"] = "asc",
) -> CategoryListResponse:
    """List cached categories."""
    rows = await store.list_categories(limit, (page - 1) * limit, sort_by, sort_order)
    total = await store.count_categories()
    return CategoryListResponse(
        data=[CategoryItem(**row) for row in rows],
        pagination=_pagination(page, limit, total),
    )


@router.get("/products", response_model=ProductListResponse)
async def list_products(
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    category_id: int | None = Query(default=None, description="Local category id"),
    sort_by: Literal["name", "price", "created_at", "updated_at"] = "name",
    sort_order: Literal["asc", "desc"] = "asc",
) -> ProductListResponse:
    """List cached products with their thumbnail."""
    rows = await store.list_products(limit, (page - 1) * limit, category_id, sort_by, sort_order)
    total = await store.count_products(category_id)
    return ProductListResponse(
        data=[ProductItem(**row) for row in rows],
        pagination=_pagination(page, limit, total),
    )


@router.get("/products/search", response_model=ProductListResponse)
async def search_products(
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
    q: str = Query(..., min_length=1, description="Matched against name, description and SKU"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> ProductListResponse:
    rows, total = await store.search_products(q.strip(), limit, (page - 1) * limit)
    return ProductListResponse(
        data=[ProductItem(**row) for row in rows],
        pagination=_pagination(page, limit, total),
    )


@router.get("/products/{slug}")
async def get_product(
    slug: str,
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
) -> dict[str, Any]:
    """Active product with categories, variants, images and stock."""
    product = await store.get_product_detail_by_slug(slug)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    product["is_active"] = bool(product["is_active"])
    return product
