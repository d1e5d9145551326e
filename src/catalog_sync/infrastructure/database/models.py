"""SQLAlchemy models for the local catalog cache.

Every table mirrors an ERP entity and carries the ERP identifier as
``external_id``; foreign keys always point at local ids.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Enums
# =============================================================================


class SyncState(str, PyEnum):
    """State of a synchronization job in ``sync_status``."""

    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


# =============================================================================
# Catalog
# =============================================================================


class Category(Base):
    """Product category mirrored from the ERP."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    parent_external_id: Mapped[Optional[str]] = mapped_column(String(64))
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL")
    )
    external_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    external_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_categories_parent_external_id", "parent_external_id"),)


class Product(Base):
    """Base product mirrored from the ERP."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(255))
    name: Mapped[Optional[str]] = mapped_column(String(500))
    description: Mapped[Optional[str]] = mapped_column(Text)
    long_description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    attributes: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    external_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    external_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_products_sku", "sku"),
        Index("ix_products_active", "is_active"),
    )


class ProductCategory(Base):
    """Many-to-many membership of products in categories."""

    __tablename__ = "product_categories"

    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True
    )


class ProductVariant(Base):
    """Variant owned by a base product."""

    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    sku_variant: Mapped[Optional[str]] = mapped_column(String(255))
    price_modifier: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    attributes: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    external_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    external_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_product_variants_product_id", "product_id"),)


class ProductImage(Base):
    """Image metadata; the bytes live on the CDN.

    Base images carry ``product_id``. Variant images (own or inherited from
    the parent) carry only ``variant_id``.
    """

    __tablename__ = "product_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE")
    )
    variant_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("product_variants.id", ondelete="CASCADE")
    )
    cdn_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    alt_text: Mapped[Optional[str]] = mapped_column(String(500))
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_thumbnail: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    external_image_id: Mapped[Optional[str]] = mapped_column(String(255))
    original_filename: Mapped[str] = mapped_column(String(500), nullable=False)
    original_path: Mapped[Optional[str]] = mapped_column(String(1024))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("product_id", "original_filename", name="uq_product_images_product_file"),
        UniqueConstraint("variant_id", "original_filename", name="uq_product_images_variant_file"),
    )


class StockLevel(Base):
    """Per-warehouse stock for a base product or one of its variants."""

    __tablename__ = "stock_levels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE")
    )
    variant_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("product_variants.id", ondelete="CASCADE")
    )
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    external_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_checked_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "product_id", "variant_id", "warehouse_id", name="uq_stock_levels_target"
        ),
        # Base-product rows have a NULL variant_id, which the constraint above
        # treats as distinct.
        Index(
            "uq_stock_levels_product_warehouse",
            "product_id",
            "warehouse_id",
            unique=True,
            postgresql_where=text("variant_id IS NULL"),
            sqlite_where=text("variant_id IS NULL"),
        ),
    )


# =============================================================================
# Sync bookkeeping
# =============================================================================


class SyncStatus(Base):
    """Track synchronization status per job."""

    __tablename__ = "sync_status"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), default=SyncState.IDLE.value, nullable=False)
    records_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
