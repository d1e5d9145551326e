"""Unit tests for ERP payload transformers."""

from datetime import datetime

import pytest

from catalog_sync.services.transformers import (
    cdn_url_for,
    external_id,
    image_filename,
    parent_external_id,
    parse_epoch,
    slugify,
    transform_category,
    transform_product,
    transform_product_changes,
    transform_product_image,
    transform_stock_level,
    transform_variant,
)


class TestScalarHelpers:
    def test_external_id_normalizes_to_string(self) -> None:
        assert external_id(42) == "42"
        assert external_id(" 7 ") == "7"
        assert external_id(None) is None
        assert external_id("") is None

    def test_parent_zero_means_root(self) -> None:
        assert parent_external_id("0") is None
        assert parent_external_id(0) is None
        assert parent_external_id("12") == "12"

    def test_parse_epoch_is_naive_utc(self) -> None:
        assert parse_epoch(0) == datetime(1970, 1, 1)
        assert parse_epoch("86400") == datetime(1970, 1, 2)
        assert parse_epoch(None) is None
        assert parse_epoch("not-a-date") is None

    @pytest.mark.parametrize(
        "sku,fallback,expected",
        [
            ("Widget #1", 1, "widget-1"),
            ("  --ABC__def--  ", 1, "-abc-def-"),
            ("Widget!", 1, "widget-"),
            (None, 7, "product-7"),
            ("###", 8, "-"),
            ("", 9, "product-9"),
        ],
    )
    def test_slugify(self, sku: str | None, fallback: int, expected: str) -> None:
        assert slugify(sku, fallback) == expected


class TestTransformCategory:
    def test_maps_fields(self, sample_category: dict) -> None:
        category = transform_category(sample_category)

        assert category["external_id"] == "3"
        assert category["name"] == "Chairs"
        assert category["parent_external_id"] is None
        assert category["external_created_at"] == datetime(2023, 11, 14, 22, 13, 20)

    def test_parent_reference_kept(self) -> None:
        category = transform_category({"id": 5, "label": "Sub", "fk_parent": 3})
        assert category["parent_external_id"] == "3"


class TestTransformProduct:
    def test_maps_core_fields(self, sample_product: dict) -> None:
        product = transform_product(sample_product)

        assert product["external_id"] == "99"
        assert product["sku"] == "CHAIR-01"
        assert product["name"] == "Oak chair"
        assert product["long_description"] == "Hand finished"
        assert product["price"] == 120.0
        assert product["is_active"] is True
        assert product["slug"] == "chair-01"

    def test_enrichment_goes_to_attributes(self, sample_product: dict) -> None:
        attributes = transform_product(sample_product)["attributes"]

        assert attributes["barcode"] == "4006381333931"
        assert attributes["material"] == "oak"

    def test_not_for_sale_is_inactive(self, sample_product: dict) -> None:
        sample_product["status_tosell"] = "0"
        assert transform_product(sample_product)["is_active"] is False

    def test_missing_status_defaults_active(self) -> None:
        assert transform_product({"id": 1, "ref": "X"})["is_active"] is True

    def test_missing_ref_uses_id_slug(self) -> None:
        product = transform_product({"id": 7, "ref": None, "price": None})
        assert product["slug"] == "product-7"
        assert product["price"] == 0.0

    def test_changes_only_carry_present_columns(self) -> None:
        assert transform_product_changes({"id": 99, "label": "New Name"}) == {"name": "New Name"}

    def test_changes_keep_sku_and_slug_together(self, sample_product: dict) -> None:
        changes = transform_product_changes({"id": 99, "ref": "P-99", "tms": None})

        assert changes == {"sku": "P-99", "slug": "p-99"}
        assert set(transform_product_changes(sample_product)) >= {"sku", "name", "price", "attributes"}


class TestTransformVariant:
    def test_attribute_list(self) -> None:
        variant = transform_variant(
            {
                "id": 501,
                "ref": "CHAIR-01-RED",
                "price_var": "5.5",
                "attributes": [{"code": "color", "value": "red"}, {"value": "ignored"}],
            },
            product_id=10,
        )

        assert variant["external_id"] == "501"
        assert variant["product_id"] == 10
        assert variant["price_modifier"] == 5.5
        assert variant["attributes"] == {"color": "red"}

    def test_sku_fallback(self) -> None:
        variant = transform_variant({"id": 9, "parent_ref": "CHAIR-01"}, product_id=1)
        assert variant["sku_variant"] == "CHAIR-01-var-9"


class TestImages:
    def test_filename_from_relative_name(self) -> None:
        assert image_filename({"relativename": "CHAIR-01/CHAIR-01-front.jpg"}) == "CHAIR-01-front.jpg"
        assert image_filename({"url": "https://erp/x/y/a.png?v=1"}) == "a.png"
        assert image_filename({}) is None

    def test_cdn_url_uses_reference_directory(self) -> None:
        url = cdn_url_for("CHAIR-01 front.jpg", "https://cdn.test/img/")
        assert url == "https://cdn.test/img/CHAIR/CHAIR-01_front.jpg"

    def test_cdn_url_without_dash_uses_stem(self) -> None:
        assert cdn_url_for("photo.jpg", "https://cdn.test/") == "https://cdn.test/photo/photo.jpg"

    def test_transform_product_image(self) -> None:
        image = transform_product_image(
            {"id": 4, "path": "/docs/a-1.jpg"}, 3, None, "a-1.jpg", "https://cdn.test/"
        )

        assert image["product_id"] == 3
        assert image["variant_id"] is None
        assert image["cdn_url"] == "https://cdn.test/a/a-1.jpg"
        assert image["alt_text"] == "a-1.jpg"
        assert image["external_image_id"] == "4"
        assert image["original_path"] == "/docs/a-1.jpg"


class TestTransformStockLevel:
    def test_defaults_for_empty_payload(self) -> None:
        stock = transform_stock_level({}, product_id=1, variant_id=None)

        assert stock["quantity"] == 0
        assert stock["warehouse_id"] == "default"
        assert stock["external_updated_at"] is None

    def test_maps_fields(self) -> None:
        stock = transform_stock_level(
            {"warehouse_id": 2, "quantity": "7", "updated_at": 0}, product_id=1, variant_id=4
        )

        assert stock == {
            "product_id": 1,
            "variant_id": 4,
            "quantity": 7,
            "warehouse_id": "2",
            "external_updated_at": datetime(1970, 1, 1),
        }
