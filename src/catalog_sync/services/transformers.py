"""Pure mappings from ERP payloads to local row dictionaries.

None of these functions perform I/O or raise on malformed input: missing
or unparsable values degrade to a neutral default.
"""

import os
import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from catalog_sync.config import get_settings

_SLUG_SEPARATOR = re.compile(r"[^a-z0-9]+")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_DOUBLE_SLASH = re.compile(r"(?<!:)/{2,}")

# Extra product fields kept in the ``attributes`` JSON column.
_PRODUCT_ENRICHMENT_FIELDS = {
    "currency": "multicurrency_code",
    "price_ttc": "price_ttc",
    "vat_rate": "tva_tx",
    "barcode": "barcode",
    "weight": "weight",
    "weight_units": "weight_units",
    "length": "length",
    "width": "width",
    "height": "height",
    "size_units": "length_units",
    "surface": "surface",
    "volume": "volume",
}


# =============================================================================
# Scalar helpers
# =============================================================================


def external_id(value: Any) -> str | None:
    """Normalize an ERP identifier to its string form."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parent_external_id(value: Any) -> str | None:
    """Like ``external_id`` but Dolibarr's ``0`` means "no parent"."""
    text = external_id(value)
    if text in (None, "0"):
        return None
    return text


def parse_epoch(value: Any) -> datetime | None:
    """Convert Unix-epoch seconds to a naive UTC datetime."""
    if value in (None, ""):
        return None
    try:
        seconds = int(float(value))
    except (TypeError, ValueError):
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def parse_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def first_present(raw: dict[str, Any], *keys: str) -> Any:
    """Return the first value among ``keys`` that is neither None nor empty."""
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def slugify(sku: Any, fallback_id: Any) -> str:
    """Lowercase the SKU and collapse non-alphanumeric runs into dashes.

    Leading and trailing dashes are kept, so ``"Widget!"`` becomes
    ``"widget-"`` just as the storefront links expect.
    """
    if sku:
        return _SLUG_SEPARATOR.sub("-", str(sku).lower())
    return f"product-{fallback_id}"


# =============================================================================
# Entity transformers
# =============================================================================


def transform_category(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "external_id": external_id(raw.get("id")),
        "name": first_present(raw, "label", "name"),
        "description": raw.get("description"),
        "parent_external_id": parent_external_id(first_present(raw, "fk_parent", "parent_id")),
        "external_created_at": parse_epoch(raw.get("date_creation")),
        "external_updated_at": parse_epoch(raw.get("tms")),
    }


def _product_attributes(raw: dict[str, Any]) -> dict[str, Any]:
    attributes = {
        key: raw[source]
        for key, source in _PRODUCT_ENRICHMENT_FIELDS.items()
        if raw.get(source) not in (None, "")
    }
    extrafields = raw.get("array_options")
    if isinstance(extrafields, dict):
        for key, value in extrafields.items():
            if value not in (None, ""):
                attributes[key.removeprefix("options_")] = value
    return attributes


def transform_product(raw: dict[str, Any]) -> dict[str, Any]:
    status_tosell = raw.get("status_tosell")
    is_active = status_tosell in (None, "") or parse_int(status_tosell, default=1) == 1
    sku = raw.get("ref") or None
    ext_id = external_id(raw.get("id"))
    return {
        "external_id": ext_id,
        "sku": sku,
        "name": first_present(raw, "label", "name"),
        "description": raw.get("description"),
        "long_description": first_present(raw, "note_public", "long_description"),
        "price": parse_float(raw.get("price")),
        "is_active": is_active,
        "slug": slugify(sku, ext_id),
        "attributes": _product_attributes(raw),
        "external_created_at": parse_epoch(raw.get("date_creation")),
        "external_updated_at": parse_epoch(raw.get("tms")),
    }


# Product columns and the payload keys they are derived from.
_PRODUCT_COLUMN_SOURCES = {
    "sku": ("ref",),
    "name": ("label", "name"),
    "description": ("description",),
    "long_description": ("note_public", "long_description"),
    "price": ("price",),
    "is_active": ("status_tosell",),
    "slug": ("ref",),
    "attributes": (*_PRODUCT_ENRICHMENT_FIELDS.values(), "array_options"),
    "external_created_at": ("date_creation",),
    "external_updated_at": ("tms",),
}


def transform_product_changes(raw: dict[str, Any]) -> dict[str, Any]:
    """Map a partial product snapshot to the columns it actually carries.

    Columns whose source keys are all absent (or null) are left out, so
    ``{"id": 99, "label": "New Name"}`` only yields ``name``.
    """
    data = transform_product(raw)
    return {
        column: data[column]
        for column, sources in _PRODUCT_COLUMN_SOURCES.items()
        if any(raw.get(source) is not None for source in sources)
    }


def _variant_attributes(value: Any) -> dict[str, Any]:
    if isinstance(value, list):
        attributes = {}
        for attr in value:
            if not isinstance(attr, dict):
                continue
            key = attr.get("code") or attr.get("option")
            if key:
                attributes[key] = attr.get("value")
        return attributes
    if isinstance(value, dict):
        return dict(value)
    return {}


def transform_variant(raw: dict[str, Any], product_id: int) -> dict[str, Any]:
    ext_id = external_id(raw.get("id"))
    return {
        "external_id": ext_id,
        "product_id": product_id,
        "sku_variant": raw.get("ref") or f"{raw.get('parent_ref')}-var-{ext_id}",
        "price_modifier": parse_float(raw.get("price_var")),
        "attributes": _variant_attributes(raw.get("attributes")),
        "external_created_at": parse_epoch(raw.get("date_creation")),
        "external_updated_at": parse_epoch(raw.get("tms")),
    }


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def image_filename(raw: dict[str, Any]) -> str | None:
    """Derive the file name of an ERP image/document entry."""
    name = first_present(raw, "filename", "name")
    if name:
        return os.path.basename(str(name))
    location = first_present(raw, "relativename", "url_photo_absolute", "url", "path", "filepath")
    if location:
        path = urlparse(str(location)).path
        return os.path.basename(path) or None
    return None


def cdn_url_for(filename: str, base_url: str | None = None) -> str:
    """Build ``<base>/<product ref>/<filename>``.

    The directory is the file name's first dash-delimited segment, which by
    convention is the product reference.
    """
    base_url = base_url if base_url is not None else get_settings().cdn_base_url
    safe_name = sanitize_filename(filename)
    directory = safe_name.split("-", 1)[0] if "-" in safe_name else os.path.splitext(safe_name)[0]
    return _DOUBLE_SLASH.sub("/", f"{base_url}/{directory}/{safe_name}")


def transform_product_image(
    raw: dict[str, Any],
    product_id: int | None,
    variant_id: int | None,
    filename: str,
    base_url: str | None = None,
) -> dict[str, Any]:
    image_id = first_present(raw, "id", "ref")
    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "cdn_url": cdn_url_for(filename, base_url),
        "alt_text": first_present(raw, "alt", "label") or filename,
        "display_order": parse_int(first_present(raw, "position", "position_name")),
        "is_thumbnail": bool(raw.get("is_thumbnail")),
        "external_image_id": external_id(image_id),
        "original_filename": filename,
        "original_path": first_present(
            raw, "path", "filepath", "fullname", "url_photo_absolute", "url"
        ),
    }


def transform_stock_level(
    raw: dict[str, Any], product_id: int | None, variant_id: int | None
) -> dict[str, Any]:
    warehouse = first_present(raw, "warehouse_id", "fk_warehouse")
    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "quantity": parse_int(first_present(raw, "quantity", "qty", "real", "stock_reel")),
        "warehouse_id": str(warehouse) if warehouse is not None else "default",
        "external_updated_at": parse_epoch(first_present(raw, "updated_at", "tms", "date_modification")),
    }
