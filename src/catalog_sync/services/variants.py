"""Variant inference from the ERP's SKU naming convention.

The ERP stores each variant as an ordinary product whose reference is the
parent's reference followed by a suffix such as ``_C2``. This module groups
such products under their parent and derives the distinguishing attribute
from the description text.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from catalog_sync.services.transformers import external_id, parse_float


@dataclass
class ProductGroup:
    """A parent product and the suffix-named products that are its variants."""

    parent: dict[str, Any]
    variants: list[dict[str, Any]] = field(default_factory=list)


class VariantGrouper:
    """Split a product listing into parents and their suffix variants."""

    def __init__(self, suffix_pattern: str = r"_C\d+$"):
        self.suffix = re.compile(suffix_pattern)

    def root_sku(self, sku: Any) -> str | None:
        """Return the parent SKU if ``sku`` carries a variant suffix."""
        if not sku:
            return None
        sku = str(sku)
        match = self.suffix.search(sku)
        if not match or match.start() == 0:
            return None
        return sku[: match.start()]

    def is_variant_sku(self, sku: Any) -> bool:
        return self.root_sku(sku) is not None

    def group(self, products: list[dict[str, Any]]) -> list[ProductGroup]:
        """Group products; a suffixed product whose parent is absent stays a parent.

        The output order follows the first appearance of each parent.
        """
        groups: dict[str, ProductGroup] = {}
        order: list[ProductGroup] = []
        suffixed: list[tuple[str, dict[str, Any]]] = []

        for product in products:
            root = self.root_sku(product.get("ref"))
            if root is not None:
                suffixed.append((root, product))
                continue
            group = ProductGroup(parent=product)
            order.append(group)
            if product.get("ref"):
                groups.setdefault(str(product["ref"]), group)

        for root, product in suffixed:
            group = groups.get(root)
            if group is None:
                order.append(ProductGroup(parent=product))
            else:
                group.variants.append(product)

        return order


def description_diff(parent_description: Any, variant_description: Any) -> str:
    """Return the part of the variant's description the parent does not have."""
    parent_text = str(parent_description or "").strip()
    variant_text = str(variant_description or "").strip()
    if not variant_text or variant_text == parent_text:
        return ""
    if parent_text and parent_text in variant_text:
        variant_text = variant_text.replace(parent_text, "", 1)
    return variant_text.strip(" \t\r\n-,;|")


def infer_variant_attributes(
    parent_description: Any, variant_description: Any
) -> dict[str, str]:
    """Infer ``{key: value}`` from a ``"Key: Value"`` description difference."""
    diff = description_diff(parent_description, variant_description)
    if not diff:
        return {}
    if diff.count(":") == 1:
        key, value = (part.strip() for part in diff.split(":"))
        if key:
            return {key: value}
    return {"variant": diff}


def variant_payload_from_product(
    parent: dict[str, Any], variant_product: dict[str, Any]
) -> dict[str, Any]:
    """Shape a suffix-variant product like an ERP variant record.

    The price modifier is the difference from the parent's price.
    """
    return {
        "id": external_id(variant_product.get("id")),
        "ref": variant_product.get("ref"),
        "parent_ref": parent.get("ref"),
        "price_var": parse_float(variant_product.get("price")) - parse_float(parent.get("price")),
        "attributes": infer_variant_attributes(
            parent.get("description"), variant_product.get("description")
        ),
        "date_creation": variant_product.get("date_creation"),
        "tms": variant_product.get("tms"),
    }
