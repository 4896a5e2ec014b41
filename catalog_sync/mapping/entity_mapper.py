# catalog_sync/mapping/entity_mapper.py
# Pure translation between catalog records and ERP field payloads.
# Nothing in here talks to the network.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from catalog_sync.catalog.models import CatalogProduct, CatalogVariant
from catalog_sync.mapping.money import to_major_units

# Medusa creates this option for products that have no real options
PLACEHOLDER_OPTIONS = {"default option"}
PLACEHOLDER_VALUES = {"default option value"}

ERP_ID_METADATA_KEYS = ("erp_product_id", "odoo_product_id", "odoo_id")


@dataclass
class RemoteProductPayload:
    fields: Dict[str, Any]
    category_path: List[str] = field(default_factory=list)
    tag_names: List[str] = field(default_factory=list)
    image_urls: List[str] = field(default_factory=list)
    # option name -> values, both in catalog order
    attribute_lines: Dict[str, List[str]] = field(default_factory=dict)


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


def _is_placeholder(name: str, value: str | None = None) -> bool:
    if name.strip().lower() in PLACEHOLDER_OPTIONS:
        return True
    return value is not None and value.strip().lower() in PLACEHOLDER_VALUES


def attribute_lines_for(variants: Iterable[CatalogVariant]) -> Dict[str, List[str]]:
    lines: Dict[str, List[str]] = {}
    for v in variants:
        for opt in v.options:
            name, value = _clean(opt.name), _clean(opt.value)
            if not name or not value or _is_placeholder(name, value):
                continue
            values = lines.setdefault(name, [])
            if value not in values:
                values.append(value)
    return lines


def variant_value_key(variant: CatalogVariant) -> frozenset:
    """(attribute, value) pairs identifying a variant, placeholders excluded, lowercased."""
    return frozenset(
        (_clean(o.name).lower(), _clean(o.value).lower())
        for o in variant.options
        if _clean(o.name) and _clean(o.value) and not _is_placeholder(o.name, o.value)
    )


def _primary_category_path(product: CatalogProduct) -> List[str]:
    # Deepest path wins; ties keep catalog order
    best: List[str] = []
    for cat in product.categories:
        path = [p for p in (cat.path or [cat.name]) if _clean(p)]
        if len(path) > len(best):
            best = path
    return best


def to_remote_product_fields(product: CatalogProduct, *, product_type: str, ref_field: str) -> RemoteProductPayload:
    fields: Dict[str, Any] = {
        "name": _clean(product.title) or product.handle or product.id,
        "active": product.status == "published",
        "description_sale": product.description or False,
        "type": product_type,
        "sale_ok": True,
        ref_field: product.id,
    }
    skus = product.skus()
    if len(product.variants) == 1 and skus:
        fields["default_code"] = skus[0]

    images: List[str] = []
    for url in [product.thumbnail] + [i.url for i in product.images]:
        if url and url not in images:
            images.append(url)

    tags: List[str] = []
    for t in product.tags:
        val = _clean(t.value)
        if val and val not in tags:
            tags.append(val)

    return RemoteProductPayload(
        fields=fields,
        category_path=_primary_category_path(product),
        tag_names=tags,
        image_urls=images,
        attribute_lines=attribute_lines_for(product.variants),
    )


def to_remote_price_entries(
    variant: CatalogVariant, currencies: Optional[Iterable[str]] = None
) -> List[Tuple[str, int]]:
    """
    (currency, amount in minor units) for every calculated price of the variant.
    Raw price-set entries are deliberately not consulted.
    """
    wanted = {c.lower() for c in currencies} if currencies else None
    out: List[Tuple[str, int]] = []
    for code, cp in sorted(variant.calculated_prices.items()):
        code = code.lower()
        if wanted is not None and code not in wanted:
            continue
        out.append((code, int(cp.amount)))
    return out


def price_values(amount_minor: int, currency: str) -> Dict[str, Any]:
    return {"fixed_price": to_major_units(amount_minor, currency)}


def extract_remote_id(product: CatalogProduct) -> Optional[int]:
    meta = product.metadata or {}
    for key in ERP_ID_METADATA_KEYS:
        raw = meta.get(key)
        if raw in (None, "", False):
            continue
        try:
            return int(raw)
        except (TypeError, ValueError):
            continue
    return None
