# catalog_sync/sync/existence.py
# Decides whether a catalog entity already has a counterpart in the ERP.
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from catalog_sync.catalog.models import CatalogProduct
from catalog_sync.mapping.entity_mapper import extract_remote_id

logger = logging.getLogger("uvicorn.error")

TEMPLATE = "product.template"
VARIANT = "product.product"
ATTRIBUTE_LINE = "product.template.attribute.line"
PRICE_ITEM = "product.pricelist.item"

DEFAULT_STRATEGIES = ("reference", "sku", "name")

# Archived records are still "existing" for matching purposes
WITH_ARCHIVED = ("active", "in", [True, False])


@dataclass
class RemoteMatch:
    remote_id: int
    matched_by: str  # reference | metadata | sku | name

    @property
    def is_heuristic(self) -> bool:
        return self.matched_by in ("sku", "name")


class ExistenceResolver:
    def __init__(self, erp, *, ref_field: str, schema=None):
        self.erp = erp
        self.ref_field = ref_field
        self.schema = schema
        self._ref_available: Optional[bool] = None

    async def ref_field_available(self) -> bool:
        if self._ref_available is None:
            if self.schema is None:
                self._ref_available = True
            else:
                self._ref_available = await self.schema.has_field(TEMPLATE, self.ref_field)
                if not self._ref_available:
                    logger.warning(
                        "[EXISTS] %s.%s is missing in the ERP; matching falls back to metadata/SKU/name",
                        TEMPLATE, self.ref_field,
                    )
        return self._ref_available

    async def find_remote_product(
        self, product: CatalogProduct, strategies: Sequence[str] = DEFAULT_STRATEGIES
    ) -> Optional[RemoteMatch]:
        """First strategy that yields a template wins."""
        for strategy in strategies:
            if strategy == "reference":
                match = await self._by_reference(product)
            elif strategy == "sku":
                match = await self._by_sku(product)
            elif strategy == "name":
                match = await self._by_name(product)
            else:
                raise ValueError(f"unknown match strategy {strategy!r}")
            if match:
                logger.debug("[EXISTS] %s -> template %s via %s", product.id, match.remote_id, match.matched_by)
                return match
        return None

    async def _by_reference(self, product: CatalogProduct) -> Optional[RemoteMatch]:
        if await self.ref_field_available():
            ids = await self.erp.search(TEMPLATE, [(self.ref_field, "=", product.id), WITH_ARCHIVED], limit=1, order="id")
            return RemoteMatch(ids[0], "reference") if ids else None

        remote_id = extract_remote_id(product)
        if remote_id is None:
            return None
        rows = await self.erp.search(TEMPLATE, [("id", "=", remote_id), WITH_ARCHIVED], limit=1)
        return RemoteMatch(rows[0], "metadata") if rows else None

    async def _claimed_by_other(self, template_ids: List[int], product_id: str) -> set:
        """Templates whose reference field already points at another catalog product."""
        if not template_ids or not await self.ref_field_available():
            return set()
        rows = await self.erp.read(TEMPLATE, template_ids, ["id", self.ref_field])
        return {
            r["id"] for r in rows
            if r.get(self.ref_field) and r.get(self.ref_field) != product_id
        }

    async def claimed_by_other(self, template_id: int, product_id: str) -> bool:
        return template_id in await self._claimed_by_other([template_id], product_id)

    async def _by_sku(self, product: CatalogProduct) -> Optional[RemoteMatch]:
        skus = product.skus()
        if not skus:
            return None
        rows = await self.erp.search_read(
            VARIANT, [("default_code", "in", skus), WITH_ARCHIVED], ["product_tmpl_id", "default_code"], order="id"
        )
        tmpl_ids: List[int] = []
        for r in rows:
            tid = m2o_id(r.get("product_tmpl_id"))
            if tid and tid not in tmpl_ids:
                tmpl_ids.append(tid)
        taken = await self._claimed_by_other(tmpl_ids, product.id)
        for tid in tmpl_ids:
            if tid not in taken:
                return RemoteMatch(tid, "sku")
        return None

    async def _by_name(self, product: CatalogProduct) -> Optional[RemoteMatch]:
        name = (product.title or "").strip()
        if not name:
            return None
        ids = await self.erp.search(TEMPLATE, [("name", "=", name), WITH_ARCHIVED], order="id")
        taken = await self._claimed_by_other(ids, product.id)
        for tid in ids:
            if tid not in taken:
                return RemoteMatch(tid, "name")
        return None

    # ---- Attribute lines / variants / prices ----

    async def find_attribute_line(self, template_id: int, attribute_name: str) -> Optional[Dict[str, Any]]:
        rows = await self.erp.search_read(
            ATTRIBUTE_LINE,
            [("product_tmpl_id", "=", template_id), ("attribute_id.name", "=", attribute_name)],
            ["attribute_id", "value_ids"],
            limit=1, order="id",
        )
        return rows[0] if rows else None

    async def attribute_line_exists(self, template_id: int, attribute_name: str) -> bool:
        return await self.find_attribute_line(template_id, attribute_name) is not None

    async def find_remote_variant(self, template_id: int, sku: str) -> Optional[int]:
        if not sku:
            return None
        ids = await self.erp.search(
            VARIANT, [("product_tmpl_id", "=", template_id), ("default_code", "=", sku)], limit=1, order="id"
        )
        return ids[0] if ids else None

    async def find_price_entry(self, variant_id: int, pricelist_id: int) -> Optional[Dict[str, Any]]:
        rows = await self.erp.search_read(
            PRICE_ITEM,
            [
                ("pricelist_id", "=", pricelist_id),
                ("product_id", "=", variant_id),
                ("applied_on", "=", "0_product_variant"),
            ],
            ["fixed_price"],
            limit=1, order="id",
        )
        return rows[0] if rows else None


def m2o_id(value: Any) -> Optional[int]:
    """Odoo returns many2one as [id, display_name] (or False)."""
    if isinstance(value, (list, tuple)) and value:
        return int(value[0])
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


