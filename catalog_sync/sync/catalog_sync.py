#===========================================================================
# catalog_sync/sync/catalog_sync.py
# Catalog → ERP product synchronization.
#
# Per product: categories/tags → existence check → create or diff-update of
# the template → attribute lines (never duplicated) → variant SKUs → images.
# A failing product is recorded and the batch moves on; only AuthError and
# schema problems abort the run.
#===========================================================================

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from catalog_sync.catalog.models import CatalogProduct
from catalog_sync.config import settings
from catalog_sync.errors import AuthError
from catalog_sync.mapping.entity_mapper import (
    to_remote_product_fields,
    variant_value_key,
)
from catalog_sync.sync.batch import KeyedLock, fetch_window, record_missing, run_serialized
from catalog_sync.sync.existence import (
    ATTRIBUTE_LINE,
    TEMPLATE,
    VARIANT,
    ExistenceResolver,
    m2o_id,
)
from catalog_sync.sync.results import SyncResult

logger = logging.getLogger("uvicorn.error")

CATEGORY = "product.category"
TAG = "product.tag"
ATTRIBUTE = "product.attribute"
ATTRIBUTE_VALUE = "product.attribute.value"
TEMPLATE_ATTRIBUTE_VALUE = "product.template.attribute.value"
ATTACHMENT = "ir.attachment"


def _same(current: Any, desired: Any) -> bool:
    # Odoo reports empty char/text fields as False
    return (current or False) == (desired or False)


def _basename(url: str) -> str:
    try:
        return os.path.basename(urlparse(url).path) or "image"
    except Exception:
        return "image"


class CatalogSynchronizer:
    def __init__(
        self,
        catalog,
        erp,
        *,
        ref_field: str | None = None,
        product_type: str | None = None,
        schema=None,
        concurrency: int = 1,
    ):
        self.catalog = catalog
        self.erp = erp
        self.ref_field = ref_field or settings.ODOO_REF_FIELD
        self.product_type = product_type or settings.ODOO_PRODUCT_TYPE
        self.schema = schema
        self.concurrency = max(1, int(concurrency or 1))
        self.exists = ExistenceResolver(erp, ref_field=self.ref_field, schema=schema)

        # Per-run lookup caches; guarded so parallel products don't double-create
        self._lookup_lock = asyncio.Lock()
        self._categories: Dict[Tuple[str, ...], int] = {}
        self._tags: Dict[str, int] = {}
        self._attributes: Dict[str, int] = {}
        self._attribute_values: Dict[Tuple[int, str], int] = {}
        self._has_tags: Optional[bool] = None
        self._template_locks = KeyedLock()

    # ---- Run ----

    async def run(self, product_ids: Optional[List[str]] = None, limit: int = 50, offset: int = 0) -> SyncResult:
        await self.erp.authenticate()
        if self.schema is not None:
            await self.schema.validate_product_type(self.product_type)

        result = SyncResult()
        products, missing = await fetch_window(self.catalog, product_ids, limit, offset)
        record_missing(result, missing)
        logger.info(
            "[CATALOG-SYNC] window limit=%s offset=%s ids=%s → %d products, %d missing",
            limit, offset, len(product_ids or []), len(products), len(missing),
        )

        async def _worker(product: CatalogProduct) -> None:
            try:
                outcome = await self.sync_product(product, result)
            except AuthError:
                raise
            except Exception as e:
                logger.warning("[CATALOG-SYNC] %s (%s) failed: %s", product.label, product.id, e)
                result.add_error(product.label, product.id, e)
                return
            result.synced_products += 1
            if outcome == "created":
                result.created_products += 1
            elif outcome == "updated":
                result.updated_products += 1
            else:
                result.unchanged_products += 1

        await run_serialized(products, _worker, key=lambda p: p.id, concurrency=self.concurrency)

        logger.info(
            "[CATALOG-SYNC] done: synced=%d created=%d updated=%d unchanged=%d skipped=%d errors=%d",
            result.synced_products, result.created_products, result.updated_products,
            result.unchanged_products, result.skipped_products, result.error_count,
        )
        return result

    # ---- One product ----

    async def sync_product(self, product: CatalogProduct, result: SyncResult) -> str:
        """Returns "created", "updated" or "unchanged"."""
        payload = to_remote_product_fields(product, product_type=self.product_type, ref_field=self.ref_field)
        if not await self.exists.ref_field_available():
            payload.fields.pop(self.ref_field, None)

        desired = dict(payload.fields)
        if payload.category_path:
            desired["categ_id"] = await self._ensure_category(payload.category_path)
        tag_ids = await self._ensure_tags(payload.tag_names)

        match = await self.exists.find_remote_product(product)
        if match is not None:
            # one product at a time per template; a heuristic match may have been claimed meanwhile
            async with self._template_locks(match.remote_id):
                if match.is_heuristic and await self.exists.claimed_by_other(match.remote_id, product.id):
                    logger.info(
                        "[CATALOG-SYNC] template %s was linked to another product during this run; %s gets its own",
                        match.remote_id, product.id,
                    )
                else:
                    changed = await self._update_template(match.remote_id, desired, tag_ids)
                    if changed and match.is_heuristic:
                        logger.info(
                            "[CATALOG-SYNC] linked %s to template %s (matched by %s)",
                            product.id, match.remote_id, match.matched_by,
                        )
                    return await self._sync_children(
                        match.remote_id, product, payload, result, "updated" if changed else "unchanged"
                    )

        values = dict(desired)
        if tag_ids is not None:
            values["product_tag_ids"] = [(6, 0, tag_ids)]
        tmpl_id = await self.erp.create(TEMPLATE, values)
        logger.info("[CATALOG-SYNC] created template %s for %s", tmpl_id, product.id)
        return await self._sync_children(tmpl_id, product, payload, result, "created")

    async def _sync_children(self, tmpl_id: int, product: CatalogProduct, payload, result: SyncResult,
                             outcome: str) -> str:
        created_lines, extended = await self._sync_attribute_lines(tmpl_id, payload.attribute_lines)
        result.created_attribute_lines += created_lines
        skus_changed = await self._assign_variant_skus(tmpl_id, product)
        images_added = await self._ensure_images(tmpl_id, payload.image_urls)

        if outcome == "unchanged" and (created_lines or extended or skus_changed or images_added):
            outcome = "updated"
        return outcome

    async def _update_template(self, tmpl_id: int, desired: Dict[str, Any], tag_ids: Optional[List[int]]) -> bool:
        fields = list(desired.keys())
        if tag_ids is not None:
            fields.append("product_tag_ids")
        rows = await self.erp.read(TEMPLATE, [tmpl_id], fields)
        current = rows[0] if rows else {}

        changes: Dict[str, Any] = {}
        for name, value in desired.items():
            have = current.get(name)
            if name == "categ_id":
                have = m2o_id(have)
            if not _same(have, value):
                changes[name] = value
        if tag_ids is not None and set(current.get("product_tag_ids") or []) != set(tag_ids):
            changes["product_tag_ids"] = [(6, 0, tag_ids)]

        if not changes:
            return False
        await self.erp.update(TEMPLATE, tmpl_id, changes)
        logger.info("[CATALOG-SYNC] template %s updated: %s", tmpl_id, sorted(changes.keys()))
        return True

    # ---- Lookups (ensure-exists) ----

    async def _find_or_create(self, model: str, domain: List[Any], values: Dict[str, Any]) -> int:
        ids = await self.erp.search(model, domain, limit=1, order="id")
        if ids:
            return ids[0]
        return await self.erp.create(model, values)

    async def _ensure_category(self, path: List[str]) -> int:
        key = tuple(path)
        async with self._lookup_lock:
            if key in self._categories:
                return self._categories[key]
            parent: Optional[int] = None
            for depth, name in enumerate(path, start=1):
                sub = tuple(path[:depth])
                if sub in self._categories:
                    parent = self._categories[sub]
                    continue
                vals: Dict[str, Any] = {"name": name}
                if parent:
                    vals["parent_id"] = parent
                parent = await self._find_or_create(
                    CATEGORY, [("name", "=", name), ("parent_id", "=", parent or False)], vals
                )
                self._categories[sub] = parent
            return parent  # type: ignore[return-value]

    async def _ensure_tags(self, names: List[str]) -> Optional[List[int]]:
        """None when the ERP has no product tags (older Odoo); [] means "no tags"."""
        if self._has_tags is None:
            self._has_tags = True if self.schema is None else await self.schema.has_field(TEMPLATE, "product_tag_ids")
        if not self._has_tags:
            return None
        out: List[int] = []
        async with self._lookup_lock:
            for name in names:
                if name not in self._tags:
                    self._tags[name] = await self._find_or_create(TAG, [("name", "=", name)], {"name": name})
                out.append(self._tags[name])
        return out

    async def _ensure_attribute(self, name: str) -> int:
        async with self._lookup_lock:
            if name not in self._attributes:
                self._attributes[name] = await self._find_or_create(
                    ATTRIBUTE, [("name", "=", name)], {"name": name, "create_variant": "always"}
                )
            return self._attributes[name]

    async def _ensure_attribute_value(self, attribute_id: int, value: str) -> int:
        key = (attribute_id, value)
        async with self._lookup_lock:
            if key not in self._attribute_values:
                self._attribute_values[key] = await self._find_or_create(
                    ATTRIBUTE_VALUE,
                    [("attribute_id", "=", attribute_id), ("name", "=", value)],
                    {"attribute_id": attribute_id, "name": value},
                )
            return self._attribute_values[key]

    # ---- Attribute lines / variants / images ----

    async def _sync_attribute_lines(self, tmpl_id: int, lines: Dict[str, List[str]]) -> Tuple[int, bool]:
        """Returns (lines created, whether an existing line gained values)."""
        created = 0
        extended = False
        for name, values in lines.items():
            attr_id = await self._ensure_attribute(name)
            value_ids = [await self._ensure_attribute_value(attr_id, v) for v in values]

            line = await self.exists.find_attribute_line(tmpl_id, name)
            if line is None:
                await self.erp.create(ATTRIBUTE_LINE, {
                    "product_tmpl_id": tmpl_id,
                    "attribute_id": attr_id,
                    "value_ids": [(6, 0, value_ids)],
                })
                created += 1
                logger.info("[CATALOG-SYNC] template %s: attribute line %r created (%d values)", tmpl_id, name, len(value_ids))
                continue

            have = set(line.get("value_ids") or [])
            missing = [v for v in value_ids if v not in have]
            if missing:
                await self.erp.update(ATTRIBUTE_LINE, line["id"], {"value_ids": [(4, v) for v in missing]})
                extended = True
                logger.info("[CATALOG-SYNC] template %s: attribute line %r +%d values", tmpl_id, name, len(missing))
        return created, extended

    async def _assign_variant_skus(self, tmpl_id: int, product: CatalogProduct) -> bool:
        wanted = {variant_value_key(v): v.sku for v in product.variants if v.sku}
        if not wanted:
            return False

        variants = await self.erp.search_read(
            VARIANT, [("product_tmpl_id", "=", tmpl_id)], ["default_code", "product_template_attribute_value_ids"],
            order="id",
        )
        ptav_ids = sorted({i for v in variants for i in (v.get("product_template_attribute_value_ids") or [])})
        ptav: Dict[int, Tuple[str, str]] = {}
        # the value's display name is "Size: S"; the ptav's own name is the bare "S"
        for row in await self.erp.read(TEMPLATE_ATTRIBUTE_VALUE, ptav_ids, ["attribute_id", "name"]):
            attr = row.get("attribute_id") or [None, ""]
            ptav[row["id"]] = (str(attr[1]).strip().lower(), str(row.get("name") or "").strip().lower())

        changed = False
        for v in variants:
            key = frozenset(ptav[i] for i in (v.get("product_template_attribute_value_ids") or []) if i in ptav)
            sku = wanted.get(key)
            if sku and not _same(v.get("default_code"), sku):
                await self.erp.update(VARIANT, v["id"], {"default_code": sku})
                changed = True
        return changed

    async def _ensure_images(self, tmpl_id: int, urls: List[str]) -> bool:
        added = False
        for url in urls:
            ids = await self.erp.search(ATTACHMENT, [
                ("res_model", "=", TEMPLATE),
                ("res_id", "=", tmpl_id),
                ("type", "=", "url"),
                ("url", "=", url),
            ], limit=1)
            if ids:
                continue
            await self.erp.create(ATTACHMENT, {
                "name": _basename(url),
                "type": "url",
                "url": url,
                "res_model": TEMPLATE,
                "res_id": tmpl_id,
            })
            added = True
        return added


async def sync_batch(
    product_ids: Optional[List[str]] = None,
    limit: int = 50,
    offset: int = 0,
    *,
    catalog,
    erp,
    concurrency: int = 1,
    schema=None,
    ref_field: str | None = None,
    product_type: str | None = None,
) -> SyncResult:
    """Synchronize one batch window of catalog products into the ERP."""
    syncer = CatalogSynchronizer(
        catalog, erp,
        ref_field=ref_field, product_type=product_type, schema=schema, concurrency=concurrency,
    )
    return await syncer.run(product_ids, limit, offset)
