#===========================================================================
# catalog_sync/sync/price_sync.py
# Catalog → ERP price synchronization.
#
# Prices are the catalog's *calculated* prices for one region, written as
# fixed variant-level items on the pricelist of the region's currency.
#===========================================================================

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from catalog_sync.catalog.models import CatalogProduct, CatalogVariant, Region
from catalog_sync.config import settings
from catalog_sync.errors import AuthError, NotFoundLocal, PriceUnavailable, SyncError
from catalog_sync.mapping.entity_mapper import price_values, to_remote_price_entries
from catalog_sync.mapping.money import to_major_units, to_minor_units
from catalog_sync.sync.batch import fetch_window
from catalog_sync.sync.existence import PRICE_ITEM, TEMPLATE, ExistenceResolver
from catalog_sync.sync.results import PriceSyncResult

logger = logging.getLogger("uvicorn.error")

PRICELIST = "product.pricelist"
CURRENCY = "res.currency"
COMPANY = "res.company"

PRICE_MATCH_STRATEGIES = ("reference", "sku")


def _region_order(region: Region):
    ts = region.created_at.timestamp() if region.created_at else float("inf")
    return (ts, region.id)


async def select_region(
    catalog,
    region_id: Optional[str] = None,
    *,
    default_region_id: Optional[str] = None,
    default_currency: Optional[str] = None,
) -> Region:
    """
    Explicit id → configured default id → earliest region in the default
    currency → earliest region overall. Unknown ids raise NotFoundLocal.
    """
    explicit = region_id or default_region_id
    if explicit:
        return await catalog.retrieve_region(explicit)

    regions = sorted(await catalog.list_regions(), key=_region_order)
    if not regions:
        raise NotFoundLocal("the catalog has no regions to price against")
    currency = (default_currency or "").lower()
    for r in regions:
        if currency and r.currency_code.lower() == currency:
            return r
    return regions[0]


def variant_price(variant: CatalogVariant, currency: str) -> int:
    entries = to_remote_price_entries(variant, [currency])
    if not entries:
        raise PriceUnavailable(f"no calculated {currency.upper()} price for variant {variant.id}")
    return entries[0][1]


class PriceSynchronizer:
    def __init__(
        self,
        catalog,
        erp,
        *,
        ref_field: str | None = None,
        schema=None,
        update_list_price: bool | None = None,
        pricelist_map: Dict[str, int] | None = None,
    ):
        self.catalog = catalog
        self.erp = erp
        self.exists = ExistenceResolver(erp, ref_field=ref_field or settings.ODOO_REF_FIELD, schema=schema)
        self.update_list_price = (
            settings.UPDATE_TEMPLATE_LIST_PRICE if update_list_price is None else update_list_price
        )
        self.pricelist_map = {
            str(k).lower(): int(v)
            for k, v in (settings.ODOO_PRICELIST_MAP if pricelist_map is None else pricelist_map).items()
        }
        self._pricelists: Dict[str, int] = {}
        self._company_currency: Optional[str] = None

    async def pricelist_for(self, currency: str) -> int:
        code = currency.lower()
        if code in self._pricelists:
            return self._pricelists[code]
        if code in self.pricelist_map:
            self._pricelists[code] = self.pricelist_map[code]
            return self._pricelists[code]

        cur_ids = await self.erp.search(
            CURRENCY, [("name", "=", code.upper()), ("active", "in", [True, False])], limit=1
        )
        if not cur_ids:
            raise SyncError(f"currency {code.upper()} does not exist in the ERP")
        ids = await self.erp.search(PRICELIST, [("currency_id", "=", cur_ids[0])], limit=1, order="id")
        if ids:
            pl_id = ids[0]
        else:
            pl_id = await self.erp.create(PRICELIST, {"name": f"Catalog {code.upper()}", "currency_id": cur_ids[0]})
            logger.info("[PRICE-SYNC] created pricelist %s for %s", pl_id, code.upper())
        self._pricelists[code] = pl_id
        return pl_id

    async def company_currency(self) -> str:
        """Lowercased code of the main company's currency, "" when unreadable."""
        if self._company_currency is None:
            rows = await self.erp.search_read(COMPANY, [], ["currency_id"], limit=1, order="id")
            cur = (rows[0].get("currency_id") if rows else None) or [None, ""]
            self._company_currency = str(cur[1] or "").strip().lower()
        return self._company_currency

    async def run(
        self,
        product_ids: Optional[List[str]] = None,
        limit: int = 50,
        offset: int = 0,
        region_id: Optional[str] = None,
    ) -> PriceSyncResult:
        await self.erp.authenticate()
        region = await select_region(
            self.catalog, region_id,
            default_region_id=settings.DEFAULT_REGION_ID or None,
            default_currency=settings.DEFAULT_CURRENCY,
        )
        currency = region.currency_code.lower()
        result = PriceSyncResult(region_id=region.id, currency_code=currency)
        logger.info("[PRICE-SYNC] region %s (%s) currency=%s", region.id, region.name, currency.upper())

        products, missing = await fetch_window(self.catalog, product_ids, limit, offset)
        result.skipped_products += len(missing)

        calculated = await self.catalog.calculated_prices([p.id for p in products], region)
        for product in products:
            for v in product.variants:
                v.calculated_prices = calculated.get(v.id, {})
            try:
                await self.sync_product(product, currency, result)
            except AuthError:
                raise
            except Exception as e:
                logger.warning("[PRICE-SYNC] %s (%s) failed: %s", product.label, product.id, e)
                result.add_error(product.label, product.id, e)

        logger.info(
            "[PRICE-SYNC] done: products=%d variants=%d prices=%d (created=%d updated=%d unchanged=%d) "
            "skipped products=%d variants=%d prices=%d errors=%d",
            result.synced_products, result.synced_variants, result.synced_prices,
            result.created_prices, result.updated_prices, result.unchanged_prices,
            result.skipped_products, result.skipped_variants, result.skipped_prices, result.error_count,
        )
        return result

    async def sync_product(self, product: CatalogProduct, currency: str, result: PriceSyncResult) -> None:
        match = await self.exists.find_remote_product(product, strategies=PRICE_MATCH_STRATEGIES)
        if match is None:
            logger.info("[PRICE-SYNC] %s has no ERP counterpart yet; skipped", product.id)
            result.skipped_products += 1
            return
        tmpl_id = match.remote_id

        lowest: Optional[int] = None
        for v in product.variants:
            if not v.sku:
                result.skipped_variants += 1
                continue
            try:
                variant_id = await self.exists.find_remote_variant(tmpl_id, v.sku)
                if variant_id is None:
                    result.skipped_variants += 1
                    continue
                try:
                    amount = variant_price(v, currency)
                except PriceUnavailable as e:
                    logger.debug("[PRICE-SYNC] %s", e)
                    result.skipped_prices += 1
                    continue
                await self._upsert_price(tmpl_id, variant_id, currency, amount, result)
            except AuthError:
                raise
            except Exception as e:
                logger.warning("[PRICE-SYNC] %s / %s failed: %s", product.label, v.sku, e)
                result.add_error(f"{product.label} / {v.sku}", v.id, e)
                continue
            result.synced_variants += 1
            lowest = amount if lowest is None else min(lowest, amount)

        if self.update_list_price and lowest is not None:
            # list_price is always in the company currency
            if currency == await self.company_currency():
                await self._update_list_price(tmpl_id, currency, lowest)
            else:
                logger.debug(
                    "[PRICE-SYNC] list price of %s left alone: %s is not the company currency",
                    tmpl_id, currency.upper(),
                )
        result.synced_products += 1

    async def _upsert_price(
        self, tmpl_id: int, variant_id: int, currency: str, amount: int, result: PriceSyncResult
    ) -> None:
        pricelist_id = await self.pricelist_for(currency)
        entry = await self.exists.find_price_entry(variant_id, pricelist_id)
        values = price_values(amount, currency)
        if entry is None:
            await self.erp.create(PRICE_ITEM, {
                "pricelist_id": pricelist_id,
                "product_tmpl_id": tmpl_id,
                "product_id": variant_id,
                "applied_on": "0_product_variant",
                "compute_price": "fixed",
                "min_quantity": 0,
                **values,
            })
            result.created_prices += 1
        elif to_minor_units(entry.get("fixed_price") or 0, currency) != amount:
            await self.erp.update(PRICE_ITEM, entry["id"], values)
            result.updated_prices += 1
        else:
            result.unchanged_prices += 1
        result.synced_prices += 1

    async def _update_list_price(self, tmpl_id: int, currency: str, lowest: int) -> None:
        rows = await self.erp.read(TEMPLATE, [tmpl_id], ["list_price"])
        current = (rows[0].get("list_price") if rows else None) or 0
        if to_minor_units(current, currency) != lowest:
            await self.erp.update(TEMPLATE, tmpl_id, {"list_price": to_major_units(lowest, currency)})


async def sync_prices(
    product_ids: Optional[List[str]] = None,
    limit: int = 50,
    offset: int = 0,
    region_id: Optional[str] = None,
    *,
    catalog,
    erp,
    schema=None,
    ref_field: str | None = None,
    update_list_price: bool | None = None,
    pricelist_map: Dict[str, int] | None = None,
) -> PriceSyncResult:
    """Push region-scoped calculated prices for one batch window into the ERP."""
    syncer = PriceSynchronizer(
        catalog, erp,
        ref_field=ref_field, schema=schema,
        update_list_price=update_list_price, pricelist_map=pricelist_map,
    )
    return await syncer.run(product_ids, limit, offset, region_id)
