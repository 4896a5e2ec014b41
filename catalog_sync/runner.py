#===========================================================================
# catalog_sync/runner.py
# Entry points shared by the admin API, the webhook worker and the scheduler.
# Overlapping runs of the same kind are serialized; each run gets a fresh
# result object and its completion is recorded in the state store.
#===========================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from catalog_sync.catalog.medusa_client import MedusaClient
from catalog_sync.config import settings
from catalog_sync.erp.odoo_client import OdooClient
from catalog_sync.erp.schema import SchemaRegistry
from catalog_sync import state_store
from catalog_sync.sync.catalog_sync import sync_batch
from catalog_sync.sync.duplicates import identify_duplicates, reconcile
from catalog_sync.sync.price_sync import sync_prices

logger = logging.getLogger("uvicorn.error")

CATALOG = "catalog"
PRICES = "prices"
DUPLICATES = "duplicates"

_LOCKS: Dict[str, asyncio.Lock] = {}


def _lock(kind: str) -> asyncio.Lock:
    if kind not in _LOCKS:
        _LOCKS[kind] = asyncio.Lock()
    return _LOCKS[kind]


class RunInput(BaseModel):
    product_ids: Optional[List[str]] = Field(None, alias="productIds")
    limit: int = Field(default_factory=lambda: settings.SYNC_BATCH_LIMIT, ge=1)
    offset: int = Field(0, ge=0)
    region_id: Optional[str] = Field(None, alias="regionId")

    class Config:
        populate_by_name = True
        extra = "ignore"


class CleanupInput(BaseModel):
    max_groups: Optional[int] = Field(None, alias="maxGroups", ge=0)
    policy: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "ignore"


# ---------------------------
# Clients (one set per process)
# ---------------------------
_clients: Optional[Tuple[Any, Any, Any]] = None


def get_clients() -> Tuple[Any, Any, Any]:
    """(catalog, erp, schema)"""
    global _clients
    if _clients is None:
        erp = OdooClient()
        _clients = (MedusaClient(), erp, SchemaRegistry(erp, ttl=settings.SCHEMA_TTL_SECONDS))
    return _clients


def set_clients(catalog, erp, schema=None) -> None:
    global _clients
    _clients = (catalog, erp, schema)


async def close_clients() -> None:
    global _clients
    if _clients is None:
        return
    catalog, erp, _ = _clients
    _clients = None
    for c in (catalog, erp):
        close = getattr(c, "aclose", None)
        if close is not None:
            await close()


# ---------------------------
# Bookkeeping (best effort)
# ---------------------------

async def _record_started(kind: str) -> None:
    try:
        await state_store.mark_run_started(kind)
    except Exception as e:
        logger.warning("[RUNNER] could not record start of %s run: %s", kind, e)


async def _record_completed(kind: str, ok: bool, details: Dict[str, Any]) -> None:
    try:
        await state_store.mark_run_completed(kind, ok=ok, details=details)
    except Exception as e:
        logger.warning("[RUNNER] could not record completion of %s run: %s", kind, e)


def _coerce(model, data):
    if isinstance(data, model):
        return data
    return model.model_validate(data or {})


# ---------------------------
# Runs
# ---------------------------

async def run_catalog_sync(inp: RunInput | Dict[str, Any] | None = None) -> Dict[str, Any]:
    inp = _coerce(RunInput, inp)
    catalog, erp, schema = get_clients()
    async with _lock(CATALOG):
        await _record_started(CATALOG)
        try:
            result = await sync_batch(
                inp.product_ids, inp.limit, inp.offset,
                catalog=catalog, erp=erp, schema=schema, concurrency=settings.SYNC_CONCURRENCY,
            )
        except Exception as e:
            await _record_completed(CATALOG, False, {"error": str(e)})
            raise
        out = result.to_dict()
        await _record_completed(CATALOG, True, {k: v for k, v in out.items() if k not in ("errors", "skipped")})
        return out


async def run_price_sync(inp: RunInput | Dict[str, Any] | None = None) -> Dict[str, Any]:
    inp = _coerce(RunInput, inp)
    catalog, erp, schema = get_clients()
    async with _lock(PRICES):
        await _record_started(PRICES)
        try:
            result = await sync_prices(
                inp.product_ids, inp.limit, inp.offset, inp.region_id,
                catalog=catalog, erp=erp, schema=schema,
            )
        except Exception as e:
            await _record_completed(PRICES, False, {"error": str(e)})
            raise
        out = result.to_dict()
        await _record_completed(PRICES, True, {k: v for k, v in out.items() if k != "errors"})
        return out


async def run_duplicate_cleanup(params: CleanupInput | Dict[str, Any] | None = None) -> Dict[str, Any]:
    inp = _coerce(CleanupInput, params)
    max_groups = inp.max_groups if inp.max_groups is not None else settings.DUPLICATE_MAX_GROUPS_PER_RUN
    catalog, _, _ = get_clients()
    async with _lock(DUPLICATES):
        await _record_started(DUPLICATES)
        try:
            result = await reconcile(max_groups or None, catalog=catalog, policy=inp.policy)
        except Exception as e:
            await _record_completed(DUPLICATES, False, {"error": str(e)})
            raise
        out = result.to_dict()
        await _record_completed(DUPLICATES, True, {k: v for k, v in out.items() if k != "kept"})
        return out


async def preview_duplicates(policy: Optional[str] = None) -> Dict[str, Any]:
    catalog, _, _ = get_clients()
    groups = await identify_duplicates(catalog, policy)
    return {
        "duplicateGroups": len(groups),
        "toDelete": sum(len(g.losers) for g in groups),
        "groups": [g.to_dict() for g in groups],
    }


async def run_initial_sync(page_size: Optional[int] = None) -> Dict[str, Any]:
    """
    Full product + price sync over the whole catalog, once. Guarded by the
    persisted seed flag so restarts don't repeat it.
    """
    if await state_store.is_seed_completed():
        logger.info("[RUNNER] initial sync already completed; skipping")
        return {"skipped": True}

    size = page_size or settings.SYNC_BATCH_LIMIT
    totals = {"syncedProducts": 0, "createdProducts": 0, "syncedPrices": 0, "errorCount": 0}
    offset = 0
    while True:
        res = await run_catalog_sync(RunInput(limit=size, offset=offset))
        seen = res["syncedProducts"] + res["errorCount"]
        if seen == 0:
            break
        prices = await run_price_sync(RunInput(limit=size, offset=offset))
        totals["syncedProducts"] += res["syncedProducts"]
        totals["createdProducts"] += res["createdProducts"]
        totals["syncedPrices"] += prices["syncedPrices"]
        totals["errorCount"] += res["errorCount"] + prices["errorCount"]
        if seen < size:
            break
        offset += size

    await state_store.mark_seed_completed(totals)
    logger.info("[RUNNER] initial sync finished: %s", totals)
    return totals


async def health() -> Dict[str, Any]:
    catalog, erp, _ = get_clients()
    medusa, odoo = await asyncio.gather(catalog.ping(), erp.ping())
    return {"ok": bool(medusa.get("success") and odoo.get("success")), "catalog": medusa, "erp": odoo}
