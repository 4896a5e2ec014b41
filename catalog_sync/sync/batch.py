# catalog_sync/sync/batch.py
# Batch windows over the catalog and a small runner that applies a worker to
# every item, sequentially by default.
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from catalog_sync.catalog.models import CatalogProduct
from catalog_sync.errors import NotFoundLocal

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")


async def fetch_window(
    catalog,
    product_ids: Optional[List[str]] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[CatalogProduct], List[str]]:
    """
    Return (products, missing_ids) for one batch window.

    With explicit ids the window is ids[offset:offset+limit] taken after dropping
    repeats, and ids the catalog no longer knows are returned as missing.
    Without ids the catalog is paged.
    """
    if product_ids:
        wanted: List[str] = []
        for pid in product_ids:
            if pid and pid not in wanted:
                wanted.append(pid)
        wanted = wanted[offset:offset + limit]
        if not wanted:
            return [], []
        found = await catalog.list_products(ids=wanted, limit=len(wanted), offset=0)
        by_id = {p.id: p for p in found}
        products = [by_id[pid] for pid in wanted if pid in by_id]
        missing = [pid for pid in wanted if pid not in by_id]
        return products, missing

    products = await catalog.list_products(limit=limit, offset=offset)
    return products, []


async def iter_windows(catalog, page_size: int = 50) -> AsyncIterator[Tuple[int, List[CatalogProduct]]]:
    """Yield (offset, products) pages until the catalog returns an empty page."""
    offset = 0
    while True:
        products, _ = await fetch_window(catalog, None, page_size, offset)
        if not products:
            break
        yield offset, products
        offset += len(products)


class KeyedLock:
    """One asyncio.Lock per key, created on demand."""

    def __init__(self):
        self._locks: Dict[Any, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __call__(self, key: Any) -> asyncio.Lock:
        return self._locks[key]


async def run_serialized(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[Any]],
    *,
    key: Callable[[T], Any] = lambda item: getattr(item, "id", item),
    concurrency: int = 1,
) -> List[Any]:
    """
    Apply `worker` to every item and return results in input order.

    concurrency <= 1 runs strictly one after another. Above that, at most
    `concurrency` workers run at once and items sharing a key never overlap.
    Exceptions propagate; workers are expected to record their own per-item failures.
    """
    items = list(items)
    if concurrency <= 1:
        out: List[Any] = []
        for item in items:
            out.append(await worker(item))
        return out

    sem = asyncio.Semaphore(concurrency)
    locks = KeyedLock()

    async def _one(item: T) -> Any:
        async with sem:
            async with locks(key(item)):
                return await worker(item)

    return list(await asyncio.gather(*(_one(i) for i in items)))


def record_missing(result, missing: Iterable[str]) -> None:
    for pid in missing:
        exc = NotFoundLocal(f"product {pid} not found in catalog", item_id=pid)
        logger.info("[BATCH] skipping %s: %s", pid, exc)
        result.add_skip(pid, str(exc))
