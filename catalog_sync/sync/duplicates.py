#===========================================================================
# catalog_sync/sync/duplicates.py
# Duplicate reconciliation inside the source catalog.
# Products sharing a handle are duplicates; one survivor is kept per group
# according to a survivor policy and the rest are deleted.
#===========================================================================

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from catalog_sync.catalog.models import CatalogProduct
from catalog_sync.config import settings
from catalog_sync.errors import AuthError
from catalog_sync.sync.results import DuplicateGroup, FailedDeletion, ReconcileResult

logger = logging.getLogger("uvicorn.error")

SurvivorPolicy = Callable[[List[CatalogProduct]], List[CatalogProduct]]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _ts(p: CatalogProduct) -> float:
    if p.created_at is None:
        return _EPOCH.timestamp()
    dt = p.created_at if p.created_at.tzinfo else p.created_at.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def keep_newest(members: List[CatalogProduct]) -> List[CatalogProduct]:
    """Most recently created first; equal timestamps fall back to the larger id."""
    return sorted(members, key=lambda p: (_ts(p), p.id), reverse=True)


def keep_oldest(members: List[CatalogProduct]) -> List[CatalogProduct]:
    return sorted(members, key=lambda p: (_ts(p), p.id))


POLICIES: Dict[str, SurvivorPolicy] = {
    "newest": keep_newest,
    "keep_newest": keep_newest,
    "oldest": keep_oldest,
    "keep_oldest": keep_oldest,
}


def get_policy(name: Optional[str] = None) -> SurvivorPolicy:
    key = (name or settings.DUPLICATE_SURVIVOR_POLICY or "newest").strip().lower()
    try:
        return POLICIES[key]
    except KeyError:
        raise ValueError(f"unknown survivor policy {key!r} (expected one of {sorted(POLICIES)})")


def group_by_handle(products: List[CatalogProduct]) -> Dict[str, List[CatalogProduct]]:
    """Handles with more than one member, in handle order. Blank handles never group."""
    groups: Dict[str, List[CatalogProduct]] = {}
    for p in products:
        handle = (p.handle or "").strip()
        if handle:
            groups.setdefault(handle, []).append(p)
    return {h: groups[h] for h in sorted(groups) if len(groups[h]) > 1}


def build_groups(products: List[CatalogProduct], policy: SurvivorPolicy) -> List[DuplicateGroup]:
    out: List[DuplicateGroup] = []
    for handle, members in group_by_handle(products).items():
        ordered = policy(members)
        out.append(DuplicateGroup(handle=handle, survivor_id=ordered[0].id, member_ids=[m.id for m in ordered]))
    return out


async def _all_products(catalog) -> List[CatalogProduct]:
    return [p async for p in catalog.iter_all_products()]


async def identify_duplicates(catalog, policy: SurvivorPolicy | str | None = None) -> List[DuplicateGroup]:
    """Preview: what reconcile() would keep and delete, without deleting anything."""
    pol = policy if callable(policy) else get_policy(policy)
    return build_groups(await _all_products(catalog), pol)


async def reconcile(
    max_groups_per_run: Optional[int] = None,
    *,
    catalog,
    policy: SurvivorPolicy | str | None = None,
) -> ReconcileResult:
    pol = policy if callable(policy) else get_policy(policy)
    groups = build_groups(await _all_products(catalog), pol)
    cap = max_groups_per_run if max_groups_per_run and max_groups_per_run > 0 else len(groups)
    todo, rest = groups[:cap], groups[cap:]

    logger.info("[DEDUP] %d duplicate groups found; processing %d", len(groups), len(todo))
    result = ReconcileResult(remaining_duplicate_groups=len(rest))

    for group in todo:
        logger.info("[DEDUP] %s: keeping %s, deleting %s", group.handle, group.survivor_id, group.losers)
        for pid in group.losers:
            try:
                await catalog.delete_product(pid)
                result.deleted_count += 1
            except AuthError:
                raise
            except Exception as e:
                logger.error("[DEDUP] failed deleting %s (%s): %s", pid, group.handle, e)
                result.failed_deletions.append(
                    FailedDeletion(product_id=pid, handle=group.handle, error_message=str(e))
                )
        result.kept.append(group.survivor_id)
        result.processed_groups += 1

    logger.info(
        "[DEDUP] done: deleted=%d failed=%d remaining_groups=%d",
        result.deleted_count, len(result.failed_deletions), result.remaining_duplicate_groups,
    )
    return result
