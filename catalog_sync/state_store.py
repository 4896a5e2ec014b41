# catalog_sync/state_store.py
# Persisted run bookkeeping: last completion per run kind and the initial-sync seed flag.
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select

from catalog_sync.db import get_sessionmaker
from catalog_sync.models.sync_state import SyncState

logger = logging.getLogger("uvicorn.error")

SEED = "seed"


def _as_dict(row: Optional[SyncState]) -> Dict[str, Any]:
    if row is None:
        return {}
    try:
        details = json.loads(row.details) if row.details else None
    except ValueError:
        details = row.details
    return {
        "name": row.name,
        "last_started_at": row.last_started_at.isoformat() if row.last_started_at else None,
        "last_completed_at": row.last_completed_at.isoformat() if row.last_completed_at else None,
        "last_status": row.last_status,
        "seed_completed": bool(row.seed_completed),
        "details": details,
    }


async def _get_or_create(session, name: str) -> SyncState:
    row = await session.get(SyncState, name)
    if row is None:
        row = SyncState(name=name, seed_completed=False)
        session.add(row)
    return row


async def get_state(name: str) -> Dict[str, Any]:
    async with get_sessionmaker()() as session:
        return _as_dict(await session.get(SyncState, name))


async def all_states() -> Dict[str, Dict[str, Any]]:
    async with get_sessionmaker()() as session:
        rows = (await session.execute(select(SyncState).order_by(SyncState.name))).scalars().all()
        return {r.name: _as_dict(r) for r in rows}


async def mark_run_started(name: str) -> None:
    async with get_sessionmaker()() as session:
        row = await _get_or_create(session, name)
        row.last_started_at = datetime.utcnow()
        await session.commit()


async def mark_run_completed(name: str, *, ok: bool = True, details: Dict[str, Any] | None = None) -> None:
    async with get_sessionmaker()() as session:
        row = await _get_or_create(session, name)
        row.last_completed_at = datetime.utcnow()
        row.last_status = "ok" if ok else "error"
        row.details = json.dumps(details, default=str) if details is not None else None
        await session.commit()


async def is_seed_completed() -> bool:
    async with get_sessionmaker()() as session:
        row = await session.get(SyncState, SEED)
        return bool(row and row.seed_completed)


async def mark_seed_completed(details: Dict[str, Any] | None = None) -> None:
    async with get_sessionmaker()() as session:
        row = await _get_or_create(session, SEED)
        row.seed_completed = True
        row.last_completed_at = datetime.utcnow()
        row.last_status = "ok"
        if details is not None:
            row.details = json.dumps(details, default=str)
        await session.commit()
    logger.info("[STATE] initial sync marked completed")


async def reset_seed() -> None:
    async with get_sessionmaker()() as session:
        row = await session.get(SyncState, SEED)
        if row is not None:
            row.seed_completed = False
            await session.commit()
    logger.info("[STATE] initial sync flag reset")
