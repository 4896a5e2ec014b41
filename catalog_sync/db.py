# catalog_sync/db.py
from __future__ import annotations

import os
import pathlib
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase

from catalog_sync.config import settings

logger = logging.getLogger("uvicorn.error")

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class Base(DeclarativeBase):
    pass


def _resolve_dsn() -> str:
    """
    settings.DATABASE_URL, then env DATABASE_URL, else SQLite under DATA_DIR.
    """
    dsn = (
        getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or f"sqlite+aiosqlite:///{settings.DATA_DIR.rstrip('/')}/catalog_sync.db"
    )

    # SQLite won't create the parent folder itself
    if dsn.startswith("sqlite") and ":memory:" not in dsn:
        try:
            sep = "///" if "///" in dsn else "//"
            path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
            if path_part:
                pathlib.Path(path_part).resolve().parent.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def get_engine() -> AsyncEngine:
    """Lazily create the global AsyncEngine and sessionmaker."""
    global _engine, _sessionmaker
    if _engine is None:
        dsn = _resolve_dsn()
        _engine = create_async_engine(dsn, echo=False, pool_pre_ping=True)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info("[DB] engine initialized for %s", dsn)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def init_db() -> None:
    """Create the engine and any missing tables."""
    # models register themselves on Base.metadata at import
    from catalog_sync.models import sync_state  # noqa: F401

    eng = get_engine()
    try:
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
