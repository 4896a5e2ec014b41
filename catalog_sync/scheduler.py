# catalog_sync/scheduler.py
# Periodic runs inside the service process: product sync, price sync and
# duplicate cleanup on fixed intervals, plus the one-shot initial sync.
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from catalog_sync import runner
from catalog_sync.config import settings

logger = logging.getLogger("uvicorn.error")


@dataclass
class ScheduledJob:
    name: str
    interval: float  # seconds
    func: Callable[[], Awaitable[Any]]
    next_run: float = field(default=0.0)
    runs: int = 0
    last_error: Optional[str] = None

    def due(self, now: float) -> bool:
        return self.interval > 0 and now >= self.next_run


async def _product_sync() -> Any:
    return await runner.run_catalog_sync({"limit": settings.SYNC_BATCH_LIMIT})


async def _price_sync() -> Any:
    return await runner.run_price_sync({"limit": settings.SYNC_BATCH_LIMIT})


async def _duplicate_cleanup() -> Any:
    return await runner.run_duplicate_cleanup({})


def default_jobs(now: Optional[float] = None) -> List[ScheduledJob]:
    now = time.monotonic() if now is None else now
    # first periodic run waits one interval; the initial sync covers startup
    return [
        ScheduledJob("product-sync", settings.PRODUCT_SYNC_INTERVAL, _product_sync, now + settings.PRODUCT_SYNC_INTERVAL),
        ScheduledJob("price-sync", settings.PRICE_SYNC_INTERVAL, _price_sync, now + settings.PRICE_SYNC_INTERVAL),
        ScheduledJob(
            "duplicate-cleanup", settings.DUPLICATE_CLEANUP_INTERVAL, _duplicate_cleanup,
            now + settings.DUPLICATE_CLEANUP_INTERVAL,
        ),
    ]


async def run_due(jobs: List[ScheduledJob], now: Optional[float] = None) -> List[str]:
    """Run every due job once, one after another. Returns the names that ran."""
    now = time.monotonic() if now is None else now
    ran: List[str] = []
    for job in jobs:
        if not job.due(now):
            continue
        logger.info("[SCHED] running %s", job.name)
        try:
            await job.func()
            job.last_error = None
        except Exception as e:
            job.last_error = str(e)
            logger.error("[SCHED] %s failed: %s", job.name, e)
        job.runs += 1
        job.next_run = now + job.interval
        ran.append(job.name)
    return ran


async def initial_sync_job() -> None:
    try:
        await runner.run_initial_sync()
    except Exception as e:
        logger.error("[SCHED] initial sync failed: %s", e)


async def scheduler_loop(stop_event: asyncio.Event, jobs: Optional[List[ScheduledJob]] = None, tick: float = 5.0) -> None:
    jobs = jobs if jobs is not None else default_jobs()
    logger.info("[SCHED] started: %s", ", ".join(f"{j.name}/{int(j.interval)}s" for j in jobs))

    if settings.INITIAL_SYNC_ENABLED:
        await initial_sync_job()

    while not stop_event.is_set():
        await run_due(jobs)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=tick)
        except asyncio.TimeoutError:
            pass

    logger.info("[SCHED] stopped")
