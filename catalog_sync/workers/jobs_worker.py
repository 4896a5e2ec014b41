# ---------------------------
# catalog_sync/workers/jobs_worker.py
# ---------------------------
import asyncio
import logging
from typing import Any, Dict

from catalog_sync import runner

logger = logging.getLogger("uvicorn.error")

_QUEUE: "asyncio.Queue[dict]" = asyncio.Queue()

# Product ids waiting in the queue; repeated events for them collapse into one job
_PENDING: set = set()


async def enqueue_job(job: Dict[str, Any]) -> bool:
    pid = job.get("product_id")
    if pid and pid in _PENDING:
        logger.info("[WORKER] %s already queued; coalescing %s", pid, job.get("type"))
        return False
    try:
        _QUEUE.put_nowait(job)
    except asyncio.QueueFull:
        logger.error("Job queue full; dropping job: %s", job.get("type"))
        return False
    if pid:
        _PENDING.add(pid)
    return True


def queue_size() -> int:
    return _QUEUE.qsize()


async def handle_job(job: Dict[str, Any]) -> Dict[str, Any] | None:
    jtype = (job.get("type") or "").strip()
    pid = job.get("product_id")
    if jtype in ("catalog.product.created", "catalog.product.updated") and pid:
        logger.info(f"[WORKER] Syncing {jtype} for {pid}")
        result = await runner.run_catalog_sync({"productIds": [pid], "limit": 1})
        if result.get("errorCount"):
            logger.warning("[WORKER] %s sync finished with errors: %s", pid, result.get("errors"))
        else:
            # a new product has no ERP counterpart until now, so prices follow the product
            await runner.run_price_sync({"productIds": [pid], "limit": 1})
        return result
    logger.info("[WORKER] unknown job type=%s", jtype)
    return None


async def worker_loop(stop_event: asyncio.Event) -> None:
    logger.info("[WORKER] started")

    while not stop_event.is_set():
        try:
            job = await asyncio.wait_for(_QUEUE.get(), timeout=1.0)
        except asyncio.TimeoutError:
            continue
        except Exception as e:
            logger.error("[WORKER] queue error: %s", e)
            await asyncio.sleep(0.5)
            continue

        try:
            _PENDING.discard(job.get("product_id"))
            logger.info(f"[WORKER] Received job: type={job.get('type')} product={job.get('product_id')} delivery_id={job.get('delivery_id')}")
            await handle_job(job)
        except Exception:
            logger.exception("[WORKER] failed job type=%s", job.get("type"))
        finally:
            _QUEUE.task_done()

    logger.info("[WORKER] stopped")
