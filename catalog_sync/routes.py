#=======================================================================================
# catalog_sync/routes.py
# Admin API: manual catalog/price sync, duplicate cleanup, job polling, state, health.
# All routes require HTTP Basic (admin).
#=======================================================================================

import json
import secrets
import asyncio
import uuid
import time
from typing import Any, Awaitable, Callable, Dict
import logging

from fastapi import APIRouter, Query, Request, Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from catalog_sync.config import settings
from catalog_sync.errors import AuthError, NotFoundLocal, SchemaValidationError, SyncError
from catalog_sync import runner, state_store

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/admin", tags=["Catalog Sync Admin"])

# ---------------------------
# HTTP Basic
# ---------------------------
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

# ---------------------------
# Helpers
# ---------------------------
async def _safe_json(req: Request) -> Dict[str, Any]:
    """Best-effort JSON body parsing with fallbacks."""
    try:
        data = await req.json()
        return data if isinstance(data, dict) else {}
    except Exception:
        try:
            raw = (await req.body()).decode("utf-8", "ignore")
            return json.loads(raw) if raw.strip() else {}
        except Exception:
            return {}

def _get_bool(payload: Dict[str, Any], *keys: str, default: bool = False) -> bool:
    for k in keys:
        if k in payload:
            return bool(payload.get(k))
    return default

def _now_ts() -> int:
    return int(time.time())

def _error_response(exc: Exception) -> JSONResponse:
    """Run-level failures → HTTP status; per-item failures never get here."""
    if isinstance(exc, ValidationError):
        code = 422
    elif isinstance(exc, NotFoundLocal):
        code = 404
    elif isinstance(exc, SchemaValidationError):
        code = 422
    elif isinstance(exc, (AuthError, SyncError)):
        code = 502
    elif isinstance(exc, ValueError):
        code = 400
    else:
        raise exc
    logger.error("[ADMIN] run failed (%s): %s", type(exc).__name__, exc)
    return JSONResponse(status_code=code, content={"success": False, "error": str(exc)})

# ---------------------------
# Background job store (in-memory)
# ---------------------------
_JOBS: Dict[str, Dict[str, Any]] = {}
_JOBS_LOCK = asyncio.Lock()
_JOBS_TTL_SECONDS = 60 * 60  # keep finished jobs 1 hour

async def _cleanup_jobs_now():
    """Remove finished jobs older than TTL."""
    cutoff = _now_ts() - _JOBS_TTL_SECONDS
    async with _JOBS_LOCK:
        to_del = [jid for jid, rec in _JOBS.items()
                  if rec.get("finished") and rec.get("finished") < cutoff]
        for jid in to_del:
            _JOBS.pop(jid, None)

async def _run_job(job_id: str, func: Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]], payload: Dict[str, Any]):
    logger.info(f"[JOB][RUN] Job {job_id} starting")
    async with _JOBS_LOCK:
        _JOBS[job_id].update({"status": "running", "started": _now_ts()})

    try:
        result = await func(payload)
        async with _JOBS_LOCK:
            _JOBS[job_id].update({"status": "done", "finished": _now_ts(), "result": result})
        logger.info(f"[JOB][COMPLETE] Job {job_id} finished successfully")
    except Exception as e:
        async with _JOBS_LOCK:
            _JOBS[job_id].update({"status": "error", "finished": _now_ts(), "error": str(e)})
        logger.error(f"[JOB][ERROR] Job {job_id} failed: {e}")

    await _cleanup_jobs_now()

async def _start_job(kind: str, func, payload: Dict[str, Any]) -> JSONResponse:
    job_id = uuid.uuid4().hex
    async with _JOBS_LOCK:
        _JOBS[job_id] = {
            "id": job_id,
            "kind": kind,
            "status": "queued",
            "started": None,
            "finished": None,
            "request": payload,
        }
    logger.info(f"[JOB][REGISTER] {kind} job {job_id} queued")
    asyncio.create_task(_run_job(job_id, func, payload))
    return JSONResponse(
        status_code=202,
        content={"job_id": job_id, "status": "queued"},
        headers={"Location": f"/admin/sync/status/{job_id}"},
    )

async def _dispatch(kind: str, func, request: Request) -> JSONResponse:
    payload = await _safe_json(request)
    background = _get_bool(payload, "background", default=False)
    body = {k: v for k, v in payload.items() if k != "background"}
    if background:
        return await _start_job(kind, func, body)
    try:
        result = await func(body)
    except Exception as e:
        return _error_response(e)
    return JSONResponse(content={"success": True, **result})

# ----------------------------------------------------------------------
# Sync runs
# ----------------------------------------------------------------------

@router.post("/sync-to-erp", dependencies=[Depends(verify_admin)])
async def api_sync_to_erp(request: Request):
    """
    Catalog → ERP product sync for one batch window.

    Body: { "productIds"?: [...], "limit"?: int, "offset"?: int, "background"?: bool }
    """
    return await _dispatch("catalog", runner.run_catalog_sync, request)


@router.post("/sync-prices-to-erp", dependencies=[Depends(verify_admin)])
async def api_sync_prices_to_erp(request: Request):
    """
    Calculated prices of one region → ERP pricelists.

    Body: { "productIds"?, "limit"?, "offset"?, "regionId"?, "background"? }
    """
    return await _dispatch("prices", runner.run_price_sync, request)


@router.post("/cleanup-duplicates", dependencies=[Depends(verify_admin)])
async def api_cleanup_duplicates(request: Request):
    """Delete catalog duplicates (same handle). Body: { "maxGroups"?: int, "policy"?: str, "background"? }"""
    return await _dispatch("duplicates", runner.run_duplicate_cleanup, request)


@router.get("/cleanup-duplicates", dependencies=[Depends(verify_admin)])
async def api_identify_duplicates(action: str = Query("identify"), policy: str | None = Query(None)):
    """Preview only: which products a cleanup would keep and delete."""
    if action != "identify":
        raise HTTPException(status_code=400, detail="unsupported action; use action=identify")
    try:
        result = await runner.preview_duplicates(policy)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        return _error_response(e)
    return JSONResponse(content={"success": True, **result})


@router.post("/initial-sync", dependencies=[Depends(verify_admin)])
async def api_initial_sync(request: Request):
    """Run the one-shot full sync in the background. Body: { "reset"?: bool } clears the seed flag first."""
    payload = await _safe_json(request)
    if _get_bool(payload, "reset", default=False):
        await state_store.reset_seed()
    return await _start_job("initial", lambda _p: runner.run_initial_sync(), {})

# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------

@router.get("/sync/jobs", dependencies=[Depends(verify_admin)])
async def api_sync_jobs():
    """Return all jobs in the background job store."""
    async with _JOBS_LOCK:
        jobs = list(_JOBS.values())
    jobs.sort(key=lambda j: j.get("started") or 0, reverse=True)
    return JSONResponse(content={"jobs": jobs})


@router.get("/sync/status/{job_id}", dependencies=[Depends(verify_admin)])
async def api_sync_status(job_id: str):
    """Poll a background job."""
    async with _JOBS_LOCK:
        rec = _JOBS.get(job_id)
    if not rec:
        raise HTTPException(status_code=404, detail="job not found")
    return JSONResponse(content=rec)

# ----------------------------------------------------------------------
# State / health
# ----------------------------------------------------------------------

@router.get("/sync-state", dependencies=[Depends(verify_admin)])
async def api_sync_state():
    return JSONResponse(content={"states": await state_store.all_states()})


@router.get("/health", dependencies=[Depends(verify_admin)])
async def api_health():
    """Reachability of the catalog and the ERP."""
    return JSONResponse(content=await runner.health())
