#=================================================================
# catalog_sync/main_app.py
# FastAPI application entry-point.
#=================================================================

import logging, asyncio

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from catalog_sync import logging_filters
from catalog_sync.webhooks.catalog import router as catalog_webhooks_router
from catalog_sync.routes import router as admin_router
from catalog_sync.workers.jobs_worker import worker_loop
from catalog_sync.scheduler import scheduler_loop
from catalog_sync.runner import close_clients
from catalog_sync.db import init_db
from catalog_sync.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="Catalog → ERP Sync",
    description="Mirrors the Medusa catalog (products, variants, prices) into Odoo and keeps the catalog free of duplicates.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(catalog_webhooks_router)  # /webhooks/catalog (HMAC)
app.include_router(admin_router)             # /admin/* (HTTP Basic)

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "catalog-sync"}

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": f"Sync failed: {str(exc)}"},
    )

# ---- Background worker / scheduler lifecycle ----
_stop: asyncio.Event | None = None
_tasks: list[asyncio.Task] = []

@app.on_event("startup")
async def _startup():
    await init_db()
    global _stop
    _stop = asyncio.Event()
    _tasks.append(asyncio.create_task(worker_loop(_stop)))
    if settings.SCHEDULER_ENABLED:
        _tasks.append(asyncio.create_task(scheduler_loop(_stop)))

@app.on_event("shutdown")
async def _shutdown():
    if _stop:
        _stop.set()
    for task in _tasks:
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except Exception:
            task.cancel()
    _tasks.clear()
    await close_clients()
