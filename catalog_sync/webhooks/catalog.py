# catalog_sync/webhooks/catalog.py
import base64, hmac, hashlib, logging
from typing import Tuple
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from catalog_sync.config import settings
from catalog_sync.workers.jobs_worker import enqueue_job
from catalog_sync.webhooks.catalog_models import CatalogWebhookPayload


logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/webhooks/catalog", tags=["Catalog Webhooks"])

SIGNATURE_HEADER = "X-Catalog-Signature"
SUPPORTED_EVENTS = {"product.created", "product.updated"}


def _redact(headers: dict[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in headers.items():
        out[k] = "<redacted>" if k.lower() in (SIGNATURE_HEADER.lower(), "authorization") else v
    return out


def _b64_hmac_sha256(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(mac).decode("utf-8")


def _get_hdr(headers, key: str) -> str | None:
    v = headers.get(key)
    if v is None:
        v = headers.get(key.lower())
    return v


async def _verify_signature(request: Request, body: bytes) -> Tuple[bool, str, str]:
    """
    Returns (ok, received_sig, expected_sig). If no secret is configured → (False, recv, '<no-secret-configured>').
    """
    received = _get_hdr(request.headers, SIGNATURE_HEADER) or ""
    secret = settings.CATALOG_WEBHOOK_SECRET or ""
    if not secret:
        return False, received, "<no-secret-configured>"
    expected = _b64_hmac_sha256(secret, body)
    ok = hmac.compare_digest(received or "", expected)
    return ok, received, expected


@router.post("")
@router.post("/")
async def catalog_webhook(request: Request) -> Response:
    if settings.CATALOG_WEBHOOK_DEBUG:
        logger.info("[CATALOG-HOOK][DEBUG] incoming headers=%s", _redact(dict(request.headers)))

    # Read body ONCE; the signature covers the raw bytes
    body = await request.body()

    ok, _, _ = await _verify_signature(request, body)
    if not ok:
        logger.warning("[CATALOG-HOOK] signature mismatch; returning 401")
        return JSONResponse(status_code=401, content={"ok": False, "reason": "invalid_signature"})

    try:
        payload = CatalogWebhookPayload.model_validate_json(body)
    except Exception as e:
        logger.warning(f"[CATALOG-HOOK] payload validation error: {e}")
        return JSONResponse(status_code=422, content={"ok": False, "reason": "invalid_payload", "error": str(e)})

    event = (_get_hdr(request.headers, "X-Catalog-Event") or payload.event or "").strip()
    if event not in SUPPORTED_EVENTS:
        logger.info("[CATALOG-HOOK] ignoring event=%r", event)
        return JSONResponse({"ok": True, "ignored": True, "event": event})

    await enqueue_job({
        "type": f"catalog.{event}",          # catalog.product.created | catalog.product.updated
        "event": event,
        "product_id": payload.data.id,
        "delivery_id": _get_hdr(request.headers, "X-Catalog-Delivery-ID"),
    })

    # ACK quickly; the worker does the sync
    return JSONResponse({"ok": True, "event": event, "product_id": payload.data.id})
