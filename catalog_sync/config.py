# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
import json as _json
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_json_map(name: str, default: dict | None = None) -> dict:
    raw = os.getenv(name, "")
    if not raw:
        return default or {}
    try:
        return _json.loads(raw)
    except Exception:
        return default or {}


class Settings:
    # ── Source catalog (Medusa) ──────────────────────────────────────────────
    MEDUSA_URL: str = _rstrip_slash(os.getenv("MEDUSA_URL", ""))
    MEDUSA_API_TOKEN: str = os.getenv("MEDUSA_API_TOKEN", "")            # secret admin API key
    MEDUSA_PUBLISHABLE_KEY: str = os.getenv("MEDUSA_PUBLISHABLE_KEY", "")  # needed by /store for calculated prices
    # Medusa v1 stores amounts in cents; v2 stores major units
    MEDUSA_AMOUNTS_IN_MINOR_UNITS: bool = _get_bool("MEDUSA_AMOUNTS_IN_MINOR_UNITS", False)
    MEDUSA_TIMEOUT: float = _get_float("MEDUSA_TIMEOUT", 30.0)
    MEDUSA_MAX_ATTEMPTS: int = _get_int("MEDUSA_MAX_ATTEMPTS", 3)

    # ── ERP (Odoo JSON-RPC) ──────────────────────────────────────────────────
    ODOO_URL: str = _rstrip_slash(os.getenv("ODOO_URL", ""))
    ODOO_DB: str = os.getenv("ODOO_DB", "") or os.getenv("ODOO_DATABASE", "")
    ODOO_USERNAME: str = os.getenv("ODOO_USERNAME", "")
    ODOO_API_KEY: str = os.getenv("ODOO_API_KEY", "") or os.getenv("ODOO_PASSWORD", "")
    ODOO_TIMEOUT: float = _get_float("ODOO_TIMEOUT", 30.0)
    ODOO_MAX_ATTEMPTS: int = _get_int("ODOO_MAX_ATTEMPTS", 3)

    # Custom field on product.template holding the catalog product id
    ODOO_REF_FIELD: str = os.getenv("ODOO_REF_FIELD", "x_medusa_id")
    # product.template "type" selection value written on create/update
    ODOO_PRODUCT_TYPE: str = os.getenv("ODOO_PRODUCT_TYPE", "consu")
    # Optional explicit currency → pricelist id map, e.g. {"CLP": 1, "USD": 4}
    ODOO_PRICELIST_MAP: dict = _get_json_map("ODOO_PRICELIST_MAP", {})

    # Retry / schema snapshot
    RETRY_BASE_DELAY: float = _get_float("RETRY_BASE_DELAY", 0.5)
    RETRY_MAX_DELAY: float = _get_float("RETRY_MAX_DELAY", 8.0)
    SCHEMA_TTL_SECONDS: int = _get_int("SCHEMA_TTL_SECONDS", 3600)

    # ── Pricing ──────────────────────────────────────────────────────────────
    DEFAULT_REGION_ID: str = os.getenv("DEFAULT_REGION_ID", "")
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "clp").lower()
    UPDATE_TEMPLATE_LIST_PRICE: bool = _get_bool("UPDATE_TEMPLATE_LIST_PRICE", True)

    # ── Batches ──────────────────────────────────────────────────────────────
    SYNC_BATCH_LIMIT: int = _get_int("SYNC_BATCH_LIMIT", 50)
    SYNC_CONCURRENCY: int = _get_int("SYNC_CONCURRENCY", 1)

    # ── Duplicate cleanup ────────────────────────────────────────────────────
    DUPLICATE_SURVIVOR_POLICY: str = os.getenv("DUPLICATE_SURVIVOR_POLICY", "newest")
    DUPLICATE_MAX_GROUPS_PER_RUN: int = _get_int("DUPLICATE_MAX_GROUPS_PER_RUN", 0)  # 0 = no cap

    # ── Scheduler (seconds) ──────────────────────────────────────────────────
    SCHEDULER_ENABLED: bool = _get_bool("SCHEDULER_ENABLED", True)
    PRODUCT_SYNC_INTERVAL: int = _get_int("PRODUCT_SYNC_INTERVAL", 2 * 60 * 60)
    PRICE_SYNC_INTERVAL: int = _get_int("PRICE_SYNC_INTERVAL", 6 * 60 * 60)
    DUPLICATE_CLEANUP_INTERVAL: int = _get_int("DUPLICATE_CLEANUP_INTERVAL", 24 * 60 * 60)
    INITIAL_SYNC_ENABLED: bool = _get_bool("INITIAL_SYNC_ENABLED", True)

    # ── Webhooks ─────────────────────────────────────────────────────────────
    CATALOG_WEBHOOK_SECRET: str = os.getenv("CATALOG_WEBHOOK_SECRET", "")
    CATALOG_WEBHOOK_DEBUG: bool = _get_bool("CATALOG_WEBHOOK_DEBUG", False)

    # ── Admin API ────────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # ── Storage ──────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")


settings = Settings()
