#===========================================================================
# catalog_sync/catalog/medusa_client.py
# Medusa (source catalog) API interface.
# Lists/retrieves/deletes products, lists regions, and resolves
# region-scoped calculated prices for variants.
#===========================================================================

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from catalog_sync.catalog.models import (
    CalculatedPrice,
    CatalogCategory,
    CatalogImage,
    CatalogProduct,
    CatalogTag,
    CatalogVariant,
    MoneyAmount,
    Region,
    VariantOption,
)
from catalog_sync.config import settings
from catalog_sync.errors import AuthError, CatalogRequestError, NotFoundLocal
from catalog_sync.mapping.money import to_minor_units
from catalog_sync.net import request_with_retry

logger = logging.getLogger("uvicorn.error")

PRODUCT_FIELDS = ",".join([
    "id", "title", "handle", "status", "description", "created_at", "thumbnail", "metadata",
    "*variants", "*variants.options", "*variants.options.option", "*variants.prices",
    "*categories", "*categories.parent_category", "*tags", "*images",
])
DEDUP_FIELDS = "id,title,handle,status,created_at"


# --- Parsing helpers -------------------------------------------------------

def _category_path(cat: Dict[str, Any]) -> List[str]:
    path: List[str] = []
    node: Optional[Dict[str, Any]] = cat
    seen = set()
    while isinstance(node, dict) and node.get("name") and id(node) not in seen:
        seen.add(id(node))
        path.append(str(node["name"]).strip())
        node = node.get("parent_category")
    return list(reversed(path))


def _parse_variant(raw: Dict[str, Any], product_id: str, *, amounts_in_minor: bool) -> CatalogVariant:
    options: List[VariantOption] = []
    for opt in raw.get("options") or []:
        if not isinstance(opt, dict):
            continue
        name = ((opt.get("option") or {}).get("title") or opt.get("title") or "").strip()
        value = str(opt.get("value") or "").strip()
        if name and value:
            options.append(VariantOption(name=name, value=value))

    prices: List[MoneyAmount] = []
    for p in raw.get("prices") or []:
        code = (p.get("currency_code") or "").lower()
        if not code or p.get("amount") is None:
            continue
        prices.append(MoneyAmount(
            currency_code=code,
            amount=to_minor_units(p["amount"], code, already_minor=amounts_in_minor),
        ))

    return CatalogVariant(
        id=raw["id"],
        product_id=raw.get("product_id") or product_id,
        title=raw.get("title"),
        sku=(raw.get("sku") or None),
        options=options,
        prices=prices,
    )


def parse_product(raw: Dict[str, Any], *, amounts_in_minor: bool = False) -> CatalogProduct:
    pid = raw["id"]
    return CatalogProduct(
        id=pid,
        title=raw.get("title") or "",
        handle=raw.get("handle"),
        status=raw.get("status") or "draft",
        description=raw.get("description"),
        created_at=raw.get("created_at"),
        thumbnail=raw.get("thumbnail"),
        metadata=raw.get("metadata") or {},
        variants=[_parse_variant(v, pid, amounts_in_minor=amounts_in_minor) for v in (raw.get("variants") or [])],
        categories=[
            CatalogCategory(id=c.get("id"), name=c["name"], handle=c.get("handle"), path=_category_path(c))
            for c in (raw.get("categories") or []) if c.get("name")
        ],
        tags=[CatalogTag(id=t.get("id"), value=t["value"]) for t in (raw.get("tags") or []) if t.get("value")],
        images=[CatalogImage(id=i.get("id"), url=i["url"]) for i in (raw.get("images") or []) if i.get("url")],
    )


def parse_calculated_price(raw: Optional[Dict[str, Any]], *, region_id: str,
                           amounts_in_minor: bool = False) -> Optional[CalculatedPrice]:
    """None when the catalog could not resolve a price (no rule covers the region)."""
    if not raw or raw.get("calculated_amount") is None:
        return None
    code = (raw.get("currency_code") or "").lower()
    if not code:
        return None
    original = raw.get("original_amount")
    return CalculatedPrice(
        currency_code=code,
        amount=to_minor_units(raw["calculated_amount"], code, already_minor=amounts_in_minor),
        original_amount=(
            to_minor_units(original, code, already_minor=amounts_in_minor) if original is not None else None
        ),
        region_id=region_id,
    )


# --- Client ----------------------------------------------------------------

class MedusaClient:
    """Thin async wrapper around the Medusa Admin + Store HTTP APIs."""

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        publishable_key: str | None = None,
        *,
        timeout: float | None = None,
        max_attempts: int | None = None,
        amounts_in_minor: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.MEDUSA_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else settings.MEDUSA_API_TOKEN
        self.publishable_key = publishable_key if publishable_key is not None else settings.MEDUSA_PUBLISHABLE_KEY
        self.timeout = timeout or settings.MEDUSA_TIMEOUT
        self.max_attempts = max_attempts or settings.MEDUSA_MAX_ATTEMPTS
        self.amounts_in_minor = (
            settings.MEDUSA_AMOUNTS_IN_MINOR_UNITS if amounts_in_minor is None else amounts_in_minor
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                auth=(self.api_token, "") if self.api_token else None,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _request(self, method: str, path: str, *, params=None, headers=None, item_id: str | None = None) -> Dict[str, Any]:
        resp = await request_with_retry(
            self._http(), method, path,
            max_attempts=self.max_attempts,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            params=params, headers=headers,
        )
        if resp.status_code in (401, 403):
            raise AuthError(f"Medusa rejected credentials ({resp.status_code}) on {method} {path}")
        if resp.status_code == 404:
            raise NotFoundLocal(f"{path} not found in catalog", item_id=item_id)
        if resp.status_code >= 400:
            raise CatalogRequestError(
                f"Medusa {method} {path} failed: {resp.status_code} {resp.text[:300]}",
                status_code=resp.status_code,
            )
        return resp.json() if resp.content else {}

    # ---- Products ----

    async def list_products(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        ids: Optional[List[str]] = None,
        fields: str = PRODUCT_FIELDS,
    ) -> List[CatalogProduct]:
        params: List[tuple] = [
            ("limit", limit), ("offset", offset), ("fields", fields), ("order", "created_at"),
        ]
        for pid in ids or []:
            params.append(("id[]", pid))
        data = await self._request("GET", "/admin/products", params=params)
        return [parse_product(p, amounts_in_minor=self.amounts_in_minor) for p in data.get("products") or []]

    async def retrieve_product(self, product_id: str) -> CatalogProduct:
        data = await self._request(
            "GET", f"/admin/products/{product_id}", params={"fields": PRODUCT_FIELDS}, item_id=product_id
        )
        return parse_product(data["product"], amounts_in_minor=self.amounts_in_minor)

    async def iter_all_products(self, page_size: int = 100, fields: str = DEDUP_FIELDS) -> AsyncIterator[CatalogProduct]:
        offset = 0
        while True:
            batch = await self.list_products(limit=page_size, offset=offset, fields=fields)
            for p in batch:
                yield p
            if len(batch) < page_size:
                break
            offset += page_size

    async def delete_product(self, product_id: str) -> bool:
        data = await self._request("DELETE", f"/admin/products/{product_id}", item_id=product_id)
        return bool(data.get("deleted", True))

    # ---- Regions ----

    async def list_regions(self, *, currency_code: str | None = None, limit: int = 100) -> List[Region]:
        params: Dict[str, Any] = {"limit": limit, "fields": "id,name,currency_code,created_at"}
        if currency_code:
            params["currency_code"] = currency_code.lower()
        data = await self._request("GET", "/admin/regions", params=params)
        return [Region(**r) for r in data.get("regions") or []]

    async def retrieve_region(self, region_id: str) -> Region:
        data = await self._request(
            "GET", f"/admin/regions/{region_id}", params={"fields": "id,name,currency_code,created_at"},
            item_id=region_id,
        )
        return Region(**data["region"])

    # ---- Calculated prices ----

    async def calculated_prices(
        self, product_ids: List[str], region: Region
    ) -> Dict[str, Dict[str, CalculatedPrice]]:
        """
        Resolve calculated prices for every variant of the given products in the
        region's pricing context. Returns {variant_id: {currency: CalculatedPrice}};
        variants without a resolvable price map to an empty dict.
        """
        if not product_ids:
            return {}
        params: List[tuple] = [
            ("region_id", region.id),
            ("fields", "id,*variants.calculated_price"),
            ("limit", len(product_ids)),
        ]
        for pid in product_ids:
            params.append(("id[]", pid))
        headers = {"x-publishable-api-key": self.publishable_key} if self.publishable_key else None
        data = await self._request("GET", "/store/products", params=params, headers=headers)

        out: Dict[str, Dict[str, CalculatedPrice]] = {}
        for prod in data.get("products") or []:
            for v in prod.get("variants") or []:
                cp = parse_calculated_price(
                    v.get("calculated_price"), region_id=region.id, amounts_in_minor=self.amounts_in_minor
                )
                out[v["id"]] = {cp.currency_code: cp} if cp else {}
        return out

    async def ping(self) -> Dict[str, Any]:
        try:
            resp = await self._http().get("/health")
            return {"success": resp.status_code == 200, "status_code": resp.status_code}
        except Exception as e:
            return {"success": False, "error": str(e)}
