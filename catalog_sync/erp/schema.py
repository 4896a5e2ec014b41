# catalog_sync/erp/schema.py
# Snapshot of the ERP's field definitions, used to validate selection values
# before anything is written.
from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from catalog_sync.errors import SchemaValidationError

logger = logging.getLogger("uvicorn.error")


class ProductType(str, Enum):
    CONSUMABLE = "consu"
    SERVICE = "service"
    STORABLE = "product"  # Odoo <= 16
    COMBO = "combo"       # Odoo >= 18

    @classmethod
    def parse(cls, value: str) -> "ProductType":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise SchemaValidationError(f"unknown product type {value!r} (expected one of: {allowed})")


class SchemaRegistry:
    """Caches fields_get per model for `ttl` seconds."""

    def __init__(self, client, ttl: float = 3600.0, *, clock=time.monotonic):
        self.client = client
        self.ttl = ttl
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Dict[str, Dict[str, Any]]]] = {}

    async def fields(self, model: str, *, refresh: bool = False) -> Dict[str, Dict[str, Any]]:
        now = self._clock()
        hit = self._cache.get(model)
        if hit and not refresh and now - hit[0] < self.ttl:
            return hit[1]
        snapshot = await self.client.fields_get(model)
        self._cache[model] = (now, snapshot)
        logger.debug("[ODOO] schema snapshot for %s: %d fields", model, len(snapshot))
        return snapshot

    def invalidate(self, model: Optional[str] = None) -> None:
        if model is None:
            self._cache.clear()
        else:
            self._cache.pop(model, None)

    async def has_field(self, model: str, field: str) -> bool:
        return field in await self.fields(model)

    async def selection_values(self, model: str, field: str) -> List[str]:
        meta = (await self.fields(model)).get(field) or {}
        return [str(opt[0]) for opt in meta.get("selection") or [] if opt]

    async def validate_selection(self, model: str, field: str, value: str) -> str:
        """
        Return `value` if the ERP accepts it for a selection field, else raise
        SchemaValidationError. A stale snapshot is refreshed once before failing.
        """
        allowed = await self.selection_values(model, field)
        if value in allowed:
            return value
        allowed = [str(opt[0]) for opt in ((await self.fields(model, refresh=True)).get(field) or {}).get("selection") or []]
        if value in allowed:
            return value
        raise SchemaValidationError(
            f"{model}.{field} does not accept {value!r}; ERP offers {allowed}",
            name="selection", data={"model": model, "field": field, "allowed": allowed},
        )

    async def validate_product_type(self, product_type: str | ProductType) -> str:
        pt = product_type if isinstance(product_type, ProductType) else ProductType.parse(product_type)
        return await self.validate_selection("product.template", "type", pt.value)
