#===========================================================================
# catalog_sync/erp/odoo_client.py
# Odoo JSON-RPC interface.
# Authenticates against `common`, then runs execute_kw on `object` for
# search/read/create/write/fields_get.
#===========================================================================

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from catalog_sync.config import settings
from catalog_sync.errors import AuthError, RemoteCallError, RemoteWriteError
from catalog_sync.net import request_with_retry

logger = logging.getLogger("uvicorn.error")

SESSION_FAULT_CODES = {100}
SESSION_FAULT_NAMES = {
    "odoo.http.SessionExpiredException",
    "odoo.exceptions.AccessDenied",
}


def _fault_from(error: Dict[str, Any]) -> RemoteCallError:
    data = error.get("data") or {}
    message = data.get("message") or error.get("message") or "Odoo error"
    return RemoteCallError(
        message,
        code=error.get("code"),
        name=data.get("name"),
        data=data,
    )


def is_session_fault(exc: RemoteCallError) -> bool:
    return exc.code in SESSION_FAULT_CODES or (exc.name or "") in SESSION_FAULT_NAMES


class OdooClient:
    """
    Async JSON-RPC client for one Odoo database.

    The uid is cached after the first successful authenticate(); a call that
    fails with a session fault drops it, re-authenticates once and replays.
    """

    def __init__(
        self,
        url: str | None = None,
        db: str | None = None,
        username: str | None = None,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = (url if url is not None else settings.ODOO_URL).rstrip("/")
        self.db = db if db is not None else settings.ODOO_DB
        self.username = username if username is not None else settings.ODOO_USERNAME
        self.api_key = api_key if api_key is not None else settings.ODOO_API_KEY
        self.timeout = timeout or settings.ODOO_TIMEOUT
        self.max_attempts = max_attempts or settings.ODOO_MAX_ATTEMPTS
        self.uid: Optional[int] = None
        self._ids = itertools.count(1)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.url, timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ---- Transport ----

    async def _call(self, service: str, method: str, *args: Any) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {"service": service, "method": method, "args": list(args)},
            "id": next(self._ids),
        }
        resp = await request_with_retry(
            self._http(), "POST", "/jsonrpc",
            max_attempts=self.max_attempts,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            json=payload,
        )
        if resp.status_code >= 400:
            raise RemoteCallError(
                f"Odoo HTTP {resp.status_code} on {service}.{method}: {resp.text[:300]}",
                code=resp.status_code,
            )
        body = resp.json()
        if body.get("error"):
            raise _fault_from(body["error"])
        return body.get("result")

    # ---- Session ----

    async def authenticate(self) -> int:
        if self.uid:
            return self.uid
        try:
            uid = await self._call("common", "authenticate", self.db, self.username, self.api_key, {})
        except RemoteCallError as e:
            raise AuthError(f"Odoo authentication failed: {e}") from e
        if not uid:
            raise AuthError(f"Odoo rejected credentials for {self.username!r} on db {self.db!r}")
        self.uid = int(uid)
        logger.info("[ODOO] authenticated as uid=%s db=%s", self.uid, self.db)
        return self.uid

    async def execute_kw(self, model: str, method: str, args: List[Any] | None = None,
                         kwargs: Dict[str, Any] | None = None) -> Any:
        uid = await self.authenticate()
        try:
            return await self._call(
                "object", "execute_kw", self.db, uid, self.api_key, model, method, args or [], kwargs or {}
            )
        except RemoteCallError as e:
            if not is_session_fault(e):
                raise
            logger.warning("[ODOO] session fault on %s.%s (%s); re-authenticating once", model, method, e)
            self.uid = None
            uid = await self.authenticate()
            return await self._call(
                "object", "execute_kw", self.db, uid, self.api_key, model, method, args or [], kwargs or {}
            )

    # ---- CRUD ----

    async def search(self, model: str, domain: List[Any], *, limit: int | None = None,
                     offset: int = 0, order: str | None = None) -> List[int]:
        kw: Dict[str, Any] = {"offset": offset}
        if limit:
            kw["limit"] = limit
        if order:
            kw["order"] = order
        return await self.execute_kw(model, "search", [domain], kw) or []

    async def read(self, model: str, ids: List[int], fields: List[str] | None = None) -> List[Dict[str, Any]]:
        if not ids:
            return []
        kw = {"fields": fields} if fields else {}
        return await self.execute_kw(model, "read", [list(ids)], kw) or []

    async def search_read(self, model: str, domain: List[Any], fields: List[str] | None = None, *,
                          limit: int | None = None, offset: int = 0,
                          order: str | None = None) -> List[Dict[str, Any]]:
        kw: Dict[str, Any] = {"offset": offset}
        if fields:
            kw["fields"] = fields
        if limit:
            kw["limit"] = limit
        if order:
            kw["order"] = order
        return await self.execute_kw(model, "search_read", [domain], kw) or []

    async def create(self, model: str, values: Dict[str, Any]) -> int:
        try:
            new_id = await self.execute_kw(model, "create", [values])
        except RemoteCallError as e:
            raise RemoteWriteError(
                f"create {model} rejected: {e}", code=e.code, name=e.name, data=e.data
            ) from e
        # Odoo 17+ may answer a single create with a one-element list
        if isinstance(new_id, list):
            new_id = new_id[0] if new_id else None
        return int(new_id)

    async def update(self, model: str, record_id: int, values: Dict[str, Any]) -> bool:
        try:
            return bool(await self.execute_kw(model, "write", [[record_id], values]))
        except RemoteCallError as e:
            raise RemoteWriteError(
                f"write {model}#{record_id} rejected: {e}", code=e.code, name=e.name, data=e.data
            ) from e

    async def fields_get(self, model: str, attributes: List[str] | None = None) -> Dict[str, Dict[str, Any]]:
        kw = {"attributes": attributes or ["string", "type", "selection", "required", "relation"]}
        return await self.execute_kw(model, "fields_get", [], kw) or {}

    async def ping(self) -> Dict[str, Any]:
        try:
            version = await self._call("common", "version")
            return {"success": True, "server_version": (version or {}).get("server_version")}
        except Exception as e:
            return {"success": False, "error": str(e)}
