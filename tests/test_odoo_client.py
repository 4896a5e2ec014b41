import asyncio
import json

import httpx
import pytest

from catalog_sync.erp.odoo_client import OdooClient
from catalog_sync.erp.schema import ProductType, SchemaRegistry
from catalog_sync.errors import AuthError, RemoteWriteError, SchemaValidationError, TransientNetworkError


def _client(handler, **kw):
    return OdooClient(
        "https://erp.example.com", "db", "bot@example.com", "key",
        max_attempts=kw.pop("max_attempts", 3), transport=httpx.MockTransport(handler), **kw,
    )


def _ok(request, result):
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _fault(request, code=200, name="odoo.exceptions.ValidationError", message="bad value"):
    body = json.loads(request.content)
    return httpx.Response(200, json={
        "jsonrpc": "2.0", "id": body["id"],
        "error": {"code": code, "message": "Odoo Server Error", "data": {"name": name, "message": message}},
    })


def test_authenticate_caches_uid():
    calls = []

    def handler(request):
        params = json.loads(request.content)["params"]
        calls.append((params["service"], params["method"]))
        if params["method"] == "authenticate":
            return _ok(request, 7)
        return _ok(request, [1, 2])

    async def go():
        c = _client(handler)
        ids = await c.search("product.template", [("name", "=", "x")])
        await c.search("product.template", [])
        await c.aclose()
        return ids

    assert asyncio.run(go()) == [1, 2]
    assert calls.count(("common", "authenticate")) == 1


def test_rejected_credentials_raise_auth_error():
    async def go():
        c = _client(lambda r: _ok(r, False))
        await c.authenticate()

    with pytest.raises(AuthError):
        asyncio.run(go())


def test_session_expiry_reauthenticates_once():
    state = {"auth": 0, "search": 0}

    def handler(request):
        params = json.loads(request.content)["params"]
        if params["method"] == "authenticate":
            state["auth"] += 1
            return _ok(request, 7)
        state["search"] += 1
        if state["search"] == 1:
            return _fault(request, code=100, name="odoo.http.SessionExpiredException", message="Session expired")
        return _ok(request, [5])

    async def go():
        c = _client(handler)
        return await c.search("product.template", [])

    assert asyncio.run(go()) == [5]
    assert state == {"auth": 2, "search": 2}


def test_validation_fault_on_create_is_not_retried():
    state = {"create": 0}

    def handler(request):
        params = json.loads(request.content)["params"]
        if params["method"] == "authenticate":
            return _ok(request, 7)
        state["create"] += 1
        return _fault(request)

    async def go():
        c = _client(handler)
        await c.create("product.template", {"name": "x"})

    with pytest.raises(RemoteWriteError) as ei:
        asyncio.run(go())
    assert state["create"] == 1
    assert ei.value.name == "odoo.exceptions.ValidationError"


def test_transient_errors_are_retried_then_give_up(monkeypatch):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    state = {"n": 0}

    def handler(request):
        state["n"] += 1
        if state["n"] < 3:
            return httpx.Response(503, text="busy")
        return _ok(request, 7)

    assert asyncio.run(_client(handler).authenticate()) == 7
    assert state["n"] == 3
    assert len(sleeps) == 2

    def always_down(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientNetworkError):
        asyncio.run(_client(always_down, max_attempts=2).authenticate())


def test_create_unwraps_list_result():
    def handler(request):
        params = json.loads(request.content)["params"]
        return _ok(request, 7 if params["method"] == "authenticate" else [42])

    assert asyncio.run(_client(handler).create("product.tag", {"name": "x"})) == 42


def test_schema_registry_caches_and_validates():
    class Client:
        calls = 0

        async def fields_get(self, model, attributes=None):
            Client.calls += 1
            return {"type": {"type": "selection", "selection": [["consu", "Goods"], ["service", "Service"]]}}

    now = [1000.0]
    reg = SchemaRegistry(Client(), ttl=60, clock=lambda: now[0])

    assert asyncio.run(reg.validate_product_type("consu")) == "consu"
    assert asyncio.run(reg.validate_product_type(ProductType.SERVICE)) == "service"
    assert Client.calls == 1

    now[0] += 120
    asyncio.run(reg.has_field("product.template", "type"))
    assert Client.calls == 2

    with pytest.raises(SchemaValidationError):
        asyncio.run(reg.validate_product_type("product"))
    with pytest.raises(SchemaValidationError):
        ProductType.parse("gadget")
