from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from catalog_sync import runner, state_store
from catalog_sync.catalog.models import Region
from catalog_sync.erp.schema import SchemaRegistry
from catalog_sync.main_app import app
from fakes import FakeCatalog, FakeOdoo, make_product

client = TestClient(app)
AUTH = ("admin", "adminpass")


@pytest.fixture(autouse=True)
def wired(monkeypatch):
    """Fake clients behind the runner, and no database bookkeeping."""
    async def _noop(*args, **kwargs):
        return None

    async def _states():
        return {}

    monkeypatch.setattr(runner, "_record_started", _noop)
    monkeypatch.setattr(runner, "_record_completed", _noop)
    monkeypatch.setattr(state_store, "all_states", _states)

    erp = FakeOdoo()
    catalog = FakeCatalog(
        [
            make_product("p1", "Mug", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            make_product("p2", "Mug", handle="mug", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc)),
        ],
        regions=[Region(id="reg_cl", currency_code="clp")],
    )
    monkeypatch.setattr(runner, "_clients", (catalog, erp, SchemaRegistry(erp)))
    return catalog, erp


def test_admin_routes_require_basic_auth():
    assert client.post("/admin/sync-to-erp", json={}).status_code == 401
    assert client.post("/admin/sync-to-erp", json={}, auth=("admin", "wrong")).status_code == 401


def test_sync_to_erp_returns_camel_case_counters(wired):
    _, erp = wired
    r = client.post("/admin/sync-to-erp", json={"limit": 10}, auth=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["createdProducts"] == 2
    assert body["errorCount"] == 0
    assert erp.count("product.template") == 2


def test_sync_prices_unknown_region_is_404():
    r = client.post("/admin/sync-prices-to-erp", json={"regionId": "reg_nope"}, auth=AUTH)
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_erp_auth_failure_is_502(wired):
    _, erp = wired
    erp.auth_error = True
    r = client.post("/admin/sync-to-erp", json={}, auth=AUTH)
    assert r.status_code == 502


def test_invalid_limit_is_422():
    r = client.post("/admin/sync-to-erp", json={"limit": 0}, auth=AUTH)
    assert r.status_code == 422


def test_background_run_is_pollable():
    r = client.post("/admin/sync-to-erp", json={"background": True}, auth=AUTH)
    assert r.status_code == 202
    job_id = r.json()["job_id"]
    assert r.headers["Location"] == f"/admin/sync/status/{job_id}"

    status = client.get(f"/admin/sync/status/{job_id}", auth=AUTH)
    assert status.status_code == 200
    assert status.json()["kind"] == "catalog"
    assert job_id in {j["id"] for j in client.get("/admin/sync/jobs", auth=AUTH).json()["jobs"]}
    assert client.get("/admin/sync/status/nope", auth=AUTH).status_code == 404


def test_identify_duplicates_previews_without_deleting(wired):
    catalog, _ = wired
    r = client.get("/admin/cleanup-duplicates", params={"action": "identify"}, auth=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert (body["duplicateGroups"], body["toDelete"]) == (1, 1)
    assert body["groups"][0]["survivorId"] == "p2"
    assert catalog.deleted == []

    bad = client.get("/admin/cleanup-duplicates", params={"action": "identify", "policy": "coin-flip"}, auth=AUTH)
    assert bad.status_code == 400


def test_cleanup_duplicates_deletes_losers(wired):
    catalog, _ = wired
    r = client.post("/admin/cleanup-duplicates", json={}, auth=AUTH)
    assert r.status_code == 200
    assert r.json()["deletedCount"] == 1
    assert catalog.deleted == ["p1"]


def test_health_and_state():
    assert client.get("/admin/health", auth=AUTH).json()["catalog"]["success"] is True
    assert client.get("/admin/sync-state", auth=AUTH).json() == {"states": {}}
    assert client.get("/").json()["status"] == "running"
