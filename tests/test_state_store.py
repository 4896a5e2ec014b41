import asyncio

import pytest

from catalog_sync import db, runner, state_store
from catalog_sync.catalog.models import Region
from catalog_sync.config import settings
from catalog_sync.erp.schema import SchemaRegistry
from fakes import FakeCatalog, FakeOdoo, make_product


@pytest.fixture
def database(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/state.db")
    # a fresh engine per test, created inside that test's event loop
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "_sessionmaker", None)


def _in_db(coro_fn):
    async def go():
        await db.init_db()
        try:
            return await coro_fn()
        finally:
            await db.dispose_engine()

    return asyncio.run(go())


def test_seed_flag_round_trip(database):
    async def flow():
        before = await state_store.is_seed_completed()
        await state_store.mark_seed_completed({"syncedProducts": 3})
        after = await state_store.is_seed_completed()
        seed = await state_store.get_state(state_store.SEED)
        await state_store.reset_seed()
        return before, after, seed, await state_store.is_seed_completed()

    before, after, seed, reset = _in_db(flow)
    assert (before, after, reset) == (False, True, False)
    assert seed["details"] == {"syncedProducts": 3}


def test_run_bookkeeping(database):
    async def flow():
        await state_store.mark_run_started("catalog")
        await state_store.mark_run_completed("catalog", ok=False, details={"error": "boom"})
        return await state_store.all_states()

    states = _in_db(flow)
    assert states["catalog"]["last_status"] == "error"
    assert states["catalog"]["details"] == {"error": "boom"}
    assert states["catalog"]["last_started_at"] is not None


def test_initial_sync_runs_once(database, monkeypatch):
    erp = FakeOdoo()
    catalog = FakeCatalog(
        [make_product(f"p{i}", f"Product {i}") for i in range(1, 4)],
        regions=[Region(id="reg_cl", currency_code="clp")],
    )
    catalog.prices = {f"p{i}_v1": {"clp": 1000 * i} for i in range(1, 4)}
    monkeypatch.setattr(runner, "_clients", (catalog, erp, SchemaRegistry(erp)))

    async def flow():
        first = await runner.run_initial_sync(page_size=2)
        second = await runner.run_initial_sync(page_size=2)
        return first, second, await state_store.get_state("catalog")

    first, second, catalog_state = _in_db(flow)
    assert first["createdProducts"] == 3
    assert first["syncedPrices"] == 3
    assert second == {"skipped": True}
    assert catalog_state["last_status"] == "ok"
    assert erp.count("product.template") == 3
