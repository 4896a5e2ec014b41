import pytest

from catalog_sync.config import settings
from catalog_sync.erp.schema import SchemaRegistry
from fakes import FakeCatalog, FakeOdoo


@pytest.fixture(autouse=True)
def _stable_settings(monkeypatch):
    """Pin the settings the engine reads so a developer's .env can't leak into tests."""
    monkeypatch.setattr(settings, "ODOO_REF_FIELD", "x_medusa_id")
    monkeypatch.setattr(settings, "ODOO_PRODUCT_TYPE", "consu")
    monkeypatch.setattr(settings, "ODOO_PRICELIST_MAP", {})
    monkeypatch.setattr(settings, "DEFAULT_REGION_ID", "")
    monkeypatch.setattr(settings, "DEFAULT_CURRENCY", "clp")
    monkeypatch.setattr(settings, "UPDATE_TEMPLATE_LIST_PRICE", True)
    monkeypatch.setattr(settings, "DUPLICATE_SURVIVOR_POLICY", "newest")
    monkeypatch.setattr(settings, "DUPLICATE_MAX_GROUPS_PER_RUN", 0)
    monkeypatch.setattr(settings, "SYNC_BATCH_LIMIT", 50)
    monkeypatch.setattr(settings, "SYNC_CONCURRENCY", 1)
    monkeypatch.setattr(settings, "RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr(settings, "RETRY_MAX_DELAY", 0.0)
    monkeypatch.setattr(settings, "ADMIN_USER", "admin")
    monkeypatch.setattr(settings, "ADMIN_PASS", "adminpass")
    monkeypatch.setattr(settings, "CATALOG_WEBHOOK_SECRET", "hook-secret")


@pytest.fixture
def erp():
    return FakeOdoo()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def schema(erp):
    return SchemaRegistry(erp, ttl=3600)
