import asyncio
from datetime import datetime, timezone

import pytest

from catalog_sync.catalog.models import Region
from catalog_sync.erp.schema import SchemaRegistry
from catalog_sync.errors import NotFoundLocal
from catalog_sync.sync.catalog_sync import sync_batch
from catalog_sync.sync.price_sync import select_region, sync_prices
from fakes import FakeCatalog, FakeOdoo, make_product, make_variant


def _dt(day):
    return datetime(2024, 1, day, tzinfo=timezone.utc)


REGIONS = [
    Region(id="reg_us", name="US", currency_code="usd", created_at=_dt(1)),
    Region(id="reg_cl", name="Chile", currency_code="clp", created_at=_dt(2)),
    Region(id="reg_cl2", name="Chile B2B", currency_code="clp", created_at=_dt(3)),
]


def _catalog(*products):
    return FakeCatalog(list(products), regions=REGIONS)


def _prices(catalog, erp, schema, **kw):
    return asyncio.run(sync_prices(catalog=catalog, erp=erp, schema=schema, **kw))


def _seed(catalog, erp, schema):
    asyncio.run(sync_batch(catalog=catalog, erp=erp, schema=schema))


def _two_size_shirt():
    return make_product("p1", "Shirt", variants=[
        make_variant("v_s", "SH-S", {"Size": "S"}),
        make_variant("v_m", "SH-M", {"Size": "M"}),
    ])


def test_region_selection_is_deterministic():
    c = _catalog()
    assert asyncio.run(select_region(c, default_currency="clp")).id == "reg_cl"
    assert asyncio.run(select_region(c, default_currency="eur")).id == "reg_us"
    assert asyncio.run(select_region(c, "reg_cl2", default_currency="clp")).id == "reg_cl2"
    assert asyncio.run(select_region(c, None, default_region_id="reg_us", default_currency="clp")).id == "reg_us"


def test_unknown_region_is_a_run_level_error(erp, schema):
    c = _catalog(make_product("p1", "Mug"))
    with pytest.raises(NotFoundLocal):
        _prices(c, erp, schema, region_id="reg_nope")


def test_prices_created_then_updated_without_duplicates(erp, schema):
    c = _catalog(_two_size_shirt())
    c.prices = {"v_s": {"clp": 9990}, "v_m": {"clp": 10990}}
    _seed(c, erp, schema)

    first = _prices(c, erp, schema)
    assert first.region_id == "reg_cl"
    assert first.currency_code == "clp"
    assert (first.created_prices, first.synced_prices, first.synced_variants) == (2, 2, 2)
    assert erp.count("product.pricelist") == 1
    assert erp.rows("product.pricelist")[0]["name"] == "Catalog CLP"

    c.prices["v_s"]["clp"] = 8990
    second = _prices(c, erp, schema)
    assert (second.created_prices, second.updated_prices, second.unchanged_prices) == (0, 1, 1)

    items = erp.rows("product.pricelist.item")
    assert len(items) == 2
    by_variant = {erp.table("product.product")[i["product_id"]]["default_code"]: i["fixed_price"] for i in items}
    assert by_variant == {"SH-S": 8990.0, "SH-M": 10990.0}


def test_template_list_price_is_lowest_variant_price(erp, schema):
    c = _catalog(_two_size_shirt())
    c.prices = {"v_s": {"clp": 12990}, "v_m": {"clp": 10990}}
    _seed(c, erp, schema)

    _prices(c, erp, schema)
    assert erp.template_for("p1")["list_price"] == 10990.0


def test_foreign_currency_run_leaves_list_price_alone(erp, schema):
    c = _catalog(_two_size_shirt())
    c.prices = {"v_s": {"clp": 12990, "usd": 1499}, "v_m": {"clp": 10990, "usd": 1299}}
    _seed(c, erp, schema)
    _prices(c, erp, schema)

    res = _prices(c, erp, schema, region_id="reg_us")
    assert res.currency_code == "usd"
    assert res.synced_prices == 2
    assert erp.template_for("p1")["list_price"] == 10990.0

    usd = erp.rows("res.currency", name="USD")[0]["id"]
    usd_list = erp.rows("product.pricelist", currency_id=usd)[0]["id"]
    assert sorted(i["fixed_price"] for i in erp.rows("product.pricelist.item", pricelist_id=usd_list)) == [12.99, 14.99]


def test_list_price_follows_company_currency():
    erp = FakeOdoo(company_currency="USD")
    c = _catalog(make_product("p1", "Mug", variants=[make_variant("v1", "MUG-1")]))
    c.prices = {"v1": {"usd": 1999, "clp": 18990}}
    schema = SchemaRegistry(erp, ttl=3600)
    _seed(c, erp, schema)

    _prices(c, erp, schema)
    assert erp.template_for("p1")["list_price"] != 18990.0
    _prices(c, erp, schema, region_id="reg_us")
    assert erp.template_for("p1")["list_price"] == 19.99


def test_missing_calculated_price_is_a_skip_not_an_error(erp, schema):
    c = _catalog(_two_size_shirt())
    c.prices = {"v_s": {"clp": 9990}}  # nothing for v_m in CLP
    _seed(c, erp, schema)

    res = _prices(c, erp, schema)
    assert res.synced_prices == 1
    assert res.skipped_prices == 1
    assert res.error_count == 0


def test_raw_prices_are_never_used(erp, schema):
    shirt = make_product("p1", "Shirt", variants=[make_variant("v1", "SH-1", raw_prices={"clp": 5000})])
    c = _catalog(shirt)
    _seed(c, erp, schema)

    res = _prices(c, erp, schema)
    assert res.synced_prices == 0
    assert res.skipped_prices == 1
    assert erp.count("product.pricelist.item") == 0


def test_minor_units_converted_for_two_decimal_currency(erp, schema):
    c = _catalog(make_product("p1", "Mug", variants=[make_variant("v1", "MUG-1")]))
    c.prices = {"v1": {"usd": 1999}}
    _seed(c, erp, schema)

    _prices(c, erp, schema, region_id="reg_us")
    item = erp.rows("product.pricelist.item")[0]
    assert item["fixed_price"] == 19.99
    currency = erp.rows("res.currency", name="USD")[0]["id"]
    assert erp.rows("product.pricelist")[0]["currency_id"] == currency


def test_unmatched_products_and_variants_are_skipped(erp, schema):
    synced = make_product("p1", "Mug", variants=[make_variant("v1", "MUG-1")])
    c = _catalog(synced)
    _seed(c, erp, schema)
    c.add(
        make_product("p2", "Never synced", variants=[make_variant("v2", "NEW-1")]),
        make_product("p3", "No sku", variants=[make_variant("v3", None)]),
    )
    c.prices = {"v1": {"clp": 1000}, "v2": {"clp": 2000}, "v3": {"clp": 3000}}
    # p3 is linked by reference but its only variant has no SKU
    erp._insert("product.template", {"name": "No sku", "x_medusa_id": "p3"})

    res = _prices(c, erp, schema)
    assert res.synced_prices == 1
    assert res.skipped_products == 1
    assert res.skipped_variants == 1


def test_variant_failure_does_not_stop_the_product(erp, schema):
    c = _catalog(_two_size_shirt())
    c.prices = {"v_s": {"clp": 9990}, "v_m": {"clp": 10990}}
    _seed(c, erp, schema)
    m_variant = erp.rows("product.product", default_code="SH-M")[0]["id"]
    erp.fail_create = lambda model, vals: model == "product.pricelist.item" and vals.get("product_id") == m_variant

    res = _prices(c, erp, schema)
    assert res.synced_prices == 1
    assert res.error_count == 1
    assert res.errors[0].item_label == "Shirt / SH-M"
    assert res.synced_products == 1


def test_configured_pricelist_map_is_used(erp, schema):
    c = _catalog(make_product("p1", "Mug", variants=[make_variant("v1", "MUG-1")]))
    c.prices = {"v1": {"clp": 1500}}
    _seed(c, erp, schema)
    pl = erp._insert("product.pricelist", {"name": "Retail", "currency_id": 1})

    asyncio.run(sync_prices(catalog=c, erp=erp, schema=schema, pricelist_map={"CLP": pl}))
    assert erp.rows("product.pricelist.item")[0]["pricelist_id"] == pl
    assert erp.count("product.pricelist") == 1
