import asyncio
from datetime import datetime, timezone

import pytest

from catalog_sync.sync.duplicates import (
    get_policy,
    group_by_handle,
    identify_duplicates,
    keep_newest,
    reconcile,
)
from fakes import FakeCatalog, make_product


def _at(hour):
    return datetime(2024, 5, 1, hour, tzinfo=timezone.utc)


def _dupes():
    return [
        make_product("p_a", "Shirt", handle="shirt", created_at=_at(1)),
        make_product("p_c", "Shirt", handle="shirt", created_at=_at(3)),
        make_product("p_b", "Shirt", handle="shirt", created_at=_at(2)),
    ]


def test_newest_survives_and_rest_are_deleted():
    catalog = FakeCatalog(_dupes())
    res = asyncio.run(reconcile(catalog=catalog))

    assert res.deleted_count == 2
    assert res.kept == ["p_c"]
    assert sorted(catalog.deleted) == ["p_a", "p_b"]
    assert list(catalog.products) == ["p_c"]
    assert res.remaining_duplicate_groups == 0


def test_rerun_after_cleanup_is_a_noop():
    catalog = FakeCatalog(_dupes())
    asyncio.run(reconcile(catalog=catalog))
    again = asyncio.run(reconcile(catalog=catalog))
    assert (again.deleted_count, again.processed_groups) == (0, 0)


def test_oldest_policy():
    catalog = FakeCatalog(_dupes())
    res = asyncio.run(reconcile(catalog=catalog, policy="oldest"))
    assert res.kept == ["p_a"]


def test_timestamp_tie_breaks_on_id():
    same = _at(5)
    members = [make_product("p_1", "X", handle="x", created_at=same), make_product("p_2", "X", handle="x", created_at=same)]
    assert keep_newest(members)[0].id == "p_2"


def test_blank_handles_never_group():
    products = [
        make_product("p1", "A", handle=""),
        make_product("p2", "B", handle=""),
        make_product("p3", "C", handle="c"),
    ]
    assert group_by_handle(products) == {}


def test_cap_reports_remaining_groups():
    products = []
    for h in ("a", "b", "c"):
        products += [make_product(f"{h}1", h, handle=h, created_at=_at(1)), make_product(f"{h}2", h, handle=h, created_at=_at(2))]
    catalog = FakeCatalog(products)

    res = asyncio.run(reconcile(1, catalog=catalog))
    assert res.processed_groups == 1
    assert res.remaining_duplicate_groups == 2
    assert res.kept == ["a2"]


def test_failed_deletion_is_reported_and_run_continues():
    products = _dupes() + [
        make_product("q1", "Cap", handle="cap", created_at=_at(1)),
        make_product("q2", "Cap", handle="cap", created_at=_at(2)),
    ]
    catalog = FakeCatalog(products)
    catalog.fail_delete = {"q1"}

    res = asyncio.run(reconcile(catalog=catalog))
    assert res.deleted_count == 2
    assert [f.product_id for f in res.failed_deletions] == ["q1"]
    assert res.processed_groups == 2
    assert res.to_dict()["failedDeletions"][0]["handle"] == "cap"


def test_identify_does_not_delete():
    catalog = FakeCatalog(_dupes())
    groups = asyncio.run(identify_duplicates(catalog))
    assert len(groups) == 1
    assert groups[0].survivor_id == "p_c"
    assert sorted(groups[0].losers) == ["p_a", "p_b"]
    assert catalog.deleted == []


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        get_policy("coin-flip")
