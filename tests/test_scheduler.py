import asyncio
import logging

from catalog_sync import logging_filters
from catalog_sync.scheduler import ScheduledJob, run_due
from catalog_sync.sync.batch import run_serialized


def test_run_due_runs_only_due_jobs_and_reschedules():
    calls = []

    async def ok():
        calls.append("ok")

    async def boom():
        raise RuntimeError("erp down")

    jobs = [
        ScheduledJob("a", 60, ok, next_run=100),
        ScheduledJob("b", 60, boom, next_run=100),
        ScheduledJob("c", 60, ok, next_run=500),
    ]
    ran = asyncio.run(run_due(jobs, now=100))

    assert ran == ["a", "b"]
    assert calls == ["ok"]
    assert jobs[0].next_run == 160
    assert jobs[1].last_error == "erp down"
    assert jobs[2].runs == 0
    assert asyncio.run(run_due(jobs, now=120)) == []


def test_disabled_interval_never_runs():
    async def ok():
        pass

    assert not ScheduledJob("off", 0, ok).due(10**9)


def test_run_serialized_never_overlaps_same_key():
    active = set()
    overlaps = []

    async def worker(item):
        key = item[0]
        if key in active:
            overlaps.append(item)
        active.add(key)
        await asyncio.sleep(0)
        active.discard(key)
        return item

    items = ["a1", "a2", "b1", "b2", "c1"]
    out = asyncio.run(run_serialized(items, worker, key=lambda i: i[0], concurrency=3))
    assert out == items
    assert overlaps == []


def test_secrets_are_masked_in_log_records():
    assert logging_filters.mask_secrets("Authorization: Basic c2tfYWRtaW46") == "Authorization: Basic ***"
    assert "k3y" not in logging_filters.mask_secrets('{"api_key": "k3y", "db": "prod"}')

    record = logging.LogRecord("uvicorn.error", logging.INFO, __file__, 1, "login password=%s", ("hunter2",), None)
    logging_filters._SanitizeFilter().filter(record)
    assert record.getMessage() == "login password=***"
