import asyncio
from datetime import timedelta

import pytest

from common.job_schema import RemoteJobType, RemoteStatus, utcnow
from common.job_store import JobStore, sweep_periodically


def age(store, hash, hours):
    job = store.get_job(hash)
    store._jobs[hash] = job.model_copy(update={"updated_at": utcnow() - timedelta(hours=hours)})


def test_add_and_get():
    store = JobStore()
    store.add_job("h1", "a cat", RemoteJobType.IMAGINE)
    job = store.get_job("h1")
    assert job.prompt == "a cat"
    assert job.status == RemoteStatus.SENT
    assert store.get_job("missing") is None


def test_update_merges_fields():
    store = JobStore()
    store.add_job("h1", "a cat", RemoteJobType.IMAGINE)
    before = store.get_job("h1").updated_at
    job = store.update_job("h1", status=RemoteStatus.PROGRESS, progress=40)
    assert job.prompt == "a cat"
    assert job.progress == 40
    assert job.updated_at >= before


def test_update_creates_unknown_job():
    store = JobStore()
    job = store.update_job("h9", status=RemoteStatus.DONE, progress=100)
    assert job.hash == "h9"
    assert job.status == RemoteStatus.DONE
    assert len(store) == 1


def test_cleanup_evicts_only_stale_jobs():
    store = JobStore(max_age_hours=24)
    store.add_job("old", "", RemoteJobType.IMAGINE)
    store.add_job("new", "", RemoteJobType.UPSCALE, parent_hash="old")
    age(store, "old", 25)

    assert store.cleanup() == 1
    assert [j.hash for j in store.jobs()] == ["new"]
    assert store.cleanup(max_age_hours=0) == 1


@pytest.mark.anyio
async def test_sweeper_runs_cleanup():
    store = JobStore(max_age_hours=1)
    store.add_job("old", "", RemoteJobType.IMAGINE)
    age(store, "old", 2)

    task = asyncio.create_task(sweep_periodically(store, 0.01))
    await asyncio.sleep(0.05)
    task.cancel()

    assert len(store) == 0
