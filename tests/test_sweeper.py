import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from doc_converter.conversion import Job, JobStatus, RetentionSweeper
from stubs import StubObserver

NOW = datetime(2024, 6, 2, 12, 0, 0, tzinfo=timezone.utc)
RETENTION = 24 * 3600.0
CUTOFF = NOW - timedelta(seconds=RETENTION)


def add_job(store, workspace, job_id: str, created_at: datetime, status: str = JobStatus.COMPLETE) -> None:
    store.create(
        Job(id=job_id, original_file="a.docx", status=status, created_at=created_at, updated_at=created_at)
    )
    workspace.prepare(job_id)


@pytest.mark.asyncio
async def test_sweep_removes_exactly_jobs_older_than_cutoff(store, workspace, registry) -> None:
    add_job(store, workspace, "old-complete", CUTOFF - timedelta(hours=3))
    add_job(store, workspace, "old-pending", CUTOFF - timedelta(microseconds=1), JobStatus.PENDING)
    add_job(store, workspace, "at-cutoff", CUTOFF)
    add_job(store, workspace, "fresh", NOW - timedelta(minutes=5))
    observer = StubObserver()
    await registry.register(observer)
    sweeper = RetentionSweeper(store, workspace, interval=3600, retention=RETENTION, registry=registry)

    removed = await sweeper.sweep_once(now=NOW)

    assert sorted(removed) == ["old-complete", "old-pending"]
    assert sorted(j.id for j in store.list_recent(10)) == ["at-cutoff", "fresh"]
    assert not workspace.paths("old-complete").job_dir.exists()
    assert workspace.paths("at-cutoff").job_dir.is_dir()
    assert sorted(m["job_id"] for m in observer.sent_messages) == ["old-complete", "old-pending"]


@pytest.mark.asyncio
async def test_directory_failure_skips_only_that_job(store, workspace) -> None:
    add_job(store, workspace, "stuck", CUTOFF - timedelta(hours=2))
    add_job(store, workspace, "ok", CUTOFF - timedelta(hours=1))

    class FlakyWorkspace:
        def __init__(self, inner):
            self.inner = inner

        def paths(self, job_id):
            return self.inner.paths(job_id)

        def prepare(self, job_id):
            return self.inner.prepare(job_id)

        def remove(self, job_id):
            if job_id == "stuck":
                raise PermissionError("busy")
            self.inner.remove(job_id)

    sweeper = RetentionSweeper(store, FlakyWorkspace(workspace), interval=3600, retention=RETENTION)

    removed = await sweeper.sweep_once(now=NOW)

    assert removed == ["ok"]
    # record kept so the next sweep retries it
    assert store.get("stuck").id == "stuck"


@pytest.mark.asyncio
async def test_store_failure_leaves_job_for_next_sweep(store, workspace) -> None:
    add_job(store, workspace, "a", CUTOFF - timedelta(hours=2))
    add_job(store, workspace, "b", CUTOFF - timedelta(hours=1))
    real_delete = store.delete

    def flaky_delete(job_id: str) -> None:
        if job_id == "a":
            raise RuntimeError("database is locked")
        real_delete(job_id)

    store.delete = flaky_delete
    sweeper = RetentionSweeper(store, workspace, interval=3600, retention=RETENTION)

    assert await sweeper.sweep_once(now=NOW) == ["b"]
    assert [j.id for j in store.list_older_than(CUTOFF)] == ["a"]

    store.delete = real_delete
    assert await sweeper.sweep_once(now=NOW) == ["a"]


@pytest.mark.asyncio
async def test_stop_request_prevents_new_job_cleanup(store, workspace) -> None:
    for i in range(3):
        add_job(store, workspace, f"job-{i}", CUTOFF - timedelta(hours=3 - i))
    loop = asyncio.get_running_loop()
    sweeper = None

    class StoppingWorkspace:
        def __init__(self, inner):
            self.inner = inner

        def paths(self, job_id):
            return self.inner.paths(job_id)

        def prepare(self, job_id):
            return self.inner.prepare(job_id)

        def remove(self, job_id):
            loop.call_soon_threadsafe(sweeper.request_stop)
            self.inner.remove(job_id)

    sweeper = RetentionSweeper(store, StoppingWorkspace(workspace), interval=3600, retention=RETENTION)

    removed = await sweeper.sweep_once(now=NOW)

    assert removed == ["job-0"]
    assert sorted(j.id for j in store.list_recent(10)) == ["job-1", "job-2"]


@pytest.mark.asyncio
async def test_loop_sweeps_periodically_and_stops_cleanly(store, workspace) -> None:
    past = datetime.now(timezone.utc) - timedelta(seconds=10)
    add_job(store, workspace, "expired", past)
    sweeper = RetentionSweeper(store, workspace, interval=0.05, retention=1)

    sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if not store.list_recent(10):
            break
        await asyncio.sleep(0.02)
    await asyncio.wait_for(sweeper.stop(), timeout=2)

    assert store.list_recent(10) == []
    assert not sweeper.running


@pytest.mark.asyncio
async def test_stop_before_first_tick_returns_promptly(store, workspace) -> None:
    add_job(store, workspace, "expired", datetime.now(timezone.utc) - timedelta(days=3))
    sweeper = RetentionSweeper(store, workspace, interval=3600, retention=RETENTION)

    sweeper.start()
    await asyncio.sleep(0)
    await asyncio.wait_for(sweeper.stop(), timeout=1)

    assert store.get("expired").id == "expired"
