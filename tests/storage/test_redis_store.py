"""
Tests for the Redis job store.

Run against a scratch server by setting GENJOBS_TEST_REDIS_URL. Each test
uses its own key prefix and removes its keys afterwards.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from contextlib import asynccontextmanager

import pytest

from generation_jobs.errors import DuplicateJobError, JobNotFoundError
from generation_jobs.jobs import JobFilter, JobKind, JobStatus
from generation_jobs.storage.redis import RedisJobStore
from tests._jobs_testkit import HOUR, START, make_job

REDIS_URL = os.environ.get("GENJOBS_TEST_REDIS_URL")

pytestmark = pytest.mark.skipif(not REDIS_URL, reason="GENJOBS_TEST_REDIS_URL not set")


@asynccontextmanager
async def _live_store():
    prefix = f"genjobs_test_{uuid.uuid4().hex[:8]}"
    store = RedisJobStore.from_url(REDIS_URL, prefix)
    try:
        yield store
    finally:
        keys = [key async for key in store._client.scan_iter(match=f"{prefix}:*")]
        if keys:
            await store._client.delete(*keys)
        await store.close()


class TestCrud:
    """Test basic record storage and indexes."""

    @pytest.mark.asyncio
    async def test_create_get_update_delete(self):
        async with _live_store() as store:
            job = await store.create(make_job())

            with pytest.raises(DuplicateJobError):
                await store.create(job)

            assert await store.get(job.job_id) == job
            await store.update(job.with_status(JobStatus.GENERATING, now=START + 1))
            assert (await store.get(job.job_id)).status == JobStatus.GENERATING

            assert await store.delete(job.job_id) is True
            assert await store.get(job.job_id) is None
            assert await store.count() == 0
            with pytest.raises(JobNotFoundError):
                await store.update(job)

    @pytest.mark.asyncio
    async def test_list_and_count_by_index(self):
        async with _live_store() as store:
            first = await store.create(make_job(created_at=START))
            second = await store.create(make_job(created_at=START + 10, subject_id="app-2"))
            await store.create(make_job(owner_id="profile-2", created_at=START + 20))

            owned = await store.list(JobFilter(owner_id="profile-1"))
            assert [j.job_id for j in owned] == [second.job_id, first.job_id]
            assert await store.count(JobFilter(subject_id="app-2")) == 1
            assert await store.count(JobFilter(created_before=START + 15)) == 2
            assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_iter_ids_covers_equal_scores(self):
        async with _live_store() as store:
            jobs = [await store.create(make_job(created_at=START)) for _ in range(5)]
            jobs.append(await store.create(make_job(created_at=START + 1)))

            ids = [job_id async for job_id in store.iter_ids(batch_size=2)]

            assert sorted(ids) == sorted(j.job_id for j in jobs)
            assert ids[-1] == jobs[-1].job_id


class TestAtomicPrimitives:
    """Test mutate and create_superseding."""

    @pytest.mark.asyncio
    async def test_concurrent_mutations(self):
        async with _live_store() as store:
            job = await store.create(make_job(total_count=10))

            def bump(current):
                return current.with_progress(completed_count=current.completed_count + 1)

            await asyncio.gather(*(store.mutate(job.job_id, bump) for _ in range(10)))

            assert (await store.get(job.job_id)).completed_count == 10

    @pytest.mark.asyncio
    async def test_mutate_missing(self):
        async with _live_store() as store:
            with pytest.raises(JobNotFoundError):
                await store.mutate("missing", lambda current: current)

    @pytest.mark.asyncio
    async def test_create_superseding_scope(self):
        async with _live_store() as store:
            active = await store.create(make_job(status=JobStatus.GENERATING))
            other_kind = await store.create(make_job(kind=JobKind.ICON))
            new = make_job(created_at=START + HOUR)

            def retire(job):
                return job.with_status(JobStatus.FAILED, now=START + HOUR)

            scope = JobFilter.active_in_scope(JobKind.COVER_IMAGE, subject_id="app-1")
            created, superseded = await store.create_superseding(new, scope, retire)

            assert created.job_id == new.job_id
            assert [j.job_id for j in superseded] == [active.job_id]
            assert (await store.get(active.job_id)).status == JobStatus.FAILED
            assert (await store.get(other_kind.job_id)).status == JobStatus.PENDING
            assert new.job_id in {j.job_id for j in await store.list(JobFilter(subject_id="app-1"))}

    @pytest.mark.asyncio
    async def test_create_superseding_needs_scope(self):
        async with _live_store() as store:
            with pytest.raises(ValueError):
                await store.create_superseding(make_job(), JobFilter(kind=JobKind.ICON), lambda job: job)
