"""
Tests for how the Redis job store reports connection failures.

These use an in-process client stand-in and need no server.
"""

from __future__ import annotations

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from generation_jobs.errors import StoreError
from generation_jobs.jobs import JobFilter
from generation_jobs.storage.redis import RedisJobStore
from tests._jobs_testkit import make_job


class _DroppedPipeline:
    """Queues commands and loses the connection on execute."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def delete(self, *keys):
        pass

    def zrem(self, key, *members):
        pass

    def srem(self, key, *members):
        pass

    async def execute(self):
        raise RedisConnectionError("Connection reset by peer")


class _DroppedClient:
    """Serves reads of known documents; every other command fails."""

    def __init__(self, documents: dict[str, str] | None = None):
        self.documents = documents or {}

    async def get(self, key):
        return self.documents.get(key)

    def pipeline(self, transaction=True):
        return _DroppedPipeline()

    async def _fail(self, *args, **kwargs):
        raise RedisConnectionError("Connection reset by peer")

    set = zcard = smembers = zrangebyscore = mget = _fail


def _store(*jobs) -> RedisJobStore:
    documents = {f"genjobs:job:{job.job_id}": json.dumps(job.to_dict()) for job in jobs}
    return RedisJobStore(_DroppedClient(documents))


class TestConnectionFailures:
    """Every command failure surfaces as a StoreError."""

    @pytest.mark.asyncio
    async def test_update(self):
        job = make_job()
        with pytest.raises(StoreError) as exc_info:
            await _store(job).update(job)
        assert isinstance(exc_info.value.cause, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_delete(self):
        job = make_job()
        with pytest.raises(StoreError, match="Connection reset"):
            await _store(job).delete(job.job_id)

    @pytest.mark.asyncio
    async def test_count(self):
        store = _store()
        with pytest.raises(StoreError):
            await store.count()
        with pytest.raises(StoreError):
            await store.count(JobFilter(owner_id="profile-1"))

    @pytest.mark.asyncio
    async def test_list(self):
        with pytest.raises(StoreError):
            await _store().list(JobFilter(subject_id="app-1"))

    @pytest.mark.asyncio
    async def test_iter_ids(self):
        with pytest.raises(StoreError):
            async for _ in _store().iter_ids():
                pass

    @pytest.mark.asyncio
    async def test_delete_missing_job_needs_no_write(self):
        assert await _store().delete("missing") is False
