"""
Redis job store.

Each job is one JSON document. Three kinds of index keep reads cheap:

- ``{prefix}:jobs:created`` sorted set of job ids scored by created_at
- ``{prefix}:owner:{owner_id}`` set of job ids per owner
- ``{prefix}:subject:{subject_id}`` set of job ids per subject

Atomic primitives use optimistic transactions (WATCH/MULTI/EXEC) and retry
a bounded number of times before giving up with StoreConflictError.

Redis is fast but only as durable as its persistence settings. Prefer the
Postgres store when job history must survive a Redis restart.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import redis.asyncio as redis

from ..errors import DuplicateJobError, JobNotFoundError, StoreConflictError, StoreError
from ..jobs.store import JobFilter, JobStore, Mutation
from ..jobs.types import JobRecord
from ..logging import StructuredLogger, get_logger


class RedisJobStore(JobStore):
    """Redis-backed job store.

    Example:
        ```python
        client = redis.from_url("redis://localhost:6379/0", decode_responses=True)
        store = RedisJobStore(client, key_prefix="genjobs")
        ```
    """

    def __init__(
        self,
        client: Any,  # redis.Redis
        key_prefix: str = "genjobs",
        *,
        max_watch_retries: int = 20,
        owns_client: bool = False,
        logger: StructuredLogger | None = None,
    ):
        self._client = client
        self._prefix = key_prefix
        self._max_retries = max_watch_retries
        self._owns_client = owns_client
        self._logger = logger or get_logger()

    @classmethod
    def from_url(
        cls,
        url: str,
        key_prefix: str = "genjobs",
        *,
        max_watch_retries: int = 20,
    ) -> RedisJobStore:
        client = redis.from_url(url, decode_responses=True)
        return cls(client, key_prefix, max_watch_retries=max_watch_retries, owns_client=True)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # Keys

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    def _created_key(self) -> str:
        return f"{self._prefix}:jobs:created"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}"

    def _subject_key(self, subject_id: str) -> str:
        return f"{self._prefix}:subject:{subject_id}"

    @staticmethod
    def _dumps(job: JobRecord) -> str:
        return json.dumps(job.to_dict())

    @staticmethod
    def _loads(raw: str | bytes | None) -> JobRecord | None:
        if raw is None:
            return None
        return JobRecord.from_dict(json.loads(raw))

    def _queue_insert(self, pipe: Any, job: JobRecord) -> None:
        pipe.set(self._job_key(job.job_id), self._dumps(job))
        pipe.zadd(self._created_key(), {job.job_id: job.created_at})
        pipe.sadd(self._owner_key(job.owner_id), job.job_id)
        if job.subject_id:
            pipe.sadd(self._subject_key(job.subject_id), job.job_id)

    async def _load_many(self, job_ids: list[str]) -> list[JobRecord]:
        if not job_ids:
            return []
        raws = await self._client.mget([self._job_key(job_id) for job_id in job_ids])
        return [job for job in (self._loads(raw) for raw in raws) if job is not None]

    async def _candidate_ids(self, filter: JobFilter) -> list[str]:
        """Narrow the id space using the cheapest matching index."""
        if filter.owner_id:
            return list(await self._client.smembers(self._owner_key(filter.owner_id)))
        if filter.subject_id:
            return list(await self._client.smembers(self._subject_key(filter.subject_id)))
        low = f"({filter.created_after}" if filter.created_after is not None else "-inf"
        high = f"({filter.created_before}" if filter.created_before is not None else "+inf"
        return list(await self._client.zrangebyscore(self._created_key(), low, high))

    # CRUD

    async def create(self, job: JobRecord) -> JobRecord:
        key = self._job_key(job.job_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if await pipe.exists(key):
                    raise DuplicateJobError(job.job_id)
                pipe.multi()
                self._queue_insert(pipe, job)
                await pipe.execute()
        except redis.WatchError as e:
            raise DuplicateJobError(job.job_id, cause=e) from e
        except redis.RedisError as e:
            raise StoreError(f"Redis job store failure: {e}", cause=e) from e
        return job

    async def get(self, job_id: str) -> JobRecord | None:
        try:
            return self._loads(await self._client.get(self._job_key(job_id)))
        except redis.RedisError as e:
            raise StoreError(f"Redis job store failure: {e}", cause=e) from e

    async def update(self, job: JobRecord) -> JobRecord:
        try:
            written = await self._client.set(self._job_key(job.job_id), self._dumps(job), xx=True)
        except redis.RedisError as e:
            raise StoreError(f"Redis job store failure: {e}", cause=e) from e
        if not written:
            raise JobNotFoundError(job_id=job.job_id)
        return job

    async def delete(self, job_id: str) -> bool:
        job = await self.get(job_id)
        if job is None:
            return False
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(self._job_key(job_id))
                pipe.zrem(self._created_key(), job_id)
                pipe.srem(self._owner_key(job.owner_id), job_id)
                if job.subject_id:
                    pipe.srem(self._subject_key(job.subject_id), job_id)
                results = await pipe.execute()
        except redis.RedisError as e:
            raise StoreError(f"Redis job store failure: {e}", cause=e) from e
        return bool(results[0])

    async def list(self, filter: JobFilter | None = None) -> list[JobRecord]:
        filter = filter or JobFilter(limit=None)
        try:
            jobs = await self._load_many(await self._candidate_ids(filter))
        except redis.RedisError as e:
            raise StoreError(f"Redis job store failure: {e}", cause=e) from e
        return filter.sort_and_page([job for job in jobs if filter.matches(job)])

    async def count(self, filter: JobFilter | None = None) -> int:
        try:
            if filter is None:
                return await self._client.zcard(self._created_key())
            jobs = await self._load_many(await self._candidate_ids(filter))
        except redis.RedisError as e:
            raise StoreError(f"Redis job store failure: {e}", cause=e) from e
        return sum(1 for job in jobs if filter.matches(job))

    async def iter_ids(
        self,
        filter: JobFilter | None = None,
        *,
        batch_size: int = 100,
    ) -> AsyncIterator[str]:
        """Walk the created-at index in score order, one batch at a time."""
        filter = filter or JobFilter()
        high = f"({filter.created_before}" if filter.created_before is not None else "+inf"
        low: str | float = f"({filter.created_after}" if filter.created_after is not None else "-inf"
        seen_at_low: set[str] = set()

        while True:
            try:
                window = await self._client.zrangebyscore(
                    self._created_key(),
                    low,
                    high,
                    start=0,
                    num=batch_size + len(seen_at_low),
                    withscores=True,
                )
                fresh = [(job_id, score) for job_id, score in window if job_id not in seen_at_low]
                if not fresh:
                    return
                jobs = await self._load_many([job_id for job_id, _ in fresh])
            except redis.RedisError as e:
                raise StoreError(f"Redis job store failure: {e}", cause=e) from e

            for job in jobs:
                if filter.matches(job):
                    yield job.job_id

            last_score = fresh[-1][1]
            if low != last_score:
                seen_at_low = set()
            seen_at_low.update(job_id for job_id, score in fresh if score == last_score)
            low = last_score

    # Atomic primitives

    async def mutate(self, job_id: str, fn: Mutation) -> JobRecord:
        key = self._job_key(job_id)
        for _attempt in range(self._max_retries):
            try:
                async with self._client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = self._loads(await pipe.get(key))
                    if current is None:
                        raise JobNotFoundError(job_id=job_id)
                    updated = fn(current)
                    if updated is None:
                        await pipe.unwatch()
                        return current
                    pipe.multi()
                    pipe.set(key, self._dumps(updated))
                    await pipe.execute()
                    return updated
            except redis.WatchError:
                continue
            except redis.RedisError as e:
                raise StoreError(f"Redis job store failure: {e}", cause=e) from e

        self._logger.warning("Gave up on contended job", job_id=job_id, retries=self._max_retries)
        raise StoreConflictError(f"Job {job_id} kept changing after {self._max_retries} attempts")

    async def create_superseding(
        self,
        job: JobRecord,
        scope: JobFilter,
        supersede: Callable[[JobRecord], JobRecord],
    ) -> tuple[JobRecord, list[JobRecord]]:
        if scope.subject_id:
            index_key = self._subject_key(scope.subject_id)
        elif scope.owner_id:
            index_key = self._owner_key(scope.owner_id)
        else:
            raise ValueError("Supersession scope needs an owner_id or subject_id")

        new_key = self._job_key(job.job_id)
        for _attempt in range(self._max_retries):
            try:
                async with self._client.pipeline(transaction=True) as pipe:
                    await pipe.watch(index_key, new_key)
                    if await pipe.exists(new_key):
                        raise DuplicateJobError(job.job_id)
                    member_ids = sorted(await pipe.smembers(index_key))
                    doc_keys = [self._job_key(member) for member in member_ids]
                    if doc_keys:
                        await pipe.watch(*doc_keys)
                        raws = await pipe.mget(doc_keys)
                    else:
                        raws = []

                    superseded: list[JobRecord] = []
                    for raw in raws:
                        existing = self._loads(raw)
                        if existing is not None and scope.matches(existing):
                            superseded.append(supersede(existing))

                    pipe.multi()
                    for retired in superseded:
                        pipe.set(self._job_key(retired.job_id), self._dumps(retired))
                    self._queue_insert(pipe, job)
                    await pipe.execute()
                    return job, superseded
            except redis.WatchError:
                continue
            except redis.RedisError as e:
                raise StoreError(f"Redis job store failure: {e}", cause=e) from e

        raise StoreConflictError(
            f"Scope {scope.scope_key()} kept changing after {self._max_retries} attempts"
        )


__all__ = ["RedisJobStore"]
