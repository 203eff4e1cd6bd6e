"""
Job store implementations.

This module provides the JobStore interface and the in-memory
implementation. Postgres and Redis back ends live in ``..storage``.

Besides plain CRUD, every store implements two atomic primitives the
lifecycle core relies on:

- ``mutate``: a serialized read-modify-write of one record
- ``create_superseding``: retire the active jobs of a scope and insert a
  new job in a single step
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from ..errors import DuplicateJobError, JobNotFoundError
from .types import ACTIVE_STATUSES, JobKind, JobRecord, JobStatus

# Returning None from a mutation leaves the record untouched.
Mutation = Callable[[JobRecord], "JobRecord | None"]

ORDERABLE_FIELDS = ("created_at", "updated_at", "completed_at", "progress_percentage")


@dataclass
class JobFilter:
    """Filter criteria for listing jobs."""
    owner_id: str | None = None
    subject_id: str | None = None
    kind: JobKind | set[JobKind] | None = None
    status: JobStatus | set[JobStatus] | frozenset[JobStatus] | None = None
    created_before: float | None = None
    created_after: float | None = None
    limit: int | None = 100
    offset: int = 0
    order_by: str = "created_at"
    order_desc: bool = True

    def __post_init__(self):
        if self.order_by not in ORDERABLE_FIELDS:
            raise ValueError(f"Cannot order jobs by {self.order_by!r}")

    @classmethod
    def active_in_scope(
        cls,
        kind: JobKind,
        *,
        owner_id: str | None = None,
        subject_id: str | None = None,
    ) -> JobFilter:
        """Filter selecting the non-terminal jobs of one supersession scope."""
        return cls(
            owner_id=owner_id,
            subject_id=subject_id,
            kind=kind,
            status=ACTIVE_STATUSES,
            limit=None,
        )

    @property
    def kinds(self) -> set[JobKind] | None:
        if self.kind is None:
            return None
        return set(self.kind) if isinstance(self.kind, (set, frozenset)) else {self.kind}

    @property
    def statuses(self) -> set[JobStatus] | None:
        if self.status is None:
            return None
        return set(self.status) if isinstance(self.status, (set, frozenset)) else {self.status}

    def scope_key(self) -> str:
        """Stable key identifying the scope this filter selects."""
        kinds = ",".join(sorted(k.value for k in self.kinds or ()))
        return f"{kinds}|owner={self.owner_id or ''}|subject={self.subject_id or ''}"

    def matches(self, job: JobRecord) -> bool:
        """Check if a job matches this filter."""
        if self.owner_id and job.owner_id != self.owner_id:
            return False
        if self.subject_id and job.subject_id != self.subject_id:
            return False
        kinds = self.kinds
        if kinds is not None and job.kind not in kinds:
            return False
        statuses = self.statuses
        if statuses is not None and job.status not in statuses:
            return False
        if self.created_before is not None and job.created_at >= self.created_before:
            return False
        if self.created_after is not None and job.created_at <= self.created_after:
            return False
        return True

    def sort_and_page(self, jobs: list[JobRecord]) -> list[JobRecord]:
        """Apply ordering and pagination to already-matched jobs."""
        jobs = sorted(
            jobs,
            key=lambda j: (getattr(j, self.order_by) or 0.0, j.job_id),
            reverse=self.order_desc,
        )
        if self.limit is None:
            return jobs[self.offset:]
        return jobs[self.offset:self.offset + self.limit]


class JobStore(ABC):
    """Abstract interface for job persistence.

    Implementations must be safe for concurrent use from many coroutines.
    """

    @abstractmethod
    async def create(self, job: JobRecord) -> JobRecord:
        """Create a new job record.

        Raises:
            DuplicateJobError: If job_id already exists
        """
        ...

    @abstractmethod
    async def get(self, job_id: str) -> JobRecord | None:
        """Get a job by ID."""
        ...

    @abstractmethod
    async def update(self, job: JobRecord) -> JobRecord:
        """Replace an existing job record.

        Raises:
            JobNotFoundError: If job doesn't exist
        """
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """Delete a job by ID. Returns True if deleted."""
        ...

    @abstractmethod
    async def list(self, filter: JobFilter | None = None) -> list[JobRecord]:
        """List jobs matching the filter."""
        ...

    @abstractmethod
    async def count(self, filter: JobFilter | None = None) -> int:
        """Count jobs matching the filter."""
        ...

    @abstractmethod
    def iter_ids(
        self,
        filter: JobFilter | None = None,
        *,
        batch_size: int = 100,
    ) -> AsyncIterator[str]:
        """Lazily yield the ids of matching jobs, oldest first.

        Iteration is finite: it covers the jobs that existed when each batch
        was read and never blocks waiting for new ones.
        """
        ...

    @abstractmethod
    async def mutate(self, job_id: str, fn: Mutation) -> JobRecord:
        """Atomically apply ``fn`` to the current record and persist the result.

        ``fn`` runs with the record locked against concurrent mutation. If it
        returns None nothing is written; if it raises nothing is written and
        the exception propagates.

        Raises:
            JobNotFoundError: If job doesn't exist
        """
        ...

    @abstractmethod
    async def create_superseding(
        self,
        job: JobRecord,
        scope: JobFilter,
        supersede: Callable[[JobRecord], JobRecord],
    ) -> tuple[JobRecord, list[JobRecord]]:
        """Atomically retire every record matching ``scope`` and insert ``job``.

        Returns:
            Tuple of (created job, superseded records after ``supersede``)
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None


class InMemoryJobStore(JobStore):
    """In-memory job store implementation.

    Suitable for testing and single-process deployments.
    Serialized via asyncio.Lock; records are copied in and out so callers
    never share state with the store.
    """

    def __init__(self):
        self._jobs: dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            return self._insert(job)

    async def get(self, job_id: str) -> JobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    async def update(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            if job.job_id not in self._jobs:
                raise JobNotFoundError(job_id=job.job_id)
            self._jobs[job.job_id] = copy.deepcopy(job)
            return job

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def list(self, filter: JobFilter | None = None) -> list[JobRecord]:
        filter = filter or JobFilter(limit=None)
        async with self._lock:
            jobs = [j for j in self._jobs.values() if filter.matches(j)]
            return [copy.deepcopy(j) for j in filter.sort_and_page(jobs)]

    async def count(self, filter: JobFilter | None = None) -> int:
        async with self._lock:
            if filter:
                return sum(1 for j in self._jobs.values() if filter.matches(j))
            return len(self._jobs)

    async def iter_ids(
        self,
        filter: JobFilter | None = None,
        *,
        batch_size: int = 100,
    ) -> AsyncIterator[str]:
        filter = filter or JobFilter()
        async with self._lock:
            matched = [j for j in self._jobs.values() if filter.matches(j)]
            matched.sort(key=lambda j: (j.created_at, j.job_id))
            ids = [j.job_id for j in matched]
        for start in range(0, len(ids), batch_size):
            for job_id in ids[start:start + batch_size]:
                yield job_id
            # Let writers in between batches.
            await asyncio.sleep(0)

    async def mutate(self, job_id: str, fn: Mutation) -> JobRecord:
        async with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id=job_id)
            updated = fn(copy.deepcopy(current))
            if updated is None:
                return copy.deepcopy(current)
            self._jobs[job_id] = copy.deepcopy(updated)
            return updated

    async def create_superseding(
        self,
        job: JobRecord,
        scope: JobFilter,
        supersede: Callable[[JobRecord], JobRecord],
    ) -> tuple[JobRecord, list[JobRecord]]:
        async with self._lock:
            if job.job_id in self._jobs:
                raise DuplicateJobError(job.job_id)
            superseded: list[JobRecord] = []
            for existing in list(self._jobs.values()):
                if not scope.matches(existing):
                    continue
                retired = supersede(copy.deepcopy(existing))
                self._jobs[existing.job_id] = copy.deepcopy(retired)
                superseded.append(retired)
            created = self._insert(job)
            return created, superseded

    def _insert(self, job: JobRecord) -> JobRecord:
        if job.job_id in self._jobs:
            raise DuplicateJobError(job.job_id)
        self._jobs[job.job_id] = copy.deepcopy(job)
        return job


__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "JobFilter",
    "Mutation",
]
