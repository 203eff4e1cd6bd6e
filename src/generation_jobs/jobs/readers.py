"""
Job readers for UI pollers.

Every read takes an explicit IdentityContext. Unauthenticated callers,
missing jobs and jobs owned by someone else all read as "nothing there"
so callers cannot discover other owners' job ids.
"""

from __future__ import annotations

from ..context import IdentityContext, IdentityProfileResolver, ProfileResolver
from ..logging import StructuredLogger, get_logger
from .kinds import KindRegistry
from .store import JobFilter, JobStore
from .types import ACTIVE_STATUSES, JobKind, JobRecord


class JobReader:
    """Owner-scoped, read-only access to job records."""

    def __init__(
        self,
        store: JobStore,
        *,
        profiles: ProfileResolver | None = None,
        registry: KindRegistry | None = None,
        logger: StructuredLogger | None = None,
    ):
        self._store = store
        self._profiles = profiles or IdentityProfileResolver()
        self._registry = registry or KindRegistry()
        self._logger = logger or get_logger()

    async def _owner(self, identity: IdentityContext) -> str | None:
        if not identity.is_authenticated:
            return None
        return await self._profiles.resolve_owner(identity)

    def _kind(self, kind: JobKind | str | None) -> JobKind | None:
        return self._registry.resolve_kind(kind) if kind is not None else None

    async def get_job(self, identity: IdentityContext, job_id: str) -> JobRecord | None:
        """Return the job if the caller owns it, else None."""
        owner_id = await self._owner(identity)
        if owner_id is None:
            return None
        job = await self._store.get(job_id)
        if job is None or job.owner_id != owner_id:
            self._logger.debug("Job not visible", job_id=job_id, trace_id=identity.trace_id)
            return None
        return job

    async def get_active_jobs(
        self,
        identity: IdentityContext,
        kind: JobKind | str | None = None,
    ) -> list[JobRecord]:
        """Non-terminal jobs owned by the caller, newest first."""
        owner_id = await self._owner(identity)
        if owner_id is None:
            return []
        return await self._store.list(JobFilter(
            owner_id=owner_id,
            kind=self._kind(kind),
            status=ACTIVE_STATUSES,
            limit=None,
            order_by="created_at",
            order_desc=True,
        ))

    async def get_active_job_for_subject(
        self,
        identity: IdentityContext,
        subject_id: str,
        kind: JobKind | str,
    ) -> JobRecord | None:
        """The caller's active job of ``kind`` for ``subject_id``, if any."""
        owner_id = await self._owner(identity)
        if owner_id is None:
            return None
        jobs = await self._store.list(JobFilter(
            owner_id=owner_id,
            subject_id=subject_id,
            kind=self._kind(kind),
            status=ACTIVE_STATUSES,
            limit=1,
        ))
        return jobs[0] if jobs else None

    async def get_latest_job_for_subject(
        self,
        identity: IdentityContext,
        subject_id: str,
        kind: JobKind | str | None = None,
    ) -> JobRecord | None:
        """The caller's most recent job for ``subject_id`` in any status."""
        owner_id = await self._owner(identity)
        if owner_id is None:
            return None
        jobs = await self._store.list(JobFilter(
            owner_id=owner_id,
            subject_id=subject_id,
            kind=self._kind(kind),
            limit=1,
        ))
        return jobs[0] if jobs else None


__all__ = ["JobReader"]
