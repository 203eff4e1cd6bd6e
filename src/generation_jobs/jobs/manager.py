"""
Job manager for lifecycle operations.

This module provides the JobManager: the trusted-caller API used by
generation workflows to create, advance and finalize job records. All
mutations go through the store's atomic primitives so concurrent workflow
callbacks never lose updates.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from ..errors import (
    SUPERSEDED_MESSAGE,
    ErrorCode,
    ErrorContext,
    InvalidItemError,
    TerminalStateError,
    ValidationError,
)
from ..events import EventBus, JobEvent, JobEventType
from ..logging import StructuredLogger, get_logger
from .kinds import KindRegistry, KindSpec, Scope
from .store import JobFilter, JobStore
from .types import ItemFailure, JobKind, JobRecord, JobResult, JobStatus

ResultInput = JobResult | Mapping[str, Any]


def _status_event(status: JobStatus) -> JobEventType:
    if status == JobStatus.PARTIAL:
        return JobEventType.JOB_PARTIAL
    if status.is_success:
        return JobEventType.JOB_COMPLETED
    if status.is_failure:
        return JobEventType.JOB_FAILED
    return JobEventType.JOB_STATUS_CHANGED


def _percentage(done: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(min(done, total) * 100.0 / total, 2)


class JobManager:
    """Manages job lifecycle operations.

    The JobManager is responsible for:
    - Creating jobs and superseding the active job of the same scope
    - Validated status transitions with partial-update semantics
    - Atomic progress counters for batch jobs
    - Terminal-state immutability
    - Event emission and structured logging

    Example:
        ```python
        manager = JobManager(InMemoryJobStore())
        job = await manager.create_job("profile-1", JobKind.COVER_IMAGE, subject_id="app-1")
        await manager.advance_job(job.job_id, status=JobStatus.GENERATING, progress_percentage=10)
        await manager.advance_job(
            job.job_id,
            status=JobStatus.COMPLETED,
            result=JobResult("storage", {"storage_id": "s-1"}),
        )
        ```
    """

    def __init__(
        self,
        store: JobStore,
        *,
        registry: KindRegistry | None = None,
        event_bus: EventBus | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._registry = registry or KindRegistry()
        self._event_bus = event_bus
        self._logger = logger or get_logger()
        self._clock = clock

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def registry(self) -> KindRegistry:
        return self._registry

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_job(
        self,
        owner_id: str,
        kind: JobKind | str,
        payload: Mapping[str, Any] | None = None,
        *,
        subject_id: str | None = None,
        total_count: int | None = None,
        current_step: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> JobRecord:
        """Create a job, failing any active job of the same scope first.

        Superseded jobs are failed with ``"Cancelled due to new job creation"``
        and error code ``SUPERSEDED``. Having nothing to supersede is normal.

        Raises:
            UnknownKindError: If the kind is not registered
            ValidationError: If owner, subject or payload are invalid
        """
        if not owner_id:
            raise ValidationError("owner_id is required", context=ErrorContext(operation="create_job"))
        spec = self._registry.get(kind)
        context = ErrorContext(kind=spec.kind.value, owner_id=owner_id, operation="create_job")

        if spec.requires_subject and not subject_id:
            raise ValidationError(f"{spec.kind.value} jobs require a subject_id", context=context)
        if total_count is not None and total_count < 0:
            raise ValidationError("total_count must not be negative", context=context)

        payload = dict(payload or {})
        spec.validate_payload(payload)

        if spec.scope == Scope.SUBJECT:
            if not subject_id:
                raise ValidationError(
                    f"{spec.kind.value} jobs are scoped by subject; subject_id is required",
                    context=context,
                )
            scope = JobFilter.active_in_scope(spec.kind, subject_id=subject_id)
        else:
            scope = JobFilter.active_in_scope(spec.kind, owner_id=owner_id)

        now = self._clock()
        job = JobRecord(
            owner_id=owner_id,
            kind=spec.kind,
            status=spec.initial_status,
            subject_id=subject_id,
            total_count=total_count,
            current_step=current_step,
            payload=payload,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )

        def supersede(existing: JobRecord) -> JobRecord:
            return existing.with_status(spec.state_machine.failure, now).with_error(
                SUPERSEDED_MESSAGE, ErrorCode.SUPERSEDED.value, now
            )

        created, superseded = await self._store.create_superseding(job, scope, supersede)

        with self._logger.trace_context(job_id=created.job_id, kind=spec.kind.value, owner_id=owner_id):
            for old in superseded:
                self._logger.log_transition(
                    old.job_id,
                    None,
                    old.status.value,
                    reason="superseded",
                    superseded_by=created.job_id,
                )
                await self._emit(old, JobEventType.JOB_SUPERSEDED, superseded_by=created.job_id)
            self._logger.info(
                "Job created",
                status=created.status.value,
                subject_id=subject_id,
                superseded=len(superseded),
            )
        await self._emit(created, JobEventType.JOB_CREATED)
        return created

    # =========================================================================
    # Progress & finalization
    # =========================================================================

    async def advance_job(
        self,
        job_id: str,
        *,
        status: JobStatus | str | None = None,
        progress_percentage: float | None = None,
        current_step: str | None = None,
        completed_count: int | None = None,
        total_count: int | None = None,
        items: Sequence[Mapping[str, Any]] | None = None,
        result: ResultInput | None = None,
        partial_failures: Sequence[ItemFailure] | None = None,
        error: str | None = None,
        error_code: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> JobRecord:
        """Apply a partial update to a job.

        Only the supplied fields change; ``updated_at`` always refreshes.
        Moving to a success status requires a result (derived from ``items``
        when omitted), moving to ``failed`` requires an error, and moving to
        ``partial`` requires partial failures.

        Raises:
            JobNotFoundError: If the job doesn't exist
            TerminalStateError: If the job is already terminal
            InvalidTransitionError: If the status move is not allowed
            ValidationError: If the update breaks a record invariant
        """
        new_status = self._coerce_status(status) if status is not None else None
        if progress_percentage is not None and not 0 <= progress_percentage <= 100:
            raise ValidationError(
                "progress_percentage must be between 0 and 100",
                context=ErrorContext(job_id=job_id, operation="advance_job"),
            )

        def apply(job: JobRecord) -> JobRecord:
            spec = self._require_mutable(job)
            target = new_status or job.status
            spec.state_machine.check_transition(job.status, target)

            updated = replace(
                job,
                progress_percentage=(
                    job.progress_percentage if progress_percentage is None else progress_percentage
                ),
                current_step=job.current_step if current_step is None else current_step,
                completed_count=job.completed_count if completed_count is None else completed_count,
                total_count=job.total_count if total_count is None else total_count,
                items=[dict(i) for i in items] if items is not None else job.items,
                partial_failures=(
                    list(partial_failures) if partial_failures is not None else job.partial_failures
                ),
                metadata={**job.metadata, **(metadata or {})},
            )
            return self._finish_transition(
                spec,
                updated,
                target,
                result=result,
                error=error,
                error_code=error_code,
                progress_given=progress_percentage is not None,
            )

        before, after = await self._apply(job_id, apply)
        await self._after_change(before, after, operation="advance_job")
        return after

    async def increment_completed(self, job_id: str, total: int | None = None) -> JobRecord:
        """Atomically count one more finished item of a batch job.

        Recomputes the percentage from ``total`` (or the stored total) and
        rewrites the step text to ``"Generated {n}/{total} {noun}"``. Once
        every item is accounted for the job finalizes itself.
        """

        def apply(job: JobRecord) -> JobRecord:
            spec = self._require_mutable(job)
            expected = self._batch_total(job, total)
            completed = job.completed_count + 1
            if completed + job.failed_count > expected:
                raise InvalidItemError(
                    f"All {expected} {spec.item_noun} are already accounted for",
                    context=ErrorContext(job_id=job.job_id, kind=job.kind.value),
                )
            updated = job.with_progress(
                _percentage(completed + job.failed_count, expected),
                current_step=f"Generated {completed}/{expected} {spec.item_noun}",
                completed_count=completed,
                total_count=expected,
                now=self._clock(),
            )
            return self._maybe_finalize_batch(spec, updated)

        before, after = await self._apply(job_id, apply)
        await self._after_change(before, after, operation="increment_completed")
        return after

    async def record_item_failure(
        self,
        job_id: str,
        item_id: str,
        error_message: str,
        total: int | None = None,
    ) -> JobRecord:
        """Atomically record one failed item of a batch job.

        The failure is appended to ``partial_failures`` and the item counts
        as processed; the job finalizes like ``increment_completed``.
        """

        def apply(job: JobRecord) -> JobRecord:
            spec = self._require_mutable(job)
            expected = self._batch_total(job, total)
            failed = job.failed_count + 1
            if job.completed_count + failed > expected:
                raise InvalidItemError(
                    f"All {expected} {spec.item_noun} are already accounted for",
                    context=ErrorContext(job_id=job.job_id, kind=job.kind.value),
                )
            updated = replace(
                job.with_progress(
                    _percentage(job.completed_count + failed, expected),
                    failed_count=failed,
                    total_count=expected,
                    now=self._clock(),
                ),
                partial_failures=[*job.partial_failures, ItemFailure(item_id, error_message)],
            )
            return self._maybe_finalize_batch(spec, updated)

        before, after = await self._apply(job_id, apply)
        await self._after_change(before, after, operation="record_item_failure")
        return after

    async def set_items(
        self,
        job_id: str,
        items: Sequence[Mapping[str, Any]],
        status: JobStatus | str | None = None,
    ) -> JobRecord:
        """Store a job's item collection with completion fields cleared.

        The status defaults to the kind's item stage (``generating_images``
        for concept generation).
        """
        requested = self._coerce_status(status) if status is not None else None

        def apply(job: JobRecord) -> JobRecord:
            spec = self._require_mutable(job)
            target = requested or spec.item_stage_status or job.status
            if target.is_terminal:
                raise ValidationError(
                    "set_items cannot finalize a job; use advance_job",
                    context=ErrorContext(job_id=job.job_id, kind=job.kind.value),
                )
            spec.state_machine.check_transition(job.status, target)

            cleared = []
            for item in items:
                spec.validate_item(item)
                cleared.append({**item, **{name: None for name in spec.item_complete_fields}})

            now = self._clock()
            return replace(
                job.with_status(target, now),
                items=cleared,
                total_count=len(cleared),
                completed_count=0,
            )

        before, after = await self._apply(job_id, apply)
        await self._after_change(before, after, operation="set_items")
        return after

    async def complete_item(
        self,
        job_id: str,
        index: int,
        fields: Mapping[str, Any],
    ) -> JobRecord:
        """Merge ``fields`` into one item; finish the job when all items are done.

        ``None`` values never overwrite existing fields. When every item
        satisfies the kind's completion predicate the job moves to its
        success status with a result derived from the items.
        """

        def apply(job: JobRecord) -> JobRecord:
            spec = self._require_mutable(job)
            context = ErrorContext(job_id=job.job_id, kind=job.kind.value, operation="complete_item")
            if not job.items:
                raise InvalidItemError("Job has no items", context=context)
            if not 0 <= index < len(job.items):
                raise InvalidItemError(
                    f"Item index {index} out of range (0..{len(job.items) - 1})",
                    context=context,
                )

            items = [dict(item) for item in job.items]
            items[index].update({k: v for k, v in fields.items() if v is not None})
            updated = replace(job, items=items)

            if not spec.item_complete_fields:
                return updated.with_progress(now=self._clock())

            done = sum(1 for item in items if spec.item_is_complete(item))
            updated = updated.with_progress(
                _percentage(done, len(items)),
                completed_count=done,
                total_count=len(items),
                now=self._clock(),
            )
            if done == len(items):
                machine = spec.state_machine
                machine.check_transition(job.status, machine.success)
                return self._finish_transition(spec, updated, machine.success)

            target = spec.item_stage_status or job.status
            spec.state_machine.check_transition(job.status, target)
            return updated.with_status(target, self._clock())

        before, after = await self._apply(job_id, apply)
        await self._after_change(before, after, operation="complete_item")
        return after

    async def fail_job(
        self,
        job_id: str,
        error: str,
        error_code: str | None = None,
    ) -> JobRecord:
        """Fail a job. A no-op on a job that is already terminal.

        Raises:
            JobNotFoundError: If the job doesn't exist
        """
        if not error:
            raise ValidationError(
                "error is required to fail a job",
                context=ErrorContext(job_id=job_id, operation="fail_job"),
            )

        def apply(job: JobRecord) -> JobRecord | None:
            if job.is_terminal:
                return None
            spec = self._registry.get(job.kind)
            now = self._clock()
            return job.with_status(spec.state_machine.failure, now).with_error(
                error, error_code or ErrorCode.WORKFLOW_FAILED.value, now
            )

        before, after = await self._apply(job_id, apply)
        if before is not None and before.is_terminal:
            self._logger.debug(
                "Ignoring failure of terminal job",
                job_id=job_id,
                status=before.status.value,
            )
            return after
        await self._after_change(before, after, operation="fail_job")
        return after

    # =========================================================================
    # Helpers
    # =========================================================================

    def _coerce_status(self, status: JobStatus | str) -> JobStatus:
        try:
            return JobStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown job status: {status!r}") from e

    def _require_mutable(self, job: JobRecord) -> KindSpec:
        if job.is_terminal:
            raise TerminalStateError(job.job_id, job.status.value)
        return self._registry.get(job.kind)

    def _batch_total(self, job: JobRecord, total: int | None) -> int:
        expected = total if total is not None else job.total_count
        if not expected or expected <= 0:
            raise ValidationError(
                "A positive total item count is required",
                context=ErrorContext(job_id=job.job_id, kind=job.kind.value),
            )
        return expected

    def _derive_result(self, spec: KindSpec, job: JobRecord) -> JobResult | None:
        if job.items is None:
            return None
        return JobResult(table=spec.result_table, data={"items": [dict(i) for i in job.items]})

    def _coerce_result(self, spec: KindSpec, result: ResultInput) -> JobResult:
        if isinstance(result, JobResult):
            return result
        if "table" in result:
            return JobResult.from_dict(dict(result))
        return JobResult(table=spec.result_table, data=dict(result))

    def _finish_transition(
        self,
        spec: KindSpec,
        job: JobRecord,
        target: JobStatus,
        *,
        result: ResultInput | None = None,
        error: str | None = None,
        error_code: str | None = None,
        progress_given: bool = False,
    ) -> JobRecord:
        """Apply ``target`` while keeping result/error consistent with it."""
        context = ErrorContext(job_id=job.job_id, kind=job.kind.value, operation="advance_job")
        now = self._clock()

        if target.is_success:
            if error is not None:
                raise ValidationError("A successful job cannot carry an error", context=context)
            final = self._coerce_result(spec, result) if result is not None else self._derive_result(spec, job)
            if final is None:
                raise ValidationError(
                    f"Moving to {target.value} requires a result",
                    context=context,
                )
            if target == JobStatus.PARTIAL and not job.partial_failures:
                raise ValidationError("Partial success requires partial_failures", context=context)
            return replace(
                job.with_status(target, now).with_result(final, now),
                progress_percentage=job.progress_percentage if progress_given else 100.0,
            )

        if target.is_failure:
            if result is not None:
                raise ValidationError("A failed job cannot carry a result", context=context)
            if not error:
                raise ValidationError(f"Moving to {target.value} requires an error", context=context)
            return job.with_status(target, now).with_error(
                error, error_code or ErrorCode.WORKFLOW_FAILED.value, now
            )

        if result is not None:
            raise ValidationError("Only successful jobs carry a result", context=context)
        if error is not None:
            raise ValidationError("Only failed jobs carry an error", context=context)
        return job.with_status(target, now)

    def _maybe_finalize_batch(self, spec: KindSpec, job: JobRecord) -> JobRecord:
        """Finalize a batch job once every item is accounted for."""
        total = job.total_count or 0
        if job.processed_count < total:
            return job

        machine = spec.state_machine
        noun = spec.item_noun
        if job.failed_count == 0:
            result = self._derive_result(spec, job) or JobResult(
                table=spec.result_table,
                data={"completed_count": job.completed_count, "total_count": total},
            )
            return self._finish_transition(
                spec,
                replace(job, current_step=f"Completed: {job.completed_count}/{total} {noun} generated"),
                machine.success,
                result=result,
            )

        if job.completed_count > 0 and machine.partial is not None:
            result = self._derive_result(spec, job) or JobResult(
                table=spec.result_table,
                data={"completed_count": job.completed_count, "total_count": total},
            )
            return self._finish_transition(
                spec,
                replace(job, current_step=f"Completed: {job.completed_count}/{total} {noun} generated"),
                machine.partial,
                result=result,
            )

        return self._finish_transition(
            spec,
            replace(job, current_step="Generation failed"),
            machine.failure,
            error=f"{job.failed_count}/{total} {noun} failed",
        )

    async def _apply(
        self,
        job_id: str,
        fn: Callable[[JobRecord], JobRecord | None],
    ) -> tuple[JobRecord | None, JobRecord]:
        """Run ``fn`` through ``store.mutate`` and return (before, after)."""
        before: JobRecord | None = None

        def wrapped(job: JobRecord) -> JobRecord | None:
            nonlocal before
            before = job
            return fn(job)

        after = await self._store.mutate(job_id, wrapped)
        return before, after

    async def _after_change(
        self,
        before: JobRecord | None,
        after: JobRecord,
        *,
        operation: str,
    ) -> None:
        previous = before.status if before is not None else None
        with self._logger.trace_context(
            job_id=after.job_id,
            kind=after.kind.value,
            owner_id=after.owner_id,
            operation=operation,
        ):
            if previous != after.status:
                self._logger.log_transition(
                    after.job_id,
                    previous.value if previous else None,
                    after.status.value,
                    progress_percentage=after.progress_percentage,
                    error_code=after.error_code,
                )
                event_type = _status_event(after.status)
            else:
                self._logger.debug(
                    "Job progress",
                    progress_percentage=after.progress_percentage,
                    current_step=after.current_step,
                )
                event_type = JobEventType.JOB_PROGRESS

        await self._emit(
            after,
            event_type,
            previous_status=previous.value if previous else None,
            current_step=after.current_step,
            error=after.error,
        )

    async def _emit(self, job: JobRecord, event_type: JobEventType, **data: Any) -> None:
        """Emit a job lifecycle event."""
        if not self._event_bus:
            return
        trace_id = self._logger.context.trace_id
        await self._event_bus.publish(JobEvent.for_job(job, event_type, data=data, trace_id=trace_id))


__all__ = ["JobManager"]
