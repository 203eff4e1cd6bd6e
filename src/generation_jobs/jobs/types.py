"""
Job types for generation jobs.

This module defines the JobStatus and JobKind enums and the JobRecord
dataclass that form the core of the job lifecycle system.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Union of every status used by any job kind.

    Which statuses a particular job may occupy, and in what order, is
    decided by its kind's state machine (see ``kinds.py``). The families
    below are global:

    - success: COMPLETED, SUCCEEDED, PARTIAL
    - failure: FAILED
    - terminal: success + failure
    """
    # Queued kinds (style, screenshot, template)
    QUEUED = "queued"
    RUNNING = "running"

    # Simple kinds and the app pipeline
    PENDING = "pending"
    GENERATING = "generating"

    # Concept pipeline
    GENERATING_CONCEPTS = "generating_concepts"
    GENERATING_IMAGES = "generating_images"

    # App pipeline
    DOWNLOADING_IMAGES = "downloading_images"
    GENERATING_STRUCTURE = "generating_structure"
    PREVIEW_READY = "preview_ready"
    GENERATING_CONCEPT = "generating_concept"
    GENERATING_ICON = "generating_icon"
    GENERATING_SCREENS = "generating_screens"

    # Terminal
    COMPLETED = "completed"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self in SUCCESS_STATUSES

    @property
    def is_failure(self) -> bool:
        return self in FAILURE_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Check if the job is still active."""
        return not self.is_terminal


SUCCESS_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.SUCCEEDED, JobStatus.PARTIAL}
)
FAILURE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.FAILED})
TERMINAL_STATUSES: frozenset[JobStatus] = SUCCESS_STATUSES | FAILURE_STATUSES
ACTIVE_STATUSES: frozenset[JobStatus] = frozenset(JobStatus) - TERMINAL_STATUSES


class JobKind(str, Enum):
    """Closed set of generation job kinds."""
    # Queued kinds
    STYLE = "style"
    SCREENSHOT = "screenshot"
    TEMPLATE = "template"

    # Per-app asset kinds
    ICON = "icon"
    COVER_IMAGE = "cover_image"
    COVER_VIDEO = "cover_video"
    IMPROVE_APP_DESCRIPTION = "improve_app_description"

    # Pipelines
    CONCEPT_GENERATION = "concept_generation"
    APP_GENERATION = "app_generation"


@dataclass(frozen=True)
class ItemFailure:
    """One failed sub-item of a batch job."""
    item_id: str
    error_message: str

    def to_dict(self) -> dict[str, Any]:
        return {"item_id": self.item_id, "error_message": self.error_message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ItemFailure:
        return cls(item_id=str(data["item_id"]), error_message=str(data["error_message"]))


@dataclass(frozen=True)
class JobResult:
    """Tagged result of a successful job.

    ``table`` names the collection that produced ``data`` so consumers know
    how to read it (``styles``, ``concepts``, ``storage``, ...).
    """
    table: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"table": self.table, "data": dict(self.data)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobResult:
        return cls(table=str(data["table"]), data=dict(data.get("data") or {}))


@dataclass
class JobRecord:
    """Persistent record of a generation job.

    Records are treated as values: the ``with_*`` helpers return updated
    copies, and stores persist whole records.
    """
    # Scope
    owner_id: str
    kind: JobKind
    status: JobStatus

    # Identity
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    subject_id: str | None = None

    # Progress
    progress_percentage: float = 0.0
    completed_count: int = 0
    failed_count: int = 0
    total_count: int | None = None
    current_step: str | None = None

    # Input / output
    payload: dict[str, Any] = field(default_factory=dict)
    items: list[dict[str, Any]] | None = None
    result: JobResult | None = None
    partial_failures: list[ItemFailure] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None

    # Timestamps
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    completed_at: float | None = None

    # Metadata
    metadata: dict[str, Any] = field(default_factory=dict)

    # Schema version
    schema_version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def processed_count(self) -> int:
        """Items accounted for, successful or not."""
        return self.completed_count + self.failed_count

    def age(self, now: float | None = None) -> float:
        """Seconds since creation."""
        return (now if now is not None else time.time()) - self.created_at

    def with_status(self, status: JobStatus, now: float | None = None) -> JobRecord:
        """Create a new JobRecord with updated status.

        Transition rules are enforced by the manager; this only keeps the
        timestamps consistent.
        """
        now = now if now is not None else time.time()
        return replace(
            self,
            status=status,
            updated_at=now,
            completed_at=now if status.is_terminal else self.completed_at,
        )

    def with_progress(
        self,
        progress_percentage: float | None = None,
        *,
        current_step: str | None = None,
        completed_count: int | None = None,
        failed_count: int | None = None,
        total_count: int | None = None,
        now: float | None = None,
    ) -> JobRecord:
        """Create a new JobRecord with updated progress fields."""
        return replace(
            self,
            progress_percentage=(
                self.progress_percentage if progress_percentage is None else progress_percentage
            ),
            current_step=self.current_step if current_step is None else current_step,
            completed_count=self.completed_count if completed_count is None else completed_count,
            failed_count=self.failed_count if failed_count is None else failed_count,
            total_count=self.total_count if total_count is None else total_count,
            updated_at=now if now is not None else time.time(),
        )

    def with_error(self, error: str, error_code: str | None = None, now: float | None = None) -> JobRecord:
        """Create a new JobRecord with error set and any result dropped."""
        return replace(
            self,
            error=error,
            error_code=error_code,
            result=None,
            updated_at=now if now is not None else time.time(),
        )

    def with_result(self, result: JobResult, now: float | None = None) -> JobRecord:
        """Create a new JobRecord with result set and any error cleared."""
        return replace(
            self,
            result=result,
            error=None,
            error_code=None,
            updated_at=now if now is not None else time.time(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "subject_id": self.subject_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "progress_percentage": self.progress_percentage,
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "total_count": self.total_count,
            "current_step": self.current_step,
            "payload": dict(self.payload),
            "items": [dict(item) for item in self.items] if self.items is not None else None,
            "result": self.result.to_dict() if self.result else None,
            "partial_failures": [f.to_dict() for f in self.partial_failures],
            "error": self.error,
            "error_code": self.error_code,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "metadata": dict(self.metadata),
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobRecord:
        """Deserialize from dictionary."""
        items = data.get("items")
        return cls(
            job_id=data.get("job_id", str(uuid.uuid4())),
            owner_id=data["owner_id"],
            subject_id=data.get("subject_id"),
            kind=JobKind(data["kind"]),
            status=JobStatus(data["status"]),
            progress_percentage=float(data.get("progress_percentage") or 0.0),
            completed_count=int(data.get("completed_count") or 0),
            failed_count=int(data.get("failed_count") or 0),
            total_count=data.get("total_count"),
            current_step=data.get("current_step"),
            payload=dict(data.get("payload") or {}),
            items=[dict(item) for item in items] if items is not None else None,
            result=JobResult.from_dict(data["result"]) if data.get("result") else None,
            partial_failures=[
                ItemFailure.from_dict(f) for f in data.get("partial_failures") or []
            ],
            error=data.get("error"),
            error_code=data.get("error_code"),
            created_at=data.get("created_at", time.time()),
            updated_at=data.get("updated_at", time.time()),
            completed_at=data.get("completed_at"),
            metadata=dict(data.get("metadata") or {}),
            schema_version=data.get("schema_version", 1),
        )


__all__ = [
    "JobStatus",
    "JobKind",
    "ItemFailure",
    "JobResult",
    "JobRecord",
    "SUCCESS_STATUSES",
    "FAILURE_STATUSES",
    "TERMINAL_STATUSES",
    "ACTIVE_STATUSES",
]
