"""
Job event types.

Lifecycle events are emitted by the job manager and the janitor whenever a
record is created, advanced, retired or deleted. They are designed to be
serializable to JSON and streamable via SSE to UI pollers.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..jobs.types import JobRecord


class JobEventType(str, Enum):
    """Event type categories for job lifecycle events."""

    JOB_CREATED = "job.created"
    JOB_SUPERSEDED = "job.superseded"
    JOB_PROGRESS = "job.progress"
    JOB_STATUS_CHANGED = "job.status_changed"
    JOB_COMPLETED = "job.completed"
    JOB_PARTIAL = "job.partial"
    JOB_FAILED = "job.failed"
    JOB_TIMED_OUT = "job.timed_out"
    JOB_DELETED = "job.deleted"


@dataclass
class JobEvent:
    """One lifecycle event for one job."""

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: JobEventType = JobEventType.JOB_PROGRESS
    timestamp: float = field(default_factory=time.time)

    # Correlation
    job_id: str | None = None
    kind: str | None = None
    owner_id: str | None = None
    subject_id: str | None = None
    trace_id: str | None = None

    data: dict[str, Any] = field(default_factory=dict)

    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "job_id": self.job_id,
            "kind": self.kind,
            "owner_id": self.owner_id,
            "subject_id": self.subject_id,
            "trace_id": self.trace_id,
            "data": self.data,
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobEvent:
        return cls(
            event_id=data.get("event_id", str(uuid.uuid4())),
            type=JobEventType(data["type"]),
            timestamp=data.get("timestamp", time.time()),
            job_id=data.get("job_id"),
            kind=data.get("kind"),
            owner_id=data.get("owner_id"),
            subject_id=data.get("subject_id"),
            trace_id=data.get("trace_id"),
            data=dict(data.get("data", {})),
            schema_version=data.get("schema_version", 1),
        )

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        event_type = self.type.value.replace(".", "_")
        return f"event: {event_type}\ndata: {json.dumps(self.to_dict(), default=str)}\n\n"

    @classmethod
    def for_job(
        cls,
        job: JobRecord,
        type: JobEventType,
        data: dict[str, Any] | None = None,
        trace_id: str | None = None,
    ) -> JobEvent:
        """Create an event correlated with a job record."""
        payload = {"status": job.status.value, "progress_percentage": job.progress_percentage}
        payload.update(data or {})
        return cls(
            type=type,
            job_id=job.job_id,
            kind=job.kind.value,
            owner_id=job.owner_id,
            subject_id=job.subject_id,
            trace_id=trace_id,
            data=payload,
        )


__all__ = ["JobEventType", "JobEvent"]
