"""
Generation Jobs - lifecycle tracking for long-running AI generation work.

This package tracks the asynchronous jobs that produce styles, screenshots,
icons, cover images, app concepts and whole apps:
- Job records with per-kind state machines
- One active job per scope; older jobs are superseded on creation
- Atomic progress updates for batch jobs
- Owner-scoped readers for UI pollers
- Janitor sweeps for stuck and expired jobs
- In-memory, Postgres and Redis stores

Example:
    ```python
    from generation_jobs import IdentityContext, JobKind, JobService, JobStatus

    service = await JobService.create()

    job = await service.manager.create_job("profile-1", JobKind.COVER_IMAGE, subject_id="app-1")
    await service.manager.advance_job(job.job_id, status=JobStatus.GENERATING, progress_percentage=40)

    # UI poller
    seen = await service.reader.get_job(IdentityContext("profile-1"), job.job_id)
    print(seen.status, seen.progress_percentage)

    # Maintenance
    report = await service.janitor.fail_stuck_jobs()
    ```
"""

from .config import Settings, configure, get_settings, load_env
from .context import IdentityContext, IdentityProfileResolver, InMemoryProfileResolver, ProfileResolver
from .errors import (
    ConfigError,
    ErrorCode,
    ErrorContext,
    GenerationJobError,
    InvalidTransitionError,
    JobNotFoundError,
    StoreConflictError,
    StoreError,
    TerminalStateError,
    UnauthenticatedError,
    ValidationError,
)
from .events import EventBus, InMemoryEventBus, JobEvent, JobEventType
from .jobs import (
    InMemoryJobStore,
    ItemFailure,
    Janitor,
    JobFilter,
    JobKind,
    JobManager,
    JobReader,
    JobRecord,
    JobResult,
    JobStatus,
    JobStore,
    KindRegistry,
    Scope,
    SweepReport,
    SweepScheduler,
)
from .logging import StructuredLogger, configure_logging, get_logger
from .service import JobService
from .storage import PostgresJobStore, RedisJobStore, build_store

__version__ = "0.1.0"

__all__ = [
    # Records
    "JobStatus",
    "JobKind",
    "JobRecord",
    "JobResult",
    "ItemFailure",
    "Scope",
    "KindRegistry",
    # Stores
    "JobStore",
    "JobFilter",
    "InMemoryJobStore",
    "PostgresJobStore",
    "RedisJobStore",
    "build_store",
    # Lifecycle
    "JobManager",
    "JobReader",
    "Janitor",
    "SweepReport",
    "SweepScheduler",
    "JobService",
    # Identity
    "IdentityContext",
    "ProfileResolver",
    "IdentityProfileResolver",
    "InMemoryProfileResolver",
    # Events
    "JobEvent",
    "JobEventType",
    "EventBus",
    "InMemoryEventBus",
    # Errors
    "GenerationJobError",
    "ErrorCode",
    "ErrorContext",
    "JobNotFoundError",
    "UnauthenticatedError",
    "ValidationError",
    "InvalidTransitionError",
    "TerminalStateError",
    "StoreError",
    "StoreConflictError",
    "ConfigError",
    # Config & logging
    "Settings",
    "get_settings",
    "configure",
    "load_env",
    "StructuredLogger",
    "get_logger",
    "configure_logging",
]
