"""
Job lifecycle management.

This package provides:
- JobStatus, JobKind, JobRecord: the job data model
- StateMachine, KindSpec, KindRegistry: per-kind lifecycles
- JobStore, InMemoryJobStore, JobFilter: persistence
- JobManager: trusted-caller mutators
- JobReader: owner-scoped reads
- Janitor, SweepScheduler: maintenance sweeps
"""

from .kinds import (
    APP_PIPELINE,
    CONCEPT_PIPELINE,
    DEFAULT_KIND_SPECS,
    QUEUED,
    SIMPLE,
    KindRegistry,
    KindSpec,
    Scope,
    StateMachine,
)
from .manager import JobManager
from .readers import JobReader
from .store import InMemoryJobStore, JobFilter, JobStore, Mutation
from .sweeps import CLEANUP_SWEEP, STUCK_SWEEP, Janitor, SweepReport, SweepScheduler
from .types import (
    ACTIVE_STATUSES,
    FAILURE_STATUSES,
    SUCCESS_STATUSES,
    TERMINAL_STATUSES,
    ItemFailure,
    JobKind,
    JobRecord,
    JobResult,
    JobStatus,
)

__all__ = [
    # Types
    "JobStatus",
    "JobKind",
    "JobRecord",
    "JobResult",
    "ItemFailure",
    "SUCCESS_STATUSES",
    "FAILURE_STATUSES",
    "TERMINAL_STATUSES",
    "ACTIVE_STATUSES",
    # Kinds
    "Scope",
    "StateMachine",
    "SIMPLE",
    "QUEUED",
    "CONCEPT_PIPELINE",
    "APP_PIPELINE",
    "KindSpec",
    "KindRegistry",
    "DEFAULT_KIND_SPECS",
    # Store
    "JobStore",
    "InMemoryJobStore",
    "JobFilter",
    "Mutation",
    # Manager / readers
    "JobManager",
    "JobReader",
    # Sweeps
    "Janitor",
    "SweepReport",
    "SweepScheduler",
    "STUCK_SWEEP",
    "CLEANUP_SWEEP",
]
