"""
Error taxonomy for generation jobs.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Structured context for debugging
- HTTP status hints for the read API
- The error codes recorded on job records that are never raised
  (supersession, sweeper timeouts)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the job lifecycle."""

    # Lookup / identity errors (1xxx)
    JOB_NOT_FOUND = "ERR_1000"
    UNAUTHENTICATED = "ERR_1001"

    # Validation errors (2xxx)
    VALIDATION_ERROR = "ERR_2000"
    INVALID_PAYLOAD = "ERR_2001"
    UNKNOWN_KIND = "ERR_2002"
    INVALID_TRANSITION = "ERR_2003"
    TERMINAL_STATE = "ERR_2004"
    INVALID_ITEM = "ERR_2005"

    # Recorded outcomes (3xxx) - stored on job records, never raised
    SUPERSEDED = "SUPERSEDED"
    TIMED_OUT = "TIMED_OUT"
    WORKFLOW_FAILED = "WORKFLOW_FAILED"

    # Storage errors (4xxx)
    STORE_ERROR = "ERR_4000"
    STORE_CONFLICT = "ERR_4001"
    DUPLICATE_JOB = "ERR_4002"

    # Configuration errors (6xxx)
    CONFIG_ERROR = "ERR_6000"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "ERR_9000"


SUPERSEDED_MESSAGE = "Cancelled due to new job creation"


def timed_out_message(threshold_seconds: float) -> str:
    """Error text recorded on jobs reaped by the stuck-job sweep."""
    minutes = threshold_seconds / 60
    if minutes == int(minutes):
        return f"Job timed out after {int(minutes)} minutes"
    return f"Job timed out after {threshold_seconds:g} seconds"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    job_id: str | None = None
    kind: str | None = None
    owner_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind,
            "owner_id": self.owner_id,
            "operation": self.operation,
            **self.extra,
        }


class GenerationJobError(Exception):
    """
    Base exception for all generation job errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        context: Structured debugging context
        cause: Original exception that caused this error
        http_status: Suggested status code when surfaced over HTTP
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    http_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.job_id:
            parts.append(f"(job_id={self.context.job_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Lookup / Identity Errors
# =============================================================================


class JobNotFoundError(GenerationJobError):
    """Job does not exist (or is not visible to the caller)."""

    code = ErrorCode.JOB_NOT_FOUND
    http_status = 404

    def __init__(
        self,
        message: str = "Job not found",
        *,
        job_id: str | None = None,
        **kwargs,
    ):
        if job_id:
            message = f"Job {job_id} not found"
            kwargs.setdefault("context", ErrorContext(job_id=job_id))
        super().__init__(message, **kwargs)


class UnauthenticatedError(GenerationJobError):
    """No valid calling-subject identity."""

    code = ErrorCode.UNAUTHENTICATED
    http_status = 401

    def __init__(self, message: str = "Not authenticated", **kwargs):
        super().__init__(message, **kwargs)


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(GenerationJobError):
    """Input does not match the kind's expected shape."""

    code = ErrorCode.VALIDATION_ERROR
    http_status = 400


class InvalidPayloadError(ValidationError):
    """Creation payload failed its kind's JSON schema."""

    code = ErrorCode.INVALID_PAYLOAD

    def __init__(
        self,
        message: str,
        *,
        path: list[Any] | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.path = list(path or [])


class UnknownKindError(ValidationError):
    """Job kind is not registered."""

    code = ErrorCode.UNKNOWN_KIND

    def __init__(self, kind: Any, **kwargs):
        super().__init__(f"Unknown job kind: {kind!r}", **kwargs)
        self.kind = kind


class InvalidTransitionError(ValidationError):
    """Requested status is not reachable from the current status."""

    code = ErrorCode.INVALID_TRANSITION
    http_status = 409

    def __init__(
        self,
        current: str,
        requested: str,
        **kwargs,
    ):
        super().__init__(f"Invalid transition: {current} -> {requested}", **kwargs)
        self.current = current
        self.requested = requested


class TerminalStateError(ValidationError):
    """Job is already terminal and can no longer be mutated."""

    code = ErrorCode.TERMINAL_STATE
    http_status = 409

    def __init__(
        self,
        job_id: str,
        status: str,
        **kwargs,
    ):
        kwargs.setdefault("context", ErrorContext(job_id=job_id))
        super().__init__(f"Job {job_id} is terminal ({status})", **kwargs)
        self.status = status


class InvalidItemError(ValidationError):
    """Item index or item payload is not usable for this job."""

    code = ErrorCode.INVALID_ITEM


# =============================================================================
# Storage Errors
# =============================================================================


class StoreError(GenerationJobError):
    """Base class for persistence failures."""

    code = ErrorCode.STORE_ERROR
    http_status = 503


class StoreConflictError(StoreError):
    """An optimistic transaction kept losing to concurrent writers."""

    code = ErrorCode.STORE_CONFLICT


class DuplicateJobError(StoreError):
    """A record with the same job_id already exists."""

    code = ErrorCode.DUPLICATE_JOB
    http_status = 409

    def __init__(self, job_id: str, **kwargs):
        kwargs.setdefault("context", ErrorContext(job_id=job_id))
        super().__init__(f"Job {job_id} already exists", **kwargs)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(GenerationJobError):
    """Invalid or incomplete configuration."""

    code = ErrorCode.CONFIG_ERROR


__all__ = [
    "ErrorCode",
    "ErrorContext",
    "SUPERSEDED_MESSAGE",
    "timed_out_message",
    "GenerationJobError",
    "JobNotFoundError",
    "UnauthenticatedError",
    "ValidationError",
    "InvalidPayloadError",
    "UnknownKindError",
    "InvalidTransitionError",
    "TerminalStateError",
    "InvalidItemError",
    "StoreError",
    "StoreConflictError",
    "DuplicateJobError",
    "ConfigError",
]
