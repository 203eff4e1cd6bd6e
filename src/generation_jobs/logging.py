"""
Structured logging for generation jobs.

Each record is one flat mapping: the message, the correlation fields of the
active job context and whatever keyword fields the call site passed. It is
rendered either as a JSON object per line or as a short text line.

Correlation fields live in a ContextVar, so every asyncio task sharing a
logger sees its own trace and job ids.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import LoggingConfig

DEFAULT_LOGGER_NAME = "generation_jobs"


@dataclass(frozen=True)
class LogContext:
    """Correlation fields stamped on every record."""

    trace_id: str | None = None
    job_id: str | None = None
    kind: str | None = None
    owner_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        out.update(self.extra)
        return out

    def with_update(self, **kwargs: Any) -> LogContext:
        """Copy with some fields replaced; ``extra`` is merged, not replaced."""
        extra = {**self.extra, **kwargs.pop("extra", {})}
        return replace(self, extra=extra, **kwargs)


_current_context: ContextVar[LogContext] = ContextVar("generation_jobs_log_context", default=LogContext())


class RecordFormatter(logging.Formatter):
    """Render records produced by StructuredLogger.

    StructuredLogger hands the record its fields through ``record.fields``;
    records from plain ``logging`` calls only have a message.
    """

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, json_output: bool = True):
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = dict(getattr(record, "fields", None) or {"message": record.getMessage()})
        now = datetime.now(timezone.utc)

        if self.json_output:
            payload = {"timestamp": now.isoformat(), "level": record.levelname, "logger": record.name, **data}
            if record.exc_info:
                payload["exception"] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        message = data.pop("message", "")
        extras = " ".join(f"{k}={v}" for k, v in data.items())
        color = self.LEVEL_COLORS.get(record.levelname, "")
        level = f"{color}{record.levelname:8}{self.RESET if color else ''}"
        return f"{now.strftime('%H:%M:%S.%f')[:-3]} {level} {message} {extras}".rstrip()


class StructuredLogger:
    """
    Logger with structured output and per-task job context.

    Example:
        ```python
        logger = StructuredLogger("generation_jobs")

        with logger.trace_context(job_id=job.job_id, kind=job.kind.value):
            logger.info("Job advanced", status=job.status.value)
        ```

    Passing ``stream`` (re)binds the underlying logger's handler to it;
    otherwise an existing handler is reused and stdout is the fallback.
    """

    def __init__(
        self,
        name: str = DEFAULT_LOGGER_NAME,
        level: str = "INFO",
        json_output: bool = True,
        stream: Any = None,
    ):
        self.name = name
        self.json_output = json_output

        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper()))

        if stream is not None or not self._logger.handlers:
            for old in list(self._logger.handlers):
                self._logger.removeHandler(old)
            self._logger.addHandler(logging.StreamHandler(stream or sys.stdout))
        for handler in self._logger.handlers:
            handler.setFormatter(RecordFormatter(json_output))

    @property
    def context(self) -> LogContext:
        return _current_context.get()

    def set_context(self, **kwargs: Any) -> None:
        """Update the context of the current task."""
        _current_context.set(self.context.with_update(**kwargs))

    @contextmanager
    def trace_context(self, trace_id: str | None = None, **kwargs: Any) -> Iterator[str]:
        """Scope correlation fields to a block and yield its trace id.

        Unset ``trace_id`` keeps the enclosing one, or generates a fresh id.
        """
        trace_id = trace_id or self.context.trace_id or generate_trace_id()
        token = _current_context.set(self.context.with_update(trace_id=trace_id, **kwargs))
        try:
            yield trace_id
        finally:
            _current_context.reset(token)

    def _emit(self, level: int, message: str, event_type: str | None = None, **data: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        record_fields: dict[str, Any] = {"message": message, **self.context.to_dict()}
        if event_type:
            record_fields["event_type"] = event_type
        record_fields.update(data)
        self._logger.log(level, message, extra={"fields": record_fields})

    def debug(self, message: str, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._emit(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._emit(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._emit(logging.ERROR, message, **kwargs)

    def log_transition(self, job_id: str, previous: str | None, current: str, **kwargs: Any) -> None:
        self._emit(
            logging.INFO,
            f"Job {job_id}: {previous or '-'} -> {current}",
            "transition",
            job_id=job_id,
            previous_status=previous,
            status=current,
            **kwargs,
        )

    def log_sweep(self, sweep: str, scanned: int, affected: int, errors: int, duration_ms: float) -> None:
        """One line per sweep pass; passes with per-job errors log at WARNING."""
        self._emit(
            logging.WARNING if errors else logging.INFO,
            f"Sweep '{sweep}' affected {affected}/{scanned} jobs",
            "sweep",
            sweep=sweep,
            scanned=scanned,
            affected=affected,
            errors=errors,
            duration_ms=round(duration_ms, 2),
        )

    def log_error(self, error: Exception, message: str | None = None, **kwargs: Any) -> None:
        details: dict[str, Any] = {"error_type": type(error).__name__, "error_message": str(error)}
        code = getattr(error, "code", None)
        if code is not None:
            details["error_code"] = str(getattr(code, "value", code))
        context = getattr(error, "context", None)
        if context is not None and hasattr(context, "to_dict"):
            details["error_context"] = context.to_dict()
        self._emit(logging.ERROR, message or f"Error: {error}", "error", **details, **kwargs)


def generate_trace_id() -> str:
    return f"trace_{uuid.uuid4().hex[:16]}"


def redact_dsn(dsn: str | None) -> str:
    """Mask the password of a connection URL."""
    if not dsn:
        return "<not set>"
    if "@" not in dsn or "://" not in dsn:
        return dsn
    scheme, rest = dsn.split("://", 1)
    creds, host = rest.rsplit("@", 1)
    return f"{scheme}://{creds.split(':', 1)[0]}:***@{host}"


@dataclass
class Timer:
    """Wall-clock timer reporting milliseconds."""

    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None

    def stop(self) -> float:
        self.end_time = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> float:
        return ((self.end_time or time.perf_counter()) - self.start_time) * 1000


@contextmanager
def timed() -> Iterator[Timer]:
    timer = Timer()
    try:
        yield timer
    finally:
        timer.stop()


_default_logger: StructuredLogger | None = None


def get_logger(name: str | None = None) -> StructuredLogger:
    """Return the default logger, or a separate one when ``name`` differs."""
    global _default_logger
    if _default_logger is None:
        _default_logger = StructuredLogger(name or DEFAULT_LOGGER_NAME)
    elif name and name != _default_logger.name:
        return StructuredLogger(name)
    return _default_logger


def configure_logging(config: LoggingConfig | None = None, *, stream: Any = None) -> StructuredLogger:
    """Replace the default logger with one built from ``config``."""
    global _default_logger
    if config is None:
        _default_logger = StructuredLogger(stream=stream)
    else:
        _default_logger = StructuredLogger(
            config.logger_name,
            level=config.level,
            json_output=config.format == "json",
            stream=stream,
        )
    return _default_logger


__all__ = [
    "LogContext",
    "RecordFormatter",
    "StructuredLogger",
    "Timer",
    "timed",
    "generate_trace_id",
    "redact_dsn",
    "get_logger",
    "configure_logging",
]
