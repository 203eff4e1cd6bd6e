"""
Tests for the structured logging module.
"""

import io
import json
import uuid

from generation_jobs.config import LoggingConfig
from generation_jobs.errors import JobNotFoundError
from generation_jobs.logging import (
    LogContext,
    StructuredLogger,
    Timer,
    configure_logging,
    generate_trace_id,
    get_logger,
    redact_dsn,
    timed,
)


def _logger(json_output: bool = True, level: str = "DEBUG") -> tuple[StructuredLogger, io.StringIO]:
    stream = io.StringIO()
    name = f"generation_jobs.test.{uuid.uuid4().hex[:8]}"
    return StructuredLogger(name, level=level, json_output=json_output, stream=stream), stream


def _records(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestLogContext:
    """Test LogContext dataclass."""

    def test_to_dict_drops_none(self):
        ctx = LogContext(trace_id="t1", job_id="j1", extra={"custom": "value"})
        d = ctx.to_dict()

        assert d == {"trace_id": "t1", "job_id": "j1", "custom": "value"}

    def test_with_update(self):
        ctx = LogContext(trace_id="t1", kind="icon")
        updated = ctx.with_update(job_id="j1", extra={"new": "value"})

        assert updated.trace_id == "t1"
        assert updated.kind == "icon"
        assert updated.job_id == "j1"
        assert updated.extra == {"new": "value"}
        assert ctx.job_id is None


class TestStructuredLogger:
    """Test StructuredLogger output."""

    def test_json_output_includes_fields(self):
        logger, stream = _logger()
        logger.info("Job created", status="pending")

        record = _records(stream)[0]
        assert record["message"] == "Job created"
        assert record["status"] == "pending"
        assert record["level"] == "INFO"

    def test_trace_context_scoped(self):
        logger, stream = _logger()

        with logger.trace_context(trace_id="trace_abc", job_id="j1"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _records(stream)
        assert inside["trace_id"] == "trace_abc"
        assert inside["job_id"] == "j1"
        assert "job_id" not in outside

    def test_trace_context_generates_id(self):
        logger, _ = _logger()
        with logger.trace_context() as trace_id:
            assert trace_id.startswith("trace_")
            assert logger.context.trace_id == trace_id

    def test_log_transition(self):
        logger, stream = _logger()
        logger.log_transition("j1", "pending", "generating", progress_percentage=10)

        record = _records(stream)[0]
        assert record["event_type"] == "transition"
        assert record["previous_status"] == "pending"
        assert record["status"] == "generating"
        assert record["message"] == "Job j1: pending -> generating"

    def test_log_sweep_warns_on_errors(self):
        logger, stream = _logger()
        logger.log_sweep("stuck", scanned=5, affected=2, errors=1, duration_ms=3.14159)

        record = _records(stream)[0]
        assert record["level"] == "WARNING"
        assert record["duration_ms"] == 3.14

    def test_log_error_includes_code_and_context(self):
        logger, stream = _logger()
        logger.log_error(JobNotFoundError(job_id="j1"), "lookup failed")

        record = _records(stream)[0]
        assert record["error_type"] == "JobNotFoundError"
        assert record["error_code"] == "ERR_1000"
        assert record["error_context"]["job_id"] == "j1"

    def test_level_filtering(self):
        logger, stream = _logger(level="WARNING")
        logger.info("hidden")
        logger.warning("shown")

        assert [r["message"] for r in _records(stream)] == ["shown"]

    def test_text_output(self):
        logger, stream = _logger(json_output=False)
        logger.info("Job created", status="pending")

        line = stream.getvalue()
        assert "INFO" in line
        assert "Job created status=pending" in line


class TestUtilities:
    """Test helper functions."""

    def test_generate_trace_id(self):
        a, b = generate_trace_id(), generate_trace_id()
        assert a.startswith("trace_")
        assert a != b

    def test_redact_dsn(self):
        assert redact_dsn("postgresql://jobs:s3cret@db:5432/app") == "postgresql://jobs:***@db:5432/app"
        assert redact_dsn("redis://localhost:6379/0") == "redis://localhost:6379/0"
        assert redact_dsn(None) == "<not set>"

    def test_timer(self):
        timer = Timer()
        elapsed = timer.stop()
        assert elapsed >= 0
        assert timer.elapsed_ms == elapsed

    def test_timed(self):
        with timed() as timer:
            pass
        assert timer.end_time is not None


class TestGlobalLogger:
    """Test default logger helpers."""

    def test_configure_logging_replaces_default(self):
        config = LoggingConfig(level="ERROR", format="text", logger_name="generation_jobs.test.configured")
        logger = configure_logging(config, stream=io.StringIO())

        assert get_logger() is logger
        assert logger.name == "generation_jobs.test.configured"
        assert logger.json_output is False

    def test_get_logger_other_name(self):
        default = get_logger()
        other = get_logger("generation_jobs.test.other")
        assert other is not default
        assert other.name == "generation_jobs.test.other"
