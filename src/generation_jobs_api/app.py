from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from generation_jobs import (
    GenerationJobError,
    InMemoryEventBus,
    JobEvent,
    JobEventType,
    JobRecord,
    JobService,
    get_settings as get_job_settings,
    load_env,
)
from generation_jobs.errors import UnknownKindError

from .auth import AuthAdapter, HeaderAuthAdapter, internal_token_ok, trace_id_for
from .settings import ApiSettings, get_settings

load_env()

app = FastAPI(title="Generation Jobs API", version="0.1.0")

_TERMINAL_EVENTS = {
    JobEventType.JOB_COMPLETED,
    JobEventType.JOB_PARTIAL,
    JobEventType.JOB_FAILED,
    JobEventType.JOB_TIMED_OUT,
    JobEventType.JOB_SUPERSEDED,
    JobEventType.JOB_DELETED,
}


class SweepRequest(BaseModel):
    threshold_seconds: float | None = Field(default=None, gt=0)
    retention_seconds: float | None = Field(default=None, gt=0)


def _job_view(job: JobRecord | None) -> dict[str, Any] | None:
    return job.to_dict() if job is not None else None


async def _identity(request: Request):
    auth_adapter: AuthAdapter = app.state.auth_adapter
    auth = await auth_adapter.authenticate(request=request)
    return auth.identity(trace_id_for(request))


def _require_internal(request: Request) -> None:
    api_settings: ApiSettings = app.state.api_settings
    if not internal_token_ok(request, api_settings.internal_token):
        raise HTTPException(status_code=401, detail="unauthorized")


@app.exception_handler(GenerationJobError)
async def _job_error_handler(request: Request, exc: GenerationJobError) -> JSONResponse:
    _ = request
    return JSONResponse(status_code=exc.http_status, content={"ok": False, "error": exc.to_dict()})


@app.on_event("startup")
async def _startup() -> None:
    api_settings = get_settings()
    service = await JobService.create(get_job_settings(), event_bus=InMemoryEventBus())

    app.state.api_settings = api_settings
    app.state.jobs = service
    app.state.auth_adapter = HeaderAuthAdapter(header_name=api_settings.auth_subject_header)
    app.state.scheduler = None
    if api_settings.run_scheduler:
        scheduler = service.scheduler()
        scheduler.start()
        app.state.scheduler = scheduler


@app.on_event("shutdown")
async def _shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()
    service: JobService | None = getattr(app.state, "jobs", None)
    if service is not None:
        await service.close()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"ok": "true"}


@app.get("/v1/jobs/active")
async def list_active_jobs(request: Request, kind: str | None = None) -> dict[str, Any]:
    service: JobService = app.state.jobs
    identity = await _identity(request)
    try:
        jobs = await service.reader.get_active_jobs(identity, kind=kind)
    except UnknownKindError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"ok": True, "jobs": [job.to_dict() for job in jobs]}


@app.get("/v1/jobs/{job_id}")
async def get_job(job_id: str, request: Request) -> dict[str, Any]:
    service: JobService = app.state.jobs
    identity = await _identity(request)
    job = await service.reader.get_job(identity, job_id)
    return {"ok": True, "job": _job_view(job)}


@app.get("/v1/jobs/{job_id}/events")
async def job_events(job_id: str, request: Request) -> StreamingResponse:
    service: JobService = app.state.jobs
    api_settings: ApiSettings = app.state.api_settings
    identity = await _identity(request)
    job = await service.reader.get_job(identity, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="job not found")

    bus = service.event_bus
    if job.is_terminal or not isinstance(bus, InMemoryEventBus):
        snapshot = JobEvent.for_job(job, JobEventType.JOB_STATUS_CHANGED, trace_id=identity.trace_id)

        async def once() -> AsyncIterator[str]:
            yield snapshot.to_sse()

        return StreamingResponse(once(), media_type="text/event-stream")

    subscription = bus.subscribe(job_id=job_id)

    async def gen() -> AsyncIterator[str]:
        try:
            yield JobEvent.for_job(job, JobEventType.JOB_PROGRESS, trace_id=identity.trace_id).to_sse()
            while True:
                event = await bus.wait_for_event(subscription, timeout=api_settings.events_keepalive_seconds)
                if event is None:
                    # Comment line keeps idle proxies from closing the stream.
                    yield ": keepalive\n\n"
                    await asyncio.sleep(0)
                    continue
                yield event.to_sse()
                if event.type in _TERMINAL_EVENTS:
                    return
        finally:
            bus.unsubscribe(subscription)

    return StreamingResponse(gen(), media_type="text/event-stream")


@app.get("/v1/subjects/{subject_id}/jobs/active")
async def get_active_job_for_subject(subject_id: str, kind: str, request: Request) -> dict[str, Any]:
    service: JobService = app.state.jobs
    identity = await _identity(request)
    try:
        job = await service.reader.get_active_job_for_subject(identity, subject_id, kind)
    except UnknownKindError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"ok": True, "job": _job_view(job)}


@app.get("/v1/subjects/{subject_id}/jobs/latest")
async def get_latest_job_for_subject(
    subject_id: str,
    request: Request,
    kind: str | None = None,
) -> dict[str, Any]:
    service: JobService = app.state.jobs
    identity = await _identity(request)
    try:
        job = await service.reader.get_latest_job_for_subject(identity, subject_id, kind)
    except UnknownKindError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"ok": True, "job": _job_view(job)}


@app.post("/internal/sweeps/stuck")
async def sweep_stuck(request: Request, req: SweepRequest | None = None) -> dict[str, Any]:
    _require_internal(request)
    service: JobService = app.state.jobs
    report = await service.janitor.fail_stuck_jobs(
        threshold_seconds=req.threshold_seconds if req else None,
    )
    return {"ok": True, "report": report.to_dict()}


@app.post("/internal/sweeps/cleanup")
async def sweep_cleanup(request: Request, req: SweepRequest | None = None) -> dict[str, Any]:
    _require_internal(request)
    service: JobService = app.state.jobs
    report = await service.janitor.cleanup_completed_jobs(
        retention_seconds=req.retention_seconds if req else None,
    )
    return {"ok": True, "report": report.to_dict()}


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(app, host=_settings.host, port=_settings.port)
