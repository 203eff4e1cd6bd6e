from __future__ import annotations

import io
import json

import pytest

pydantic = pytest.importorskip("pydantic")
fastapi = pytest.importorskip("fastapi")
HTTPException = fastapi.HTTPException
Request = pytest.importorskip("starlette.requests").Request
StreamingResponse = pytest.importorskip("starlette.responses").StreamingResponse
app_module = pytest.importorskip("generation_jobs_api.app")

from generation_jobs import InMemoryEventBus, JobService, Settings
from generation_jobs.jobs import InMemoryJobStore, JobKind, JobStatus
from generation_jobs_api.auth import HeaderAuthAdapter
from generation_jobs_api.settings import ApiSettings
from tests._jobs_testkit import START, make_job


def _request(subject: str | None = "profile-1", *, token: str | None = None) -> Request:
    headers = [(b"x-trace-id", b"trace_api")]
    if subject is not None:
        headers.append((b"x-auth-subject", subject.encode()))
    if token is not None:
        headers.append((b"x-internal-token", token.encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


async def _install(monkeypatch, **api_overrides) -> JobService:
    service = await JobService.create(
        Settings(),
        store=InMemoryJobStore(),
        event_bus=InMemoryEventBus(),
        log_stream=io.StringIO(),
    )
    api_settings = ApiSettings(**{"internal_token": "s3cret", "events_keepalive_seconds": 5.0, **api_overrides})
    monkeypatch.setattr(app_module.app.state, "jobs", service, raising=False)
    monkeypatch.setattr(app_module.app.state, "api_settings", api_settings, raising=False)
    monkeypatch.setattr(app_module.app.state, "auth_adapter", HeaderAuthAdapter(), raising=False)
    return service


def _sse_payload(chunk: str) -> dict:
    return json.loads(chunk.split("data: ", 1)[1])


@pytest.mark.asyncio
async def test_get_job_returns_owned_job(monkeypatch) -> None:
    service = await _install(monkeypatch)
    job = await service.store.create(make_job())

    body = await app_module.get_job(job_id=job.job_id, request=_request())

    assert body["ok"] is True
    assert body["job"]["job_id"] == job.job_id
    assert body["job"]["status"] == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize("subject", ["profile-2", None])
async def test_get_job_hides_other_owners_and_anonymous(monkeypatch, subject) -> None:
    service = await _install(monkeypatch)
    job = await service.store.create(make_job())

    body = await app_module.get_job(job_id=job.job_id, request=_request(subject))

    assert body == {"ok": True, "job": None}


@pytest.mark.asyncio
async def test_list_active_jobs_filters_kind_and_status(monkeypatch) -> None:
    service = await _install(monkeypatch)
    icon = await service.store.create(make_job(kind=JobKind.ICON, status=JobStatus.GENERATING))
    await service.store.create(make_job(status=JobStatus.COMPLETED))
    await service.store.create(make_job(owner_id="profile-2"))

    everything = await app_module.list_active_jobs(request=_request())
    icons = await app_module.list_active_jobs(request=_request(), kind="icon")

    assert [j["job_id"] for j in everything["jobs"]] == [icon.job_id]
    assert [j["job_id"] for j in icons["jobs"]] == [icon.job_id]


@pytest.mark.asyncio
async def test_list_active_jobs_rejects_unknown_kind(monkeypatch) -> None:
    await _install(monkeypatch)

    with pytest.raises(HTTPException) as exc_info:
        await app_module.list_active_jobs(request=_request(), kind="hologram")
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_subject_endpoints(monkeypatch) -> None:
    service = await _install(monkeypatch)
    await service.store.create(make_job(status=JobStatus.COMPLETED, created_at=START))
    active = await service.store.create(make_job(status=JobStatus.GENERATING, created_at=START + 60))

    active_body = await app_module.get_active_job_for_subject(
        subject_id="app-1", kind="cover_image", request=_request()
    )
    latest_body = await app_module.get_latest_job_for_subject(subject_id="app-1", request=_request())
    other_subject = await app_module.get_latest_job_for_subject(subject_id="app-9", request=_request())

    assert active_body["job"]["job_id"] == active.job_id
    assert latest_body["job"]["job_id"] == active.job_id
    assert other_subject["job"] is None

    with pytest.raises(HTTPException) as exc_info:
        await app_module.get_active_job_for_subject(subject_id="app-1", kind="hologram", request=_request())
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_job_events_404_when_not_visible(monkeypatch) -> None:
    service = await _install(monkeypatch)
    job = await service.store.create(make_job(owner_id="profile-2"))

    with pytest.raises(HTTPException) as exc_info:
        await app_module.job_events(job_id=job.job_id, request=_request())
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_job_events_streams_until_terminal(monkeypatch) -> None:
    service = await _install(monkeypatch)
    job = await service.store.create(make_job(status=JobStatus.GENERATING))

    response = await app_module.job_events(job_id=job.job_id, request=_request())
    assert isinstance(response, StreamingResponse)
    stream = response.body_iterator

    first = await stream.__anext__()
    assert first.startswith("event: job_progress\n")
    assert _sse_payload(first)["trace_id"] == "trace_api"

    await service.manager.fail_job(job.job_id, "renderer crashed")
    second = await stream.__anext__()
    assert second.startswith("event: job_failed\n")
    assert _sse_payload(second)["data"]["error"] == "renderer crashed"

    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert service.event_bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_job_events_keepalive(monkeypatch) -> None:
    service = await _install(monkeypatch, events_keepalive_seconds=0.01)
    job = await service.store.create(make_job(status=JobStatus.GENERATING))

    response = await app_module.job_events(job_id=job.job_id, request=_request())
    stream = response.body_iterator
    await stream.__anext__()

    assert await stream.__anext__() == ": keepalive\n\n"
    await stream.aclose()
    assert service.event_bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_job_events_terminal_job_sends_snapshot(monkeypatch) -> None:
    service = await _install(monkeypatch)
    job = await service.store.create(make_job(status=JobStatus.COMPLETED))

    response = await app_module.job_events(job_id=job.job_id, request=_request())
    chunks = [chunk async for chunk in response.body_iterator]

    assert len(chunks) == 1
    assert chunks[0].startswith("event: job_status_changed\n")
    assert _sse_payload(chunks[0])["data"]["status"] == "completed"


@pytest.mark.asyncio
async def test_internal_sweeps_require_token(monkeypatch) -> None:
    await _install(monkeypatch)

    for endpoint in (app_module.sweep_stuck, app_module.sweep_cleanup):
        with pytest.raises(HTTPException) as exc_info:
            await endpoint(request=_request(token="wrong"))
        assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_internal_sweeps_disabled_without_configured_token(monkeypatch) -> None:
    await _install(monkeypatch, internal_token=None)

    with pytest.raises(HTTPException) as exc_info:
        await app_module.sweep_stuck(request=_request(token=""))
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_internal_sweeps_run_with_token(monkeypatch) -> None:
    service = await _install(monkeypatch)
    stuck = await service.store.create(make_job(status=JobStatus.GENERATING, created_at=0.0))

    stuck_body = await app_module.sweep_stuck(
        request=_request(token="s3cret"),
        req=app_module.SweepRequest(threshold_seconds=60),
    )
    cleanup_body = await app_module.sweep_cleanup(request=_request(token="s3cret"))

    assert stuck_body["report"]["job_ids"] == [stuck.job_id]
    assert cleanup_body["report"]["job_ids"] == [stuck.job_id]
    assert await service.store.get(stuck.job_id) is None


def test_sweep_request_rejects_non_positive() -> None:
    with pytest.raises(pydantic.ValidationError):
        app_module.SweepRequest(threshold_seconds=0)


@pytest.mark.asyncio
async def test_healthz() -> None:
    assert await app_module.healthz() == {"ok": "true"}
