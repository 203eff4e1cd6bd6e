from __future__ import annotations

import pytest

pytest.importorskip("fastapi")
Request = pytest.importorskip("starlette.requests").Request

from generation_jobs_api.auth import AuthResult, HeaderAuthAdapter, internal_token_ok, trace_id_for
from generation_jobs_api.settings import ApiSettings


def _request(headers: list[tuple[bytes, bytes]]) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


@pytest.mark.asyncio
async def test_header_adapter_reads_subject() -> None:
    adapter = HeaderAuthAdapter(header_name="X-Gateway-Subject")

    auth = await adapter.authenticate(request=_request([(b"x-gateway-subject", b" user-7 ")]))

    assert auth.ok is True
    assert auth.subject == "user-7"
    assert auth.identity("trace_1").auth_subject == "user-7"


@pytest.mark.asyncio
async def test_header_adapter_missing_subject_is_anonymous() -> None:
    auth = await HeaderAuthAdapter().authenticate(request=_request([]))

    assert auth.ok is False
    assert auth.reason == "missing_subject"
    identity = auth.identity()
    assert identity.auth_subject is None
    assert identity.trace_id.startswith("trace_")


def test_failed_auth_never_leaks_subject() -> None:
    auth = AuthResult(ok=False, subject="user-7")
    assert auth.identity("t").auth_subject is None


def test_trace_id_header() -> None:
    assert trace_id_for(_request([(b"x-trace-id", b"trace_fixed")])) == "trace_fixed"
    assert trace_id_for(_request([])).startswith("trace_")


def test_internal_token_check() -> None:
    request = _request([(b"x-internal-token", b"s3cret")])

    assert internal_token_ok(request, "s3cret") is True
    assert internal_token_ok(request, "other") is False
    assert internal_token_ok(request, None) is False
    assert internal_token_ok(_request([]), "s3cret") is False


def test_api_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("GENJOBS_API_INTERNAL_TOKEN", "s3cret")
    monkeypatch.setenv("GENJOBS_API_RUN_SCHEDULER", "yes")
    monkeypatch.setenv("GENJOBS_API_AUTH_SUBJECT_HEADER", "X-User")
    monkeypatch.setenv("GENJOBS_API_EVENTS_KEEPALIVE_SECONDS", "2.5")
    monkeypatch.setenv("GENJOBS_API_PORT", "9000")

    settings = ApiSettings()

    assert settings.internal_token == "s3cret"
    assert settings.run_scheduler is True
    assert settings.auth_subject_header == "x-user"
    assert settings.events_keepalive_seconds == 2.5
    assert settings.port == 9000


def test_api_settings_defaults(monkeypatch) -> None:
    for suffix in ("INTERNAL_TOKEN", "RUN_SCHEDULER", "DEBUG", "HOST", "PORT"):
        monkeypatch.delenv(f"GENJOBS_API_{suffix}", raising=False)
    monkeypatch.setenv("GENJOBS_API_DEBUG", "maybe")

    settings = ApiSettings()

    assert settings.internal_token is None
    assert settings.run_scheduler is False
    assert settings.debug is False
    assert settings.host == "0.0.0.0"
    assert settings.port == 8080
