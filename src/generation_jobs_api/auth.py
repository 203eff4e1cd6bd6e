from __future__ import annotations

import hmac
from dataclasses import dataclass

from fastapi import Request

from generation_jobs import IdentityContext
from generation_jobs.logging import generate_trace_id

TRACE_HEADER = "x-trace-id"
INTERNAL_TOKEN_HEADER = "x-internal-token"


@dataclass(frozen=True)
class AuthResult:
    ok: bool
    subject: str | None = None
    reason: str | None = None
    status_code: int = 401

    def identity(self, trace_id: str | None = None) -> IdentityContext:
        """Identity handed to job readers; anonymous unless authenticated."""
        return IdentityContext(
            auth_subject=self.subject if self.ok else None,
            trace_id=trace_id or generate_trace_id(),
        )


class AuthAdapter:
    async def authenticate(self, *, request: Request) -> AuthResult:
        raise NotImplementedError


class HeaderAuthAdapter(AuthAdapter):
    """Trusts the subject forwarded by the identity gateway in a header."""

    def __init__(self, *, header_name: str = "x-auth-subject") -> None:
        self._header_name = header_name.lower()

    async def authenticate(self, *, request: Request) -> AuthResult:
        subject = (request.headers.get(self._header_name) or "").strip()
        if not subject:
            return AuthResult(ok=False, reason="missing_subject", status_code=401)
        return AuthResult(ok=True, subject=subject, status_code=200)


def trace_id_for(request: Request) -> str:
    return (request.headers.get(TRACE_HEADER) or "").strip() or generate_trace_id()


def internal_token_ok(request: Request, expected: str | None) -> bool:
    """Constant-time check of the internal shared secret."""
    if not expected:
        return False
    supplied = request.headers.get(INTERNAL_TOKEN_HEADER) or ""
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))
