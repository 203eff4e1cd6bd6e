from __future__ import annotations

from dataclasses import dataclass, field
from os import getenv

ENV_PREFIX = "GENJOBS_API_"


def _env_bool(name: str) -> bool | None:
    raw = getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return None


def _env_flag(suffix: str, default: bool) -> bool:
    value = _env_bool(f"{ENV_PREFIX}{suffix}")
    return default if value is None else value


def _env_str(suffix: str, default: str | None = None) -> str | None:
    raw = getenv(f"{ENV_PREFIX}{suffix}")
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class ApiSettings:
    debug: bool = field(default_factory=lambda: _env_flag("DEBUG", False))

    # Header set by the identity gateway after it has verified the caller.
    auth_subject_header: str = field(
        default_factory=lambda: (_env_str("AUTH_SUBJECT_HEADER", "x-auth-subject") or "").lower()
    )

    # Shared secret for the /internal endpoints; unset disables them.
    internal_token: str | None = field(default_factory=lambda: _env_str("INTERNAL_TOKEN"))

    # Run the sweep loops inside the API process.
    run_scheduler: bool = field(default_factory=lambda: _env_flag("RUN_SCHEDULER", False))

    # Idle seconds before an /events stream sends a keepalive comment.
    events_keepalive_seconds: float = field(
        default_factory=lambda: float(_env_str("EVENTS_KEEPALIVE_SECONDS", "15") or "15")
    )

    host: str = field(default_factory=lambda: _env_str("HOST", "0.0.0.0") or "0.0.0.0")
    port: int = field(default_factory=lambda: int(_env_str("PORT", "8080") or "8080"))


def get_settings() -> ApiSettings:
    return ApiSettings()
