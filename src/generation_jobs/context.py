"""
Caller identity for job readers.

Readers never consult ambient state: every call carries an IdentityContext
describing who is asking, and a ProfileResolver maps the authenticated
subject onto the owner id stored on job records.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class IdentityContext:
    """Who is calling.

    Attributes:
        auth_subject: Subject id asserted by the identity provider, or None
            for anonymous callers
        trace_id: Correlation id for logs
    """
    auth_subject: str | None = None
    trace_id: str = field(default_factory=lambda: f"trace_{uuid.uuid4().hex[:16]}")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_subject)

    @classmethod
    def anonymous(cls) -> IdentityContext:
        return cls(auth_subject=None)


class ProfileResolver(ABC):
    """Maps an authenticated subject to the owner/profile id used on jobs."""

    @abstractmethod
    async def resolve_owner(self, identity: IdentityContext) -> str | None:
        """Return the owner id for ``identity``, or None if it has no profile."""
        ...


class IdentityProfileResolver(ProfileResolver):
    """Owner id is the auth subject itself."""

    async def resolve_owner(self, identity: IdentityContext) -> str | None:
        return identity.auth_subject or None


class InMemoryProfileResolver(ProfileResolver):
    """Static subject -> profile mapping, for tests and small deployments."""

    def __init__(self, profiles: Mapping[str, str] | None = None):
        self._profiles: dict[str, str] = dict(profiles or {})

    def register(self, auth_subject: str, owner_id: str) -> None:
        self._profiles[auth_subject] = owner_id

    async def resolve_owner(self, identity: IdentityContext) -> str | None:
        if not identity.auth_subject:
            return None
        return self._profiles.get(identity.auth_subject)


__all__ = [
    "IdentityContext",
    "ProfileResolver",
    "IdentityProfileResolver",
    "InMemoryProfileResolver",
]
