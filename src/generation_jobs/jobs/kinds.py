"""
Job kinds and their state machines.

Every kind is registered with a KindSpec that names its state machine,
the scope of its one-active-job rule, the JSON schema its creation payload
must satisfy and how its result and item collection are shaped.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import jsonschema

from ..errors import (
    InvalidPayloadError,
    InvalidTransitionError,
    UnknownKindError,
    ValidationError,
)
from .types import JobKind, JobStatus


class Scope(str, Enum):
    """Key of the one-active-job rule."""
    OWNER = "owner"
    SUBJECT = "subject"


@dataclass(frozen=True)
class StateMachine:
    """Ordered stages plus terminal statuses for one family of kinds.

    A stage may move to any later stage, to any terminal status, or stay
    where it is (progress-only update). Backward moves are rejected.
    """
    name: str
    stages: tuple[JobStatus, ...]
    success: JobStatus
    failure: JobStatus = JobStatus.FAILED
    partial: JobStatus | None = None
    waiting: frozenset[JobStatus] = frozenset()
    not_started: frozenset[JobStatus] = frozenset()
    transitions: dict[JobStatus, frozenset[JobStatus]] = field(
        init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self):
        if not self.stages:
            raise ValueError(f"State machine {self.name} has no stages")
        unknown = self.waiting - set(self.stages)
        if unknown:
            raise ValueError(f"Waiting statuses {sorted(unknown)} are not stages of {self.name}")
        unknown = self.not_started - set(self.stages)
        if unknown:
            raise ValueError(f"Not-started statuses {sorted(unknown)} are not stages of {self.name}")

        table: dict[JobStatus, frozenset[JobStatus]] = {}
        for index, stage in enumerate(self.stages):
            table[stage] = frozenset(self.stages[index:]) | self.terminals
        for status in self.terminals:
            table[status] = frozenset()
        object.__setattr__(self, "transitions", table)

    @property
    def initial(self) -> JobStatus:
        return self.stages[0]

    @property
    def terminals(self) -> frozenset[JobStatus]:
        statuses = {self.success, self.failure}
        if self.partial is not None:
            statuses.add(self.partial)
        return frozenset(statuses)

    @property
    def statuses(self) -> frozenset[JobStatus]:
        return frozenset(self.stages) | self.terminals

    @property
    def in_progress(self) -> frozenset[JobStatus]:
        """Statuses in which a job is actively worked on.

        These are the statuses the stuck-job sweep considers. A job that is
        still waiting to be picked up (``not_started``) or paused on a caller
        (``waiting``) is never in progress.
        """
        return frozenset(self.stages) - self.not_started - self.waiting

    def can_transition(self, current: JobStatus, new: JobStatus) -> bool:
        return new in self.transitions.get(current, frozenset())

    def check_transition(self, current: JobStatus, new: JobStatus) -> None:
        """Raise InvalidTransitionError unless ``current -> new`` is allowed."""
        if new not in self.statuses:
            raise InvalidTransitionError(current.value, new.value)
        if not self.can_transition(current, new):
            raise InvalidTransitionError(current.value, new.value)


SIMPLE = StateMachine(
    name="simple",
    stages=(JobStatus.PENDING, JobStatus.GENERATING),
    success=JobStatus.COMPLETED,
    not_started=frozenset({JobStatus.PENDING}),
)

QUEUED = StateMachine(
    name="queued",
    stages=(JobStatus.QUEUED, JobStatus.RUNNING),
    success=JobStatus.SUCCEEDED,
    not_started=frozenset({JobStatus.QUEUED}),
)

CONCEPT_PIPELINE = StateMachine(
    name="concept_pipeline",
    stages=(JobStatus.GENERATING_CONCEPTS, JobStatus.GENERATING_IMAGES),
    success=JobStatus.COMPLETED,
)

APP_PIPELINE = StateMachine(
    name="app_pipeline",
    stages=(
        JobStatus.PENDING,
        JobStatus.DOWNLOADING_IMAGES,
        JobStatus.GENERATING_STRUCTURE,
        JobStatus.PREVIEW_READY,
        JobStatus.GENERATING_CONCEPT,
        JobStatus.GENERATING_ICON,
        JobStatus.GENERATING_SCREENS,
    ),
    success=JobStatus.COMPLETED,
    partial=JobStatus.PARTIAL,
    waiting=frozenset({JobStatus.PREVIEW_READY}),
    not_started=frozenset({JobStatus.PENDING}),
)


# =============================================================================
# Payload schemas
# =============================================================================

STYLE_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "reference_image_storage_id": {"type": "string"},
    },
    "additionalProperties": False,
}

IMAGE_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "num_variants": {"type": "integer", "minimum": 1, "maximum": 8},
        "width": {"type": "integer", "minimum": 1},
        "height": {"type": "integer", "minimum": 1},
        "user_feedback": {"type": "string"},
        "auto_save": {"type": "boolean"},
    },
}

COVER_VIDEO_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "prompt": {"type": "string"},
        "duration_seconds": {"type": "number", "exclusiveMinimum": 0},
        "user_feedback": {"type": "string"},
    },
}

DESCRIPTION_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "user_feedback": {"type": "string"},
        "include_screenshots": {"type": "boolean"},
    },
}

CONCEPT_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "prompt": {"type": "string"},
        "num_concepts": {"type": "integer", "minimum": 1},
    },
}

CONCEPT_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "app_name": {"type": "string", "minLength": 1},
        "app_subtitle": {"type": "string"},
        "app_description": {"type": "string"},
        "app_category": {"type": "string"},
        "style_description": {"type": "string"},
        "app_icon_prompt": {"type": "string"},
        "cover_image_prompt": {"type": "string"},
        "icon_url": {"type": ["string", "null"]},
        "cover_url": {"type": ["string", "null"]},
    },
    "required": ["app_name"],
}

APP_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "prompt": {"type": "string"},
        "category": {"type": "string"},
        "num_screens": {"type": "integer", "minimum": 1},
        "concept_id": {"type": "string"},
        "reference_image_storage_ids": {"type": "array", "items": {"type": "string"}},
    },
}


@dataclass(frozen=True)
class KindSpec:
    """Registration entry for one job kind."""
    kind: JobKind
    state_machine: StateMachine
    scope: Scope
    payload_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})
    result_table: str = "jobs"
    requires_subject: bool = False
    item_noun: str = "items"
    item_schema: dict[str, Any] | None = None
    item_complete_fields: tuple[str, ...] = ()
    item_stage_status: JobStatus | None = None

    @property
    def initial_status(self) -> JobStatus:
        return self.state_machine.initial

    def validate_payload(self, payload: Mapping[str, Any]) -> None:
        """Raise InvalidPayloadError if ``payload`` fails the kind's schema."""
        try:
            jsonschema.validate(instance=dict(payload), schema=self.payload_schema)
        except jsonschema.ValidationError as e:
            raise InvalidPayloadError(
                f"Invalid {self.kind.value} payload: {e.message}",
                path=list(e.absolute_path),
                cause=e,
            ) from e

    def validate_item(self, item: Mapping[str, Any]) -> None:
        if self.item_schema is None:
            return
        try:
            jsonschema.validate(instance=dict(item), schema=self.item_schema)
        except jsonschema.ValidationError as e:
            raise InvalidPayloadError(
                f"Invalid {self.item_noun} entry: {e.message}",
                path=list(e.absolute_path),
                cause=e,
            ) from e

    def item_is_complete(self, item: Mapping[str, Any]) -> bool:
        return all(item.get(name) for name in self.item_complete_fields)


DEFAULT_KIND_SPECS: dict[JobKind, KindSpec] = {
    JobKind.STYLE: KindSpec(
        kind=JobKind.STYLE,
        state_machine=QUEUED,
        scope=Scope.OWNER,
        payload_schema=STYLE_PAYLOAD_SCHEMA,
        result_table="styles",
    ),
    JobKind.SCREENSHOT: KindSpec(
        kind=JobKind.SCREENSHOT,
        state_machine=QUEUED,
        scope=Scope.OWNER,
        payload_schema=STYLE_PAYLOAD_SCHEMA,
        result_table="screenshots",
    ),
    JobKind.TEMPLATE: KindSpec(
        kind=JobKind.TEMPLATE,
        state_machine=QUEUED,
        scope=Scope.OWNER,
        payload_schema=STYLE_PAYLOAD_SCHEMA,
        result_table="templates",
    ),
    JobKind.ICON: KindSpec(
        kind=JobKind.ICON,
        state_machine=SIMPLE,
        scope=Scope.SUBJECT,
        payload_schema=IMAGE_PAYLOAD_SCHEMA,
        result_table="storage",
        requires_subject=True,
    ),
    JobKind.COVER_IMAGE: KindSpec(
        kind=JobKind.COVER_IMAGE,
        state_machine=SIMPLE,
        scope=Scope.SUBJECT,
        payload_schema=IMAGE_PAYLOAD_SCHEMA,
        result_table="storage",
        requires_subject=True,
    ),
    JobKind.COVER_VIDEO: KindSpec(
        kind=JobKind.COVER_VIDEO,
        state_machine=SIMPLE,
        scope=Scope.SUBJECT,
        payload_schema=COVER_VIDEO_PAYLOAD_SCHEMA,
        result_table="storage",
        requires_subject=True,
    ),
    JobKind.IMPROVE_APP_DESCRIPTION: KindSpec(
        kind=JobKind.IMPROVE_APP_DESCRIPTION,
        state_machine=SIMPLE,
        scope=Scope.SUBJECT,
        payload_schema=DESCRIPTION_PAYLOAD_SCHEMA,
        result_table="descriptions",
        requires_subject=True,
    ),
    JobKind.CONCEPT_GENERATION: KindSpec(
        kind=JobKind.CONCEPT_GENERATION,
        state_machine=CONCEPT_PIPELINE,
        scope=Scope.OWNER,
        payload_schema=CONCEPT_PAYLOAD_SCHEMA,
        result_table="concepts",
        item_noun="concepts",
        item_schema=CONCEPT_ITEM_SCHEMA,
        item_complete_fields=("icon_url", "cover_url"),
        item_stage_status=JobStatus.GENERATING_IMAGES,
    ),
    JobKind.APP_GENERATION: KindSpec(
        kind=JobKind.APP_GENERATION,
        state_machine=APP_PIPELINE,
        scope=Scope.SUBJECT,
        payload_schema=APP_PAYLOAD_SCHEMA,
        result_table="apps",
        requires_subject=True,
        item_noun="screens",
        item_stage_status=JobStatus.GENERATING_SCREENS,
    ),
}


class KindRegistry:
    """Lookup of KindSpec by kind, with optional per-kind scope overrides."""

    def __init__(
        self,
        specs: Mapping[JobKind, KindSpec] | None = None,
        scope_overrides: Mapping[str, str] | None = None,
    ):
        self._specs: dict[JobKind, KindSpec] = dict(specs or DEFAULT_KIND_SPECS)
        for raw_kind, raw_scope in (scope_overrides or {}).items():
            kind = self.resolve_kind(raw_kind)
            try:
                scope = Scope(raw_scope)
            except ValueError as e:
                raise ValidationError(f"Invalid scope for {kind.value}: {raw_scope!r}") from e
            self._specs[kind] = replace(self._specs[kind], scope=scope)

    def resolve_kind(self, kind: JobKind | str) -> JobKind:
        try:
            resolved = JobKind(kind)
        except ValueError as e:
            raise UnknownKindError(kind) from e
        if resolved not in self._specs:
            raise UnknownKindError(kind)
        return resolved

    def get(self, kind: JobKind | str) -> KindSpec:
        return self._specs[self.resolve_kind(kind)]

    def scope_for(self, kind: JobKind | str) -> Scope:
        return self.get(kind).scope

    def kinds(self) -> list[JobKind]:
        return list(self._specs)

    def __contains__(self, kind: object) -> bool:
        try:
            return JobKind(kind) in self._specs
        except ValueError:
            return False


__all__ = [
    "Scope",
    "StateMachine",
    "SIMPLE",
    "QUEUED",
    "CONCEPT_PIPELINE",
    "APP_PIPELINE",
    "KindSpec",
    "KindRegistry",
    "DEFAULT_KIND_SPECS",
]
