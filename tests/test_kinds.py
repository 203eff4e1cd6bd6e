"""
Tests for job kinds, state machines and the kind registry.
"""

import pytest

from generation_jobs.errors import (
    InvalidPayloadError,
    InvalidTransitionError,
    UnknownKindError,
    ValidationError,
)
from generation_jobs.jobs import (
    APP_PIPELINE,
    CONCEPT_PIPELINE,
    DEFAULT_KIND_SPECS,
    QUEUED,
    SIMPLE,
    JobKind,
    JobStatus,
    KindRegistry,
    Scope,
    StateMachine,
)


class TestStateMachine:
    """Test transition tables."""

    def test_forward_moves_allowed(self):
        assert SIMPLE.can_transition(JobStatus.PENDING, JobStatus.GENERATING)
        assert APP_PIPELINE.can_transition(JobStatus.PENDING, JobStatus.GENERATING_SCREENS)
        assert APP_PIPELINE.can_transition(JobStatus.DOWNLOADING_IMAGES, JobStatus.PREVIEW_READY)

    def test_stay_allowed(self):
        assert SIMPLE.can_transition(JobStatus.GENERATING, JobStatus.GENERATING)
        assert QUEUED.can_transition(JobStatus.QUEUED, JobStatus.QUEUED)

    def test_backward_moves_rejected(self):
        assert not SIMPLE.can_transition(JobStatus.GENERATING, JobStatus.PENDING)
        assert not APP_PIPELINE.can_transition(JobStatus.GENERATING_ICON, JobStatus.PREVIEW_READY)

    def test_terminal_reachable_from_any_stage(self):
        for stage in APP_PIPELINE.stages:
            assert APP_PIPELINE.can_transition(stage, JobStatus.COMPLETED)
            assert APP_PIPELINE.can_transition(stage, JobStatus.PARTIAL)
            assert APP_PIPELINE.can_transition(stage, JobStatus.FAILED)

    def test_terminal_statuses_have_no_exits(self):
        for status in SIMPLE.terminals:
            assert SIMPLE.transitions[status] == frozenset()

    def test_foreign_status_rejected(self):
        with pytest.raises(InvalidTransitionError):
            SIMPLE.check_transition(JobStatus.PENDING, JobStatus.RUNNING)
        with pytest.raises(InvalidTransitionError):
            QUEUED.check_transition(JobStatus.QUEUED, JobStatus.COMPLETED)

    def test_partial_only_on_app_pipeline(self):
        assert APP_PIPELINE.partial == JobStatus.PARTIAL
        assert SIMPLE.partial is None
        assert not CONCEPT_PIPELINE.can_transition(JobStatus.GENERATING_IMAGES, JobStatus.PARTIAL)

    def test_in_progress_excludes_not_started_and_waiting(self):
        assert SIMPLE.in_progress == {JobStatus.GENERATING}
        assert QUEUED.in_progress == {JobStatus.RUNNING}
        assert JobStatus.PREVIEW_READY not in APP_PIPELINE.in_progress
        assert JobStatus.PENDING not in APP_PIPELINE.in_progress
        assert JobStatus.GENERATING_SCREENS in APP_PIPELINE.in_progress

    def test_concept_pipeline_starts_in_progress(self):
        assert CONCEPT_PIPELINE.initial == JobStatus.GENERATING_CONCEPTS
        assert CONCEPT_PIPELINE.in_progress == {JobStatus.GENERATING_CONCEPTS, JobStatus.GENERATING_IMAGES}

    def test_waiting_must_be_a_stage(self):
        with pytest.raises(ValueError, match="not stages"):
            StateMachine(
                name="broken",
                stages=(JobStatus.PENDING,),
                success=JobStatus.COMPLETED,
                waiting=frozenset({JobStatus.PREVIEW_READY}),
            )

    def test_not_started_must_be_a_stage(self):
        with pytest.raises(ValueError, match="not stages"):
            StateMachine(
                name="broken",
                stages=(JobStatus.GENERATING,),
                success=JobStatus.COMPLETED,
                not_started=frozenset({JobStatus.PENDING}),
            )


class TestKindSpecs:
    """Test the default kind registrations."""

    def test_every_kind_registered(self):
        assert set(DEFAULT_KIND_SPECS) == set(JobKind)

    def test_initial_statuses(self):
        assert DEFAULT_KIND_SPECS[JobKind.STYLE].initial_status == JobStatus.QUEUED
        assert DEFAULT_KIND_SPECS[JobKind.ICON].initial_status == JobStatus.PENDING
        assert DEFAULT_KIND_SPECS[JobKind.CONCEPT_GENERATION].initial_status == JobStatus.GENERATING_CONCEPTS
        assert DEFAULT_KIND_SPECS[JobKind.APP_GENERATION].initial_status == JobStatus.PENDING

    def test_style_payload_rejects_unknown_fields(self):
        spec = DEFAULT_KIND_SPECS[JobKind.STYLE]
        spec.validate_payload({"description": "pastel"})

        with pytest.raises(InvalidPayloadError):
            spec.validate_payload({"description": "pastel", "colour": "pink"})

    def test_image_payload_bounds(self):
        spec = DEFAULT_KIND_SPECS[JobKind.COVER_IMAGE]
        spec.validate_payload({"num_variants": 2, "auto_save": True})

        with pytest.raises(InvalidPayloadError) as exc_info:
            spec.validate_payload({"num_variants": 0})
        assert exc_info.value.path == ["num_variants"]

    def test_concept_item_validation(self):
        spec = DEFAULT_KIND_SPECS[JobKind.CONCEPT_GENERATION]
        spec.validate_item({"app_name": "Tidy"})

        with pytest.raises(InvalidPayloadError):
            spec.validate_item({"app_description": "no name"})

    def test_item_is_complete(self):
        spec = DEFAULT_KIND_SPECS[JobKind.CONCEPT_GENERATION]

        assert not spec.item_is_complete({"app_name": "Tidy", "icon_url": "i.png", "cover_url": None})
        assert spec.item_is_complete({"app_name": "Tidy", "icon_url": "i.png", "cover_url": "c.png"})


class TestKindRegistry:
    """Test registry lookup and scope overrides."""

    def test_resolve_by_value(self):
        registry = KindRegistry()
        assert registry.resolve_kind("cover_image") == JobKind.COVER_IMAGE
        assert "style" in registry
        assert "nope" not in registry

    def test_unknown_kind(self):
        with pytest.raises(UnknownKindError):
            KindRegistry().get("video_game")

    def test_default_scopes(self):
        registry = KindRegistry()
        assert registry.scope_for(JobKind.STYLE) == Scope.OWNER
        assert registry.scope_for(JobKind.COVER_IMAGE) == Scope.SUBJECT
        assert registry.scope_for(JobKind.CONCEPT_GENERATION) == Scope.OWNER

    def test_scope_override(self):
        registry = KindRegistry(scope_overrides={"cover_image": "owner"})

        assert registry.scope_for(JobKind.COVER_IMAGE) == Scope.OWNER
        # Defaults are not mutated
        assert KindRegistry().scope_for(JobKind.COVER_IMAGE) == Scope.SUBJECT

    def test_invalid_scope_override(self):
        with pytest.raises(ValidationError):
            KindRegistry(scope_overrides={"cover_image": "team"})
