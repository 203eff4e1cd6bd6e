"""
Shared test fixtures for generation-jobs tests.

This module provides:
- A controllable clock for staleness and retention tests
- In-memory store, event bus, manager, reader and janitor fixtures

Record and identity factories live in ``tests/_jobs_testkit.py``.
"""

from __future__ import annotations

import pytest

from generation_jobs.config import JobsConfig
from generation_jobs.context import InMemoryProfileResolver
from generation_jobs.events import InMemoryEventBus
from generation_jobs.jobs import InMemoryJobStore, Janitor, JobManager, JobReader, KindRegistry
from generation_jobs.logging import StructuredLogger
from tests._jobs_testkit import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger("generation_jobs.tests", level="DEBUG")


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def registry() -> KindRegistry:
    return KindRegistry()


@pytest.fixture
def manager(store, bus, registry, logger, clock) -> JobManager:
    return JobManager(store, registry=registry, event_bus=bus, logger=logger, clock=clock)


@pytest.fixture
def profiles() -> InMemoryProfileResolver:
    return InMemoryProfileResolver({"profile-1": "profile-1", "profile-2": "profile-2"})


@pytest.fixture
def reader(store, profiles, registry, logger) -> JobReader:
    return JobReader(store, profiles=profiles, registry=registry, logger=logger)


@pytest.fixture
def janitor(store, bus, registry, logger, clock) -> Janitor:
    return Janitor(
        store,
        config=JobsConfig(sweep_batch_size=2),
        registry=registry,
        event_bus=bus,
        logger=logger,
        clock=clock,
    )
