"""
Wiring of the job lifecycle components from settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import Settings, get_settings
from .context import IdentityProfileResolver, ProfileResolver
from .events import EventBus
from .jobs import Janitor, JobManager, JobReader, JobStore, KindRegistry, SweepScheduler
from .logging import StructuredLogger, configure_logging
from .storage import build_store


@dataclass
class JobService:
    """Store, mutators, readers and janitor sharing one configuration."""

    settings: Settings
    store: JobStore
    registry: KindRegistry
    manager: JobManager
    reader: JobReader
    janitor: Janitor
    logger: StructuredLogger
    event_bus: EventBus | None = None

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        *,
        store: JobStore | None = None,
        profiles: ProfileResolver | None = None,
        event_bus: EventBus | None = None,
        log_stream: Any = None,
    ) -> JobService:
        settings = settings or get_settings()
        logger = configure_logging(settings.logging, stream=log_stream)
        store = store or await build_store(settings)
        registry = KindRegistry(scope_overrides=settings.jobs.scope_overrides)
        return cls(
            settings=settings,
            store=store,
            registry=registry,
            manager=JobManager(store, registry=registry, event_bus=event_bus, logger=logger),
            reader=JobReader(
                store,
                profiles=profiles or IdentityProfileResolver(),
                registry=registry,
                logger=logger,
            ),
            janitor=Janitor(
                store,
                config=settings.jobs,
                registry=registry,
                event_bus=event_bus,
                logger=logger,
            ),
            logger=logger,
            event_bus=event_bus,
        )

    def scheduler(self) -> SweepScheduler:
        return SweepScheduler(self.janitor, logger=self.logger)

    async def close(self) -> None:
        await self.store.close()
        if self.event_bus is not None:
            await self.event_bus.close()


__all__ = ["JobService"]
