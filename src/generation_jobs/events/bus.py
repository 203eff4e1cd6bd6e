"""
Event bus for job event distribution.

This module provides the EventBus abstraction and an in-memory
implementation for publishing and subscribing to job events.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from .types import JobEvent, JobEventType


@dataclass
class EventSubscription:
    """Subscription to events from the event bus."""
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    job_id: str | None = None
    owner_id: str | None = None
    event_types: set[JobEventType] | None = None  # None = all types

    def matches(self, event: JobEvent) -> bool:
        """Check if an event matches this subscription."""
        if self.job_id and event.job_id != self.job_id:
            return False
        if self.owner_id and event.owner_id != self.owner_id:
            return False
        if self.event_types and event.type not in self.event_types:
            return False
        return True


class EventBus(ABC):
    """Abstract event bus for job events."""

    @abstractmethod
    async def publish(self, event: JobEvent) -> None:
        """Publish an event to all matching subscribers."""
        ...

    @abstractmethod
    def subscribe(
        self,
        job_id: str | None = None,
        event_types: set[JobEventType] | None = None,
        owner_id: str | None = None,
    ) -> EventSubscription:
        """Create a subscription and return it."""
        ...

    @abstractmethod
    def events(self, subscription: EventSubscription) -> AsyncIterator[JobEvent]:
        """Iterate over events for a subscription."""
        ...

    @abstractmethod
    def unsubscribe(self, subscription: EventSubscription) -> None:
        """Remove a subscription."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the event bus and clean up resources."""
        ...


class InMemoryEventBus(EventBus):
    """In-memory event bus implementation.

    Uses a bounded asyncio.Queue per subscription. When a queue is full the
    oldest event is dropped (``drop_policy="oldest"``) or the new event is
    discarded (``drop_policy="newest"``).
    """

    def __init__(self, max_queue_size: int = 1000, drop_policy: str = "oldest"):
        if drop_policy not in ("oldest", "newest"):
            raise ValueError(f"Unknown drop policy: {drop_policy}")
        self._queues: dict[str, asyncio.Queue[JobEvent | None]] = {}
        self._subscriptions: dict[str, EventSubscription] = {}
        self._max_queue_size = max_queue_size
        self._drop_policy = drop_policy
        self._closed = False
        self._lock = asyncio.Lock()
        self.dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: JobEvent) -> None:
        if self._closed:
            return

        async with self._lock:
            for sub_id, subscription in list(self._subscriptions.items()):
                if not subscription.matches(event):
                    continue
                queue = self._queues.get(sub_id)
                if queue is None:
                    continue
                # The last slot is reserved for the close sentinel.
                if queue.qsize() >= self._max_queue_size:
                    self.dropped += 1
                    if self._drop_policy == "newest":
                        continue
                    queue.get_nowait()
                queue.put_nowait(event)

    def subscribe(
        self,
        job_id: str | None = None,
        event_types: set[JobEventType] | None = None,
        owner_id: str | None = None,
    ) -> EventSubscription:
        subscription = EventSubscription(job_id=job_id, owner_id=owner_id, event_types=event_types)
        self._subscriptions[subscription.subscription_id] = subscription
        self._queues[subscription.subscription_id] = asyncio.Queue(maxsize=self._max_queue_size + 1)
        return subscription

    async def events(self, subscription: EventSubscription) -> AsyncIterator[JobEvent]:
        """Yield events until the subscription is closed."""
        queue = self._queues.get(subscription.subscription_id)
        if queue is None:
            return

        while True:
            event = await queue.get()
            if event is None:  # Sentinel for close
                break
            yield event

    def unsubscribe(self, subscription: EventSubscription) -> None:
        sub_id = subscription.subscription_id
        self._subscriptions.pop(sub_id, None)
        queue = self._queues.pop(sub_id, None)
        if queue is not None:
            queue.put_nowait(None)

    async def close(self) -> None:
        self._closed = True
        async with self._lock:
            for queue in self._queues.values():
                queue.put_nowait(None)
            self._queues.clear()
            self._subscriptions.clear()

    async def wait_for_event(
        self,
        subscription: EventSubscription,
        timeout: float | None = None,
    ) -> JobEvent | None:
        """Wait for a single event with optional timeout."""
        queue = self._queues.get(subscription.subscription_id)
        if queue is None:
            return None
        try:
            return await asyncio.wait_for(queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def pending(self, subscription: EventSubscription) -> list[JobEvent]:
        """Drain and return the events already queued for a subscription."""
        queue = self._queues.get(subscription.subscription_id)
        drained: list[JobEvent] = []
        while queue is not None and not queue.empty():
            event = queue.get_nowait()
            if event is not None:
                drained.append(event)
        return drained


__all__ = ["EventBus", "EventSubscription", "InMemoryEventBus"]
