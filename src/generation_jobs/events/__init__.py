"""
Job lifecycle events.
"""

from .bus import EventBus, EventSubscription, InMemoryEventBus
from .types import JobEvent, JobEventType

__all__ = [
    "JobEventType",
    "JobEvent",
    "EventBus",
    "EventSubscription",
    "InMemoryEventBus",
]
