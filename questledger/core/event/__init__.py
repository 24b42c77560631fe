"""
Event system for questledger.

Provides the in-process EventBus and the global `event_bus` singleton used
for post-commit notifications (progression milestones, reward grants,
anomalies, audit records).
"""

from .bus import EventBus
from .registry import ListenerRegistry, pattern_matches
from .types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

# Global runtime singleton EventBus
event_bus = EventBus()

__all__ = [
    "event_bus",
    "EventBus",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "ListenerRegistry",
    "CallbackType",
    "pattern_matches",
]
