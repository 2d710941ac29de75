"""
Onboarding Infrastructure Layer
"""
from onboarding_graph.infrastructure.event_bus import EventBus, EventType, StatusEvent
from onboarding_graph.infrastructure.locks import ReadWriteLock
from onboarding_graph.infrastructure.storage import (
    GraphNotFoundError,
    JSONFileStorage,
    MemoryStorage,
    SessionNotFoundError,
    Storage,
    StorageError,
)

__all__ = [
    'EventBus',
    'EventType',
    'StatusEvent',
    'ReadWriteLock',
    'Storage',
    'MemoryStorage',
    'JSONFileStorage',
    'StorageError',
    'GraphNotFoundError',
    'SessionNotFoundError',
]
