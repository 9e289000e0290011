"""Storage interfaces and implementations for the dish graph."""

from dishgraph.storage.interfaces import (
    ConnectionStorageInterface,
    EntityStorageInterface,
    MentionStorageInterface,
)
from dishgraph.storage.memory import (
    InMemoryConnectionStorage,
    InMemoryEntityStorage,
    InMemoryMentionStorage,
)

__all__ = [
    "EntityStorageInterface",
    "ConnectionStorageInterface",
    "MentionStorageInterface",
    "InMemoryEntityStorage",
    "InMemoryConnectionStorage",
    "InMemoryMentionStorage",
]
