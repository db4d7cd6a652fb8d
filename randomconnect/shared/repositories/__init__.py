"""Repository layer for the matchmaking service."""

from .base import SessionStore, WaitQueue
from .connection_queue import ConnectionQueueRepository
from .memory import MemoryConnectionQueue, MemoryRandomConnectionStore
from .random_connection import RandomConnectionRepository

__all__ = [
    "ConnectionQueueRepository",
    "MemoryConnectionQueue",
    "MemoryRandomConnectionStore",
    "RandomConnectionRepository",
    "SessionStore",
    "WaitQueue",
]
