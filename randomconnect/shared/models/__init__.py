"""Shared data models for the matchmaking service."""

from .connection_queue import QUEUE_ENTRY_TTL, QueueEntry, QueueStatus
from .random_connection import (
    Participant,
    RandomConnection,
    SessionStatus,
    TranscriptMessage,
    UserIdentity,
)

__all__ = [
    "QUEUE_ENTRY_TTL",
    "Participant",
    "QueueEntry",
    "QueueStatus",
    "RandomConnection",
    "SessionStatus",
    "TranscriptMessage",
    "UserIdentity",
]
