"""Data model for random_connection_queue rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

QUEUE_ENTRY_TTL = timedelta(minutes=30)


class QueueStatus:
    WAITING = "waiting"
    MATCHED = "matched"
    CANCELLED = "cancelled"


@dataclass
class QueueEntry:
    """A user waiting for a random partner."""

    user_id: str
    game_preference: str
    joined_at: datetime
    expires_at: datetime
    username: str = ""
    display_name: str = ""
    avatar_ref: str | None = None
    video_enabled: bool = True
    status: str = QueueStatus.WAITING
    id: int | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
