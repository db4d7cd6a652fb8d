"""Data models for random_connections and their participants/messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class SessionStatus:
    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"
    DISCONNECTED = "disconnected"

    OPEN = (WAITING, ACTIVE)
    CLOSED = (ENDED, DISCONNECTED)


@dataclass
class UserIdentity:
    """Identity snapshot supplied by the auth layer."""

    user_id: str
    username: str = ""
    display_name: str = ""
    avatar_ref: str | None = None


@dataclass
class Participant:
    """One side of a random connection."""

    user_id: str
    joined_at: datetime
    username: str = ""
    display_name: str = ""
    avatar_ref: str | None = None
    video_enabled: bool = True
    left_at: datetime | None = None

    def identity(self) -> UserIdentity:
        return UserIdentity(
            user_id=self.user_id,
            username=self.username,
            display_name=self.display_name,
            avatar_ref=self.avatar_ref,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "displayName": self.display_name,
            "avatarRef": self.avatar_ref,
            "videoEnabled": self.video_enabled,
            "joinedAt": self.joined_at.isoformat(),
            "leftAt": self.left_at.isoformat() if self.left_at else None,
        }


@dataclass
class TranscriptMessage:
    sender_id: str
    text: str
    timestamp: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "senderId": self.sender_id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RandomConnection:
    """A pairing session ("room") between two matched users."""

    room_id: str
    participants: list[Participant]
    game_preference: str
    created_by: str
    start_time: datetime
    status: str = SessionStatus.ACTIVE
    end_time: datetime | None = None
    duration: int | None = None  # seconds
    messages: list[TranscriptMessage] = field(default_factory=list)
    created_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status in SessionStatus.OPEN

    def participant(self, user_id: str) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    def has_participant(self, user_id: str) -> bool:
        return self.participant(user_id) is not None

    def others(self, user_id: str) -> list[Participant]:
        """Participants other than *user_id*, in room order."""
        return [p for p in self.participants if p.user_id != user_id]

    def to_payload(self) -> dict[str, Any]:
        """Camel-cased dict used for API responses and gateway events."""
        return {
            "roomId": self.room_id,
            "participants": [p.to_payload() for p in self.participants],
            "gamePreference": self.game_preference,
            "status": self.status,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "messages": [m.to_payload() for m in self.messages],
            "createdBy": self.created_by,
        }
