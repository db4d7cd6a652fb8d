"""Store contracts shared by the PostgreSQL and in-process implementations."""

from __future__ import annotations

from typing import Protocol

from randomconnect.shared.models.connection_queue import QueueEntry
from randomconnect.shared.models.random_connection import (
    Participant,
    RandomConnection,
    TranscriptMessage,
)


class WaitQueue(Protocol):
    async def enqueue(self, entry: QueueEntry) -> QueueEntry: ...

    async def dequeue(self, user_id: str) -> bool: ...

    async def get_waiting(self, user_id: str) -> QueueEntry | None: ...

    async def find_oldest_waiting(
        self, game_preference: str, excluding_user_id: str
    ) -> QueueEntry | None: ...

    async def purge_expired(self) -> int: ...

    async def claim_pair(self, first_user_id: str, second_user_id: str) -> list[QueueEntry]: ...

    async def restore(self, entry: QueueEntry) -> bool: ...

    async def count_waiting(self, game_preference: str | None = None) -> int: ...


class SessionStore(Protocol):
    async def create_session(
        self,
        participants: list[Participant],
        game_preference: str,
        created_by: str,
    ) -> RandomConnection: ...

    async def mark_ended(
        self, room_id: str, user_id: str, reason: str
    ) -> tuple[RandomConnection | None, bool]: ...

    async def find_session_by_id(self, room_id: str) -> RandomConnection | None: ...

    async def find_open_session_for_user(self, user_id: str) -> RandomConnection | None: ...

    async def list_closed_sessions_for_user(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> list[RandomConnection]: ...

    async def count_closed_sessions_for_user(self, user_id: str) -> int: ...

    async def append_message(
        self, room_id: str, sender_id: str, text: str
    ) -> TranscriptMessage: ...
