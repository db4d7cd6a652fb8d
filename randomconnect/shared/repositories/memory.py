"""In-process stores with the same contract as the PostgreSQL repositories.

Used by the ``memory`` store backend (single process, no durability) and by
the test suite. None of the methods await while reading or mutating state, so
each call is atomic with respect to other tasks on the event loop. Returned
objects are copies; mutating them never changes stored state.
"""

from __future__ import annotations

import copy
import itertools
import logging
import uuid
from datetime import timedelta

from randomconnect.shared.clock import Clock, utcnow
from randomconnect.shared.errors import ConflictError, NotFoundError
from randomconnect.shared.models.connection_queue import QUEUE_ENTRY_TTL, QueueEntry, QueueStatus
from randomconnect.shared.models.random_connection import (
    Participant,
    RandomConnection,
    SessionStatus,
    TranscriptMessage,
)
from randomconnect.shared.repositories.random_connection import DEFAULT_TRANSCRIPT_LIMIT

logger = logging.getLogger(__name__)


class MemoryConnectionQueue:
    """Dict-backed wait queue keyed by user_id."""

    def __init__(self, *, clock: Clock = utcnow, entry_ttl: timedelta = QUEUE_ENTRY_TTL) -> None:
        self.clock = clock
        self.entry_ttl = entry_ttl
        self._entries: dict[str, QueueEntry] = {}
        self._ids = itertools.count(1)

    async def enqueue(self, entry: QueueEntry) -> QueueEntry:
        now = self.clock()
        existing = self._entries.get(entry.user_id)
        stored = copy.copy(entry)
        stored.id = existing.id if existing else next(self._ids)
        stored.status = QueueStatus.WAITING
        stored.joined_at = now
        stored.expires_at = now + self.entry_ttl
        stored.updated_at = now
        self._entries[entry.user_id] = stored
        return copy.copy(stored)

    async def dequeue(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        if entry is None or entry.status != QueueStatus.WAITING:
            return False
        del self._entries[user_id]
        # an expired entry is dropped but was not really waiting
        return not entry.is_expired(self.clock())

    async def get_waiting(self, user_id: str) -> QueueEntry | None:
        entry = self._entries.get(user_id)
        if entry is None or not self._is_live(entry):
            return None
        return copy.copy(entry)

    async def find_oldest_waiting(
        self, game_preference: str, excluding_user_id: str
    ) -> QueueEntry | None:
        await self.purge_expired()
        candidates = [
            e
            for e in self._entries.values()
            if e.game_preference == game_preference
            and e.user_id != excluding_user_id
            and self._is_live(e)
        ]
        if not candidates:
            return None
        return copy.copy(min(candidates, key=lambda e: (e.joined_at, e.id)))

    async def purge_expired(self) -> int:
        now = self.clock()
        expired = [uid for uid, e in self._entries.items() if e.is_expired(now)]
        for uid in expired:
            del self._entries[uid]
        if expired:
            logger.info(f"Purged {len(expired)} expired queue entries")
        return len(expired)

    async def claim_pair(self, first_user_id: str, second_user_id: str) -> list[QueueEntry]:
        pair = [self._entries.get(first_user_id), self._entries.get(second_user_id)]
        if any(e is None or not self._is_live(e) for e in pair):
            return []
        for e in pair:
            del self._entries[e.user_id]
        return pair

    async def restore(self, entry: QueueEntry) -> bool:
        if entry.user_id in self._entries:
            return False
        stored = copy.copy(entry)
        stored.status = QueueStatus.WAITING
        stored.updated_at = self.clock()
        self._entries[entry.user_id] = stored
        return True

    async def count_waiting(self, game_preference: str | None = None) -> int:
        return sum(
            1
            for e in self._entries.values()
            if self._is_live(e) and (game_preference is None or e.game_preference == game_preference)
        )

    def _is_live(self, entry: QueueEntry) -> bool:
        return entry.status == QueueStatus.WAITING and not entry.is_expired(self.clock())


class MemoryRandomConnectionStore:
    """Dict-backed session registry keyed by room_id."""

    def __init__(
        self,
        *,
        clock: Clock = utcnow,
        transcript_limit: int = DEFAULT_TRANSCRIPT_LIMIT,
    ) -> None:
        self.clock = clock
        self.transcript_limit = transcript_limit
        self._sessions: dict[str, RandomConnection] = {}
        self._open_by_user: dict[str, str] = {}

    async def create_session(
        self,
        participants: list[Participant],
        game_preference: str,
        created_by: str,
    ) -> RandomConnection:
        busy = [p.user_id for p in participants if p.user_id in self._open_by_user]
        if busy:
            raise ConflictError(
                f"A participant already has an open connection ({', '.join(busy)})"
            )
        now = self.clock()
        session = RandomConnection(
            room_id=str(uuid.uuid4()),
            participants=copy.deepcopy(participants),
            game_preference=game_preference,
            created_by=created_by,
            start_time=now,
            status=SessionStatus.ACTIVE,
            created_at=now,
        )
        self._sessions[session.room_id] = session
        for p in participants:
            self._open_by_user[p.user_id] = session.room_id
        return copy.deepcopy(session)

    async def mark_ended(
        self, room_id: str, user_id: str, reason: str
    ) -> tuple[RandomConnection | None, bool]:
        session = self._sessions.get(room_id)
        if session is None:
            return None, False
        if not session.is_open:
            return copy.deepcopy(session), False

        now = self.clock()
        session.status = SessionStatus.DISCONNECTED
        session.end_time = now
        session.duration = int((now - session.start_time).total_seconds())
        participant = session.participant(user_id)
        if participant is not None:
            participant.left_at = now
        for p in session.participants:
            if self._open_by_user.get(p.user_id) == room_id:
                del self._open_by_user[p.user_id]
        logger.info(f"Room {room_id} closed by {user_id}: {reason}")
        return copy.deepcopy(session), True

    async def find_session_by_id(self, room_id: str) -> RandomConnection | None:
        session = self._sessions.get(room_id)
        return copy.deepcopy(session) if session else None

    async def find_open_session_for_user(self, user_id: str) -> RandomConnection | None:
        room_id = self._open_by_user.get(user_id)
        if room_id is None:
            return None
        return copy.deepcopy(self._sessions[room_id])

    async def list_closed_sessions_for_user(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> list[RandomConnection]:
        closed = self._closed_for(user_id)
        start = (page - 1) * limit
        return [copy.deepcopy(s) for s in closed[start : start + limit]]

    async def count_closed_sessions_for_user(self, user_id: str) -> int:
        return len(self._closed_for(user_id))

    async def append_message(self, room_id: str, sender_id: str, text: str) -> TranscriptMessage:
        session = self._sessions.get(room_id)
        if session is None or not session.is_open:
            raise NotFoundError("Connection not found")
        message = TranscriptMessage(sender_id=sender_id, text=text, timestamp=self.clock())
        session.messages.append(message)
        del session.messages[: -self.transcript_limit]
        return copy.copy(message)

    def _closed_for(self, user_id: str) -> list[RandomConnection]:
        # dicts keep insertion order, so reversing gives newest first
        return [
            s
            for s in reversed(list(self._sessions.values()))
            if s.status in SessionStatus.CLOSED and s.has_participant(user_id)
        ]
