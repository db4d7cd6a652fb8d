"""Repository for random_connections and their participant/message tables."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict

import asyncpg

from randomconnect.shared.clock import Clock, utcnow
from randomconnect.shared.errors import ConflictError, NotFoundError
from randomconnect.shared.models.random_connection import (
    Participant,
    RandomConnection,
    SessionStatus,
    TranscriptMessage,
)

logger = logging.getLogger(__name__)

_SESSION_COLUMNS = (
    "c.room_id, c.game_preference, c.status, c.start_time, c.end_time, "
    "c.duration, c.created_by, c.created_at"
)

_PARTICIPANT_COLUMNS = (
    "room_id, user_id, username, display_name, avatar_ref, video_enabled, joined_at, left_at"
)

DEFAULT_TRANSCRIPT_LIMIT = 200


class RandomConnectionRepository:
    """Pure SQL operations for random connection sessions.

    The partial unique index ``uq_rc_participant_open`` guarantees a user is
    in at most one open room across every process sharing the database.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        clock: Clock = utcnow,
        transcript_limit: int = DEFAULT_TRANSCRIPT_LIMIT,
    ) -> None:
        self.pool = pool
        self.clock = clock
        self.transcript_limit = transcript_limit

    # ==================== Hydration ====================

    async def _hydrate(
        self, conn: asyncpg.Connection, rows: list[asyncpg.Record]
    ) -> list[RandomConnection]:
        """Attach participants and transcripts to session rows (order kept)."""
        if not rows:
            return []
        room_ids = [row["room_id"] for row in rows]

        participant_rows = await conn.fetch(
            f"SELECT {_PARTICIPANT_COLUMNS} FROM random_connection_participants "
            "WHERE room_id = ANY($1::text[]) ORDER BY room_id, position",
            room_ids,
        )
        message_rows = await conn.fetch(
            "SELECT room_id, sender_id, text, sent_at FROM random_connection_messages "
            "WHERE room_id = ANY($1::text[]) ORDER BY room_id, id",
            room_ids,
        )

        participants: dict[str, list[Participant]] = defaultdict(list)
        for p in participant_rows:
            data = dict(p)
            participants[data.pop("room_id")].append(Participant(**data))

        messages: dict[str, list[TranscriptMessage]] = defaultdict(list)
        for m in message_rows:
            messages[m["room_id"]].append(
                TranscriptMessage(sender_id=m["sender_id"], text=m["text"], timestamp=m["sent_at"])
            )

        return [
            RandomConnection(
                **dict(row),
                participants=participants[row["room_id"]],
                messages=messages[row["room_id"]],
            )
            for row in rows
        ]

    async def _get(self, conn: asyncpg.Connection, room_id: str) -> RandomConnection | None:
        row = await conn.fetchrow(
            f"SELECT {_SESSION_COLUMNS} FROM random_connections c WHERE c.room_id = $1",
            room_id,
        )
        if not row:
            return None
        sessions = await self._hydrate(conn, [row])
        return sessions[0]

    # ==================== Lifecycle ====================

    async def create_session(
        self,
        participants: list[Participant],
        game_preference: str,
        created_by: str,
    ) -> RandomConnection:
        """Open a new active room for the given participants.

        Raises ConflictError if any participant already sits in an open room.
        """
        room_id = str(uuid.uuid4())
        now = self.clock()
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO random_connections
                            (room_id, game_preference, status, start_time, created_by, created_at)
                        VALUES ($1, $2, 'active', $3, $4, $3)
                        """,
                        room_id,
                        game_preference,
                        now,
                        created_by,
                    )
                    await conn.executemany(
                        """
                        INSERT INTO random_connection_participants (
                            room_id, user_id, position, username, display_name,
                            avatar_ref, video_enabled, joined_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                        """,
                        [
                            (
                                room_id,
                                p.user_id,
                                position,
                                p.username,
                                p.display_name,
                                p.avatar_ref,
                                p.video_enabled,
                                p.joined_at,
                            )
                            for position, p in enumerate(participants)
                        ],
                    )
                    session = await self._get(conn, room_id)
        except asyncpg.UniqueViolationError:
            user_ids = ", ".join(p.user_id for p in participants)
            raise ConflictError(f"A participant already has an open connection ({user_ids})") from None

        assert session is not None
        return session

    async def mark_ended(
        self, room_id: str, user_id: str, reason: str
    ) -> tuple[RandomConnection | None, bool]:
        """Close a room on behalf of ``user_id``.

        Returns ``(session, changed)``. A room that is already closed is
        returned unchanged with ``changed=False``; a missing room gives
        ``(None, False)``.
        """
        now = self.clock()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                closed = await conn.fetchval(
                    """
                    UPDATE random_connections
                    SET status   = 'disconnected',
                        end_time = $2,
                        duration = FLOOR(EXTRACT(EPOCH FROM ($2 - start_time)))::int
                    WHERE room_id = $1 AND status IN ('waiting', 'active')
                    RETURNING room_id
                    """,
                    room_id,
                    now,
                )
                if closed:
                    await conn.execute(
                        """
                        UPDATE random_connection_participants
                        SET is_open = FALSE,
                            left_at = CASE WHEN user_id = $2 THEN $3 ELSE left_at END
                        WHERE room_id = $1
                        """,
                        room_id,
                        user_id,
                        now,
                    )
                    logger.info(f"Room {room_id} closed by {user_id}: {reason}")
                session = await self._get(conn, room_id)
        return session, bool(closed)

    # ==================== Lookups ====================

    async def find_session_by_id(self, room_id: str) -> RandomConnection | None:
        async with self.pool.acquire() as conn:
            return await self._get(conn, room_id)

    async def find_open_session_for_user(self, user_id: str) -> RandomConnection | None:
        """The open room a user sits in, most recent first if several exist."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM random_connections c
                JOIN random_connection_participants p ON p.room_id = c.room_id
                WHERE p.user_id = $1 AND c.status IN ('waiting', 'active')
                ORDER BY c.start_time DESC
                """,
                user_id,
            )
            if len(rows) > 1:
                logger.warning(
                    f"Consistency violation: user {user_id} has {len(rows)} open rooms, "
                    f"using {rows[0]['room_id']}"
                )
            sessions = await self._hydrate(conn, rows[:1])
            return sessions[0] if sessions else None

    async def list_closed_sessions_for_user(
        self, user_id: str, page: int = 1, limit: int = 10
    ) -> list[RandomConnection]:
        """Ended/disconnected rooms of a user, newest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM random_connections c
                JOIN random_connection_participants p ON p.room_id = c.room_id
                WHERE p.user_id = $1 AND c.status IN ('ended', 'disconnected')
                ORDER BY c.created_at DESC, c.room_id
                LIMIT $2 OFFSET $3
                """,
                user_id,
                limit,
                (page - 1) * limit,
            )
            return await self._hydrate(conn, rows)

    async def count_closed_sessions_for_user(self, user_id: str) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT COUNT(*)
                FROM random_connections c
                JOIN random_connection_participants p ON p.room_id = c.room_id
                WHERE p.user_id = $1 AND c.status IN ('ended', 'disconnected')
                """,
                user_id,
            )

    # ==================== Transcript ====================

    async def append_message(self, room_id: str, sender_id: str, text: str) -> TranscriptMessage:
        """Append to an open room's transcript, dropping the oldest beyond the limit."""
        now = self.clock()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.fetchval(
                    "SELECT status FROM random_connections WHERE room_id = $1 FOR UPDATE",
                    room_id,
                )
                if status not in SessionStatus.OPEN:
                    raise NotFoundError("Connection not found")
                await conn.execute(
                    "INSERT INTO random_connection_messages (room_id, sender_id, text, sent_at) "
                    "VALUES ($1, $2, $3, $4)",
                    room_id,
                    sender_id,
                    text,
                    now,
                )
                await conn.execute(
                    """
                    DELETE FROM random_connection_messages
                    WHERE room_id = $1 AND id NOT IN (
                        SELECT id FROM random_connection_messages
                        WHERE room_id = $1 ORDER BY id DESC LIMIT $2
                    )
                    """,
                    room_id,
                    self.transcript_limit,
                )
        return TranscriptMessage(sender_id=sender_id, text=text, timestamp=now)
