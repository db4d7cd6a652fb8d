"""Repository for the random_connection_queue table."""

from __future__ import annotations

import logging
from datetime import timedelta

import asyncpg

from randomconnect.shared.clock import Clock, utcnow
from randomconnect.shared.models.connection_queue import QUEUE_ENTRY_TTL, QueueEntry

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = (
    "id, user_id, username, display_name, avatar_ref, game_preference, "
    "video_enabled, status, joined_at, expires_at, updated_at"
)


class ConnectionQueueRepository:
    """Pure SQL operations for random_connection_queue.

    Only ``status = 'waiting'`` rows take part in matching. Matched, left and
    expired rows are deleted rather than kept.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        clock: Clock = utcnow,
        entry_ttl: timedelta = QUEUE_ENTRY_TTL,
    ) -> None:
        self.pool = pool
        self.clock = clock
        self.entry_ttl = entry_ttl

    async def enqueue(self, entry: QueueEntry) -> QueueEntry:
        """Insert or replace the waiting entry for ``entry.user_id`` (last write wins)."""
        now = self.clock()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO random_connection_queue (
                    user_id, username, display_name, avatar_ref, game_preference,
                    video_enabled, status, joined_at, expires_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, 'waiting', $7, $8, $7)
                ON CONFLICT (user_id) DO UPDATE SET
                    username        = EXCLUDED.username,
                    display_name    = EXCLUDED.display_name,
                    avatar_ref      = EXCLUDED.avatar_ref,
                    game_preference = EXCLUDED.game_preference,
                    video_enabled   = EXCLUDED.video_enabled,
                    status          = 'waiting',
                    joined_at       = EXCLUDED.joined_at,
                    expires_at      = EXCLUDED.expires_at,
                    updated_at      = EXCLUDED.updated_at
                RETURNING {_ENTRY_COLUMNS}
                """,
                entry.user_id,
                entry.username,
                entry.display_name,
                entry.avatar_ref,
                entry.game_preference,
                entry.video_enabled,
                now,
                now + self.entry_ttl,
            )
            return QueueEntry(**dict(row))

    async def dequeue(self, user_id: str) -> bool:
        """Remove the entry for a user. Returns True only if it was still live.

        Expired rows are deleted too, but count as not waiting.
        """
        async with self.pool.acquire() as conn:
            live = await conn.fetchval(
                "DELETE FROM random_connection_queue WHERE user_id = $1 AND status = 'waiting' "
                "RETURNING expires_at > $2",
                user_id,
                self.clock(),
            )
            return bool(live)

    async def get_waiting(self, user_id: str) -> QueueEntry | None:
        """Return the live waiting entry for a user, if any."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ENTRY_COLUMNS} FROM random_connection_queue "
                "WHERE user_id = $1 AND status = 'waiting' AND expires_at > $2",
                user_id,
                self.clock(),
            )
            if not row:
                return None
            return QueueEntry(**dict(row))

    async def find_oldest_waiting(
        self, game_preference: str, excluding_user_id: str
    ) -> QueueEntry | None:
        """Longest-waiting live entry for a game, other than the requester."""
        await self.purge_expired()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ENTRY_COLUMNS} FROM random_connection_queue "
                "WHERE game_preference = $1 AND status = 'waiting' "
                "AND user_id <> $2 AND expires_at > $3 "
                "ORDER BY joined_at ASC, id ASC LIMIT 1",
                game_preference,
                excluding_user_id,
                self.clock(),
            )
            if not row:
                return None
            return QueueEntry(**dict(row))

    async def purge_expired(self) -> int:
        """Delete entries past expires_at. Returns count of purged rows."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM random_connection_queue WHERE expires_at <= $1",
                self.clock(),
            )
            purged = int(result.split()[-1])
            if purged:
                logger.info(f"Purged {purged} expired queue entries")
            return purged

    async def claim_pair(self, first_user_id: str, second_user_id: str) -> list[QueueEntry]:
        """Delete both users' waiting entries, or neither.

        Returns the two claimed entries, or an empty list when either entry was
        already gone (claimed by a concurrent match, left or expired).
        """
        async with self.pool.acquire() as conn:
            tr = conn.transaction()
            await tr.start()
            try:
                rows = await conn.fetch(
                    "DELETE FROM random_connection_queue "
                    "WHERE user_id = ANY($1::text[]) AND status = 'waiting' AND expires_at > $2 "
                    f"RETURNING {_ENTRY_COLUMNS}",
                    [first_user_id, second_user_id],
                    self.clock(),
                )
            except BaseException:
                await tr.rollback()
                raise
            if len(rows) != 2:
                await tr.rollback()
                return []
            await tr.commit()
            return [QueueEntry(**dict(row)) for row in rows]

    async def restore(self, entry: QueueEntry) -> bool:
        """Put a previously claimed entry back with its original joined_at.

        A newer entry for the same user wins; returns False in that case.
        """
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                INSERT INTO random_connection_queue (
                    user_id, username, display_name, avatar_ref, game_preference,
                    video_enabled, status, joined_at, expires_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, 'waiting', $7, $8, $9)
                ON CONFLICT (user_id) DO NOTHING
                """,
                entry.user_id,
                entry.username,
                entry.display_name,
                entry.avatar_ref,
                entry.game_preference,
                entry.video_enabled,
                entry.joined_at,
                entry.expires_at,
                self.clock(),
            )
            return result == "INSERT 0 1"

    async def count_waiting(self, game_preference: str | None = None) -> int:
        """Count live waiting entries, optionally for one game."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM random_connection_queue "
                "WHERE status = 'waiting' AND expires_at > $1 "
                "AND ($2::text IS NULL OR game_preference = $2)",
                self.clock(),
                game_preference,
            )
