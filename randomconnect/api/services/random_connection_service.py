"""Random connection service: lifecycle of the wait queue and rooms.

Per user the flow is ``idle -> waiting -> active -> disconnected/idle``:

* join: cleanup, enqueue, try to match against the oldest waiting user
* disconnect: close the room, tell the partner, re-queue them after a delay
* auto re-queue: put an abandoned partner back in line with camera off

Locking: every operation holds the acting user's lock. The match step
(find, claim pair, create room) and cleanup (close room, dequeue) also hold a
single match lock so nobody observes a claimed pair before its room exists.
Lock order is always user lock, then match lock.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from randomconnect.api.services.matcher import Matcher
from randomconnect.shared.clock import Clock, utcnow
from randomconnect.shared.errors import (
    ConflictError,
    DeliveryError,
    NotFoundError,
    ValidationError,
)
from randomconnect.shared.events import (
    CONNECTION_MATCHED,
    PARTNER_DISCONNECTED,
    RANDOM_CONNECTION_MESSAGE,
    REJOINED_QUEUE,
    WEBRTC_SIGNAL,
    EventGateway,
)
from randomconnect.shared.identity import IdentityProvider
from randomconnect.shared.models import (
    Participant,
    QueueEntry,
    RandomConnection,
    TranscriptMessage,
    UserIdentity,
)
from randomconnect.shared.repositories.base import SessionStore, WaitQueue

logger = logging.getLogger(__name__)

MAX_GAME_LENGTH = 64
MAX_MESSAGE_LENGTH = 500
MAX_HISTORY_LIMIT = 50
DEFAULT_REQUEUE_DELAY = 2.0

REASON_DISCONNECTED = "User disconnected"
REASON_LEFT = "User left"
REASON_LOGGED_OUT = "User logged out"


@dataclass
class JoinResult:
    matched: bool
    session: RandomConnection | None = None


@dataclass
class CleanupResult:
    closed_sessions: list[RandomConnection] = field(default_factory=list)
    left_queue: bool = False

    @property
    def cleaned(self) -> int:
        return len(self.closed_sessions)


@dataclass
class HistoryPage:
    sessions: list[RandomConnection]
    total: int
    total_pages: int
    current_page: int
    limit: int


class _UserLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class RandomConnectionService:
    """Coordinates WaitQueue, SessionStore, Matcher and the event gateway."""

    def __init__(
        self,
        queue: WaitQueue,
        sessions: SessionStore,
        gateway: EventGateway,
        identities: IdentityProvider | None = None,
        *,
        requeue_delay: float = DEFAULT_REQUEUE_DELAY,
        clock: Clock = utcnow,
    ) -> None:
        self.queue = queue
        self.sessions = sessions
        self.gateway = gateway
        self.identities = identities
        self.requeue_delay = requeue_delay
        self.clock = clock
        self.matcher = Matcher(queue)
        self._match_lock = asyncio.Lock()
        self._user_locks: dict[str, _UserLock] = {}
        self._pending_requeues: dict[str, asyncio.Task] = {}

    # ==================== Locking ====================

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        """Serialize operations for one user. Entries vanish once unused."""
        entry = self._user_locks.get(user_id)
        if entry is None:
            entry = self._user_locks[user_id] = _UserLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._user_locks[user_id]

    # ==================== Validation ====================

    @staticmethod
    def _validate_game(game_preference: str | None) -> str:
        game = (game_preference or "").strip()
        if not game:
            raise ValidationError("Game selection is required")
        if len(game) > MAX_GAME_LENGTH:
            raise ValidationError(f"Game selection must be at most {MAX_GAME_LENGTH} characters")
        return game

    @staticmethod
    def _validate_room_id(room_id: str | None) -> str:
        if not room_id or not room_id.strip():
            raise ValidationError("Room ID is required")
        return room_id.strip()

    # ==================== Queue ====================

    async def join_queue(
        self, identity: UserIdentity, game_preference: str, video_enabled: bool = True
    ) -> JoinResult:
        """Enter the queue for a game and match instantly if someone is waiting."""
        game = self._validate_game(game_preference)
        user_id = identity.user_id

        async with self._user_lock(user_id):
            self._cancel_pending_requeue(user_id)
            await self._cleanup(user_id, REASON_LEFT, requeue_partner=True)
            await self.queue.enqueue(self._entry_for(identity, game, video_enabled))
            logger.info(f"User {user_id} joined queue for {game} (video={video_enabled})")
            return await self._match_or_wait(user_id, game)

    async def leave_queue(self, user_id: str) -> None:
        """Leave the queue. Also cancels a pending automatic re-queue."""
        async with self._user_lock(user_id):
            cancelled = self._cancel_pending_requeue(user_id)
            removed = await self.queue.dequeue(user_id)
        if not removed and not cancelled:
            raise NotFoundError("You are not in the queue")
        logger.info(f"User {user_id} left the queue")

    async def sweep_expired(self) -> int:
        """Drop expired queue entries (background counterpart of the lazy purge)."""
        return await self.queue.purge_expired()

    async def queue_size(self, game_preference: str | None = None) -> int:
        return await self.queue.count_waiting(game_preference)

    def _entry_for(self, identity: UserIdentity, game: str, video_enabled: bool) -> QueueEntry:
        now = self.clock()
        return QueueEntry(
            user_id=identity.user_id,
            username=identity.username,
            display_name=identity.display_name,
            avatar_ref=identity.avatar_ref,
            game_preference=game,
            video_enabled=video_enabled,
            joined_at=now,
            expires_at=now,  # stores stamp the real expiry
        )

    # ==================== Matching ====================

    async def _match_or_wait(self, user_id: str, game: str) -> JoinResult:
        """Match ``user_id`` (already enqueued) or leave them waiting.

        Caller holds the user's lock.
        """
        created: RandomConnection | None = None
        async with self._match_lock:
            while True:
                partner = await self.matcher.attempt_match(user_id, game)
                if partner is None:
                    break
                claimed = await self.queue.claim_pair(user_id, partner.user_id)
                if claimed:
                    created = await self._open_session(claimed, user_id, game)
                    break
                if await self.queue.get_waiting(user_id) is None:
                    break
                # partner left or expired between lookup and claim; try the next one

            if created is None and await self.queue.get_waiting(user_id) is None:
                # Our own entry was consumed by someone else's match
                existing = await self.sessions.find_open_session_for_user(user_id)
                if existing is not None:
                    return JoinResult(matched=True, session=existing)

        if created is None:
            return JoinResult(matched=False)
        await self._announce_match(created)
        return JoinResult(matched=True, session=created)

    async def _open_session(
        self, claimed: list[QueueEntry], requester_id: str, game: str
    ) -> RandomConnection | None:
        """Create the room for a claimed pair, requester first.

        On conflict the claimed entries of users without an open room go back
        into the queue and None is returned.
        """
        now = self.clock()
        ordered = sorted(claimed, key=lambda e: e.user_id != requester_id)
        participants = [
            Participant(
                user_id=e.user_id,
                username=e.username,
                display_name=e.display_name,
                avatar_ref=e.avatar_ref,
                video_enabled=e.video_enabled,
                joined_at=now,
            )
            for e in ordered
        ]
        try:
            session = await self.sessions.create_session(participants, game, created_by=requester_id)
        except ConflictError as e:
            logger.warning(f"Match for {requester_id} aborted: {e.message}")
            for entry in claimed:
                if await self.sessions.find_open_session_for_user(entry.user_id) is None:
                    await self.queue.restore(entry)
            return None

        partner_id = ordered[1].user_id
        logger.info(f"Matched {requester_id} with {partner_id} for {game} in room {session.room_id}")
        return session

    async def _announce_match(self, session: RandomConnection) -> None:
        data = {
            "roomId": session.room_id,
            "participants": [p.to_payload() for p in session.participants],
            "gamePreference": session.game_preference,
        }
        for p in session.participants:
            await self._emit(p.user_id, CONNECTION_MATCHED, data)

    # ==================== Sessions ====================

    async def get_current_connection(self, user_id: str) -> RandomConnection:
        session = await self.sessions.find_open_session_for_user(user_id)
        if session is None:
            raise NotFoundError("No active connection found")
        return session

    async def disconnect(self, user_id: str, room_id: str) -> RandomConnection:
        """Leave a room. Repeating it on a closed room returns the closed record."""
        room_id = self._validate_room_id(room_id)
        async with self._user_lock(user_id):
            session = await self.sessions.find_session_by_id(room_id)
            if session is None or not session.has_participant(user_id):
                raise NotFoundError("Connection not found")
            if not session.is_open:
                logger.info(f"Room {room_id} already closed, disconnect by {user_id} is a no-op")
                return session
            closed, changed = await self.sessions.mark_ended(room_id, user_id, REASON_DISCONNECTED)

        if closed is None:
            raise NotFoundError("Connection not found")
        if changed:
            await self._notify_partners(closed, user_id, REASON_DISCONNECTED, requeue=True)
        return closed

    async def cleanup_current(self, user_id: str) -> CleanupResult:
        """Close whatever the user is in (page refresh). The partner is re-queued."""
        async with self._user_lock(user_id):
            return await self._cleanup(user_id, REASON_LEFT, requeue_partner=True)

    async def cleanup_on_logout(self, user_id: str) -> CleanupResult:
        """Close everything for a user leaving the platform. Nobody is re-queued."""
        async with self._user_lock(user_id):
            self._cancel_pending_requeue(user_id)
            return await self._cleanup(user_id, REASON_LOGGED_OUT, requeue_partner=False)

    async def _cleanup(self, user_id: str, reason: str, *, requeue_partner: bool) -> CleanupResult:
        """Close open rooms and drop the queue entry. Caller holds the user's lock."""
        result = CleanupResult()
        async with self._match_lock:
            while True:
                session = await self.sessions.find_open_session_for_user(user_id)
                if session is None:
                    break
                closed, changed = await self.sessions.mark_ended(session.room_id, user_id, reason)
                if not changed or closed is None:
                    break
                result.closed_sessions.append(closed)
            result.left_queue = await self.queue.dequeue(user_id)

        for closed in result.closed_sessions:
            logger.info(f"Cleaned up room {closed.room_id} for {user_id} ({reason})")
            await self._notify_partners(closed, user_id, reason, requeue=requeue_partner)
        return result

    async def _notify_partners(
        self, session: RandomConnection, user_id: str, reason: str, *, requeue: bool
    ) -> None:
        data = {"roomId": session.room_id, "disconnectedUserId": user_id, "reason": reason}
        for other in session.others(user_id):
            await self._emit(other.user_id, PARTNER_DISCONNECTED, data)
            if requeue:
                self._schedule_requeue(other, session.game_preference)

    # ==================== Auto re-queue ====================

    def _schedule_requeue(self, participant: Participant, game: str) -> None:
        user_id = participant.user_id
        pending = self._pending_requeues.get(user_id)
        if pending is not None and not pending.done():
            logger.debug(f"Auto-requeue already pending for {user_id}")
            return
        task = asyncio.create_task(
            self._delayed_requeue(participant, game), name=f"auto-requeue:{user_id}"
        )
        self._pending_requeues[user_id] = task
        task.add_done_callback(lambda t, uid=user_id: self._forget_requeue(uid, t))

    def _forget_requeue(self, user_id: str, task: asyncio.Task | None) -> None:
        if task is not None and self._pending_requeues.get(user_id) is task:
            del self._pending_requeues[user_id]

    def _cancel_pending_requeue(self, user_id: str) -> bool:
        """Cancel a scheduled re-queue.

        Only called while holding the user's lock, so the task is either
        sleeping or waiting for that lock, never half way through.
        """
        task = self._pending_requeues.pop(user_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Cancelled pending auto-requeue for {user_id}")
        return True

    @property
    def pending_requeues(self) -> dict[str, asyncio.Task]:
        return dict(self._pending_requeues)

    async def _delayed_requeue(self, participant: Participant, game: str) -> None:
        if self.requeue_delay > 0:
            await asyncio.sleep(self.requeue_delay)
        try:
            await self.auto_requeue(participant.user_id, game, fallback=participant.identity())
        except asyncio.CancelledError:
            raise
        except Exception:
            # No caller to report to, and no retry: the user can rejoin manually
            logger.exception(f"Auto-requeue failed for {participant.user_id}")

    async def auto_requeue(
        self, user_id: str, game_preference: str, fallback: UserIdentity | None = None
    ) -> JoinResult | None:
        """Put an abandoned partner back in line with video off.

        Returns None when the user is already waiting or already in a room.
        """
        game = self._validate_game(game_preference)
        async with self._user_lock(user_id):
            # From here on a later abandonment must schedule a fresh re-queue
            self._forget_requeue(user_id, asyncio.current_task())
            if await self.queue.get_waiting(user_id) is not None:
                logger.info(f"Auto-requeue skipped for {user_id}: already waiting")
                return None
            if await self.sessions.find_open_session_for_user(user_id) is not None:
                logger.info(f"Auto-requeue skipped for {user_id}: already connected")
                return None

            identity = await self._resolve_identity(user_id, fallback)
            # Camera defaults OFF after an involuntary disconnect
            await self.queue.enqueue(self._entry_for(identity, game, video_enabled=False))
            logger.info(f"User {user_id} automatically re-queued for {game}")
            result = await self._match_or_wait(user_id, game)

        if not result.matched:
            await self._emit(user_id, REJOINED_QUEUE, {"gamePreference": game})
        return result

    async def _resolve_identity(self, user_id: str, fallback: UserIdentity | None) -> UserIdentity:
        if self.identities is not None:
            identity = await self.identities.resolve(user_id)
            if identity is not None:
                return identity
        return fallback or UserIdentity(user_id=user_id)

    async def shutdown(self) -> None:
        """Cancel scheduled re-queues and wait for them to unwind."""
        tasks = list(self._pending_requeues.values())
        self._pending_requeues.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} pending auto-requeue(s)")

    # ==================== Messages & signaling ====================

    async def _open_session_for(self, user_id: str, room_id: str) -> RandomConnection:
        room_id = self._validate_room_id(room_id)
        session = await self.sessions.find_session_by_id(room_id)
        if session is None or not session.is_open or not session.has_participant(user_id):
            raise NotFoundError("Connection not found")
        return session

    async def send_message(self, user_id: str, room_id: str, text: str) -> TranscriptMessage:
        """Append to the room transcript and forward to the other participant."""
        text = (text or "").strip()
        if not text or len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be between 1 and {MAX_MESSAGE_LENGTH} characters")

        session = await self._open_session_for(user_id, room_id)
        message = await self.sessions.append_message(session.room_id, user_id, text)

        data = {"roomId": session.room_id, **message.to_payload()}
        for other in session.others(user_id):
            await self._emit(other.user_id, RANDOM_CONNECTION_MESSAGE, data)
        return message

    async def relay_signal(
        self,
        user_id: str,
        room_id: str,
        signal: dict[str, Any],
        target_user_id: str | None = None,
    ) -> int:
        """Forward an opaque WebRTC signaling payload to the partner(s).

        Returns the number of recipients.
        """
        if not signal:
            raise ValidationError("Signal payload is required")
        session = await self._open_session_for(user_id, room_id)

        targets = session.others(user_id)
        if target_user_id is not None:
            targets = [p for p in targets if p.user_id == target_user_id]
            if not targets:
                raise NotFoundError("Partner not found in this connection")

        data = {"roomId": session.room_id, "fromUserId": user_id, "signal": signal}
        for target in targets:
            await self._emit(target.user_id, WEBRTC_SIGNAL, data)
        return len(targets)

    # ==================== History ====================

    async def get_history(self, user_id: str, page: int = 1, limit: int = 10) -> HistoryPage:
        """Closed rooms of the user, newest first."""
        if page < 1:
            raise ValidationError("Page must be at least 1")
        if not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {MAX_HISTORY_LIMIT}")

        total = await self.sessions.count_closed_sessions_for_user(user_id)
        sessions = await self.sessions.list_closed_sessions_for_user(user_id, page, limit)
        return HistoryPage(
            sessions=sessions,
            total=total,
            total_pages=math.ceil(total / limit),
            current_page=page,
            limit=limit,
        )

    # ==================== Events ====================

    async def _emit(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        """Publish best-effort: delivery problems never fail the operation."""
        try:
            await self.gateway.publish(user_id, event, data)
        except DeliveryError as e:
            logger.warning(f"Event {event} to {user_id} not delivered: {e}")
        except Exception:
            logger.exception(f"Unexpected gateway error sending {event} to {user_id}")
