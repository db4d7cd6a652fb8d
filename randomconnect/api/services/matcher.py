"""Partner selection for random connections."""

from __future__ import annotations

from randomconnect.shared.models.connection_queue import QueueEntry
from randomconnect.shared.repositories.base import WaitQueue


class Matcher:
    """Strict FIFO per game: the longest-waiting compatible user wins.

    No scoring, ranking or randomization. Never mutates the queue; the caller
    claims the returned entry.
    """

    def __init__(self, queue: WaitQueue) -> None:
        self.queue = queue

    async def attempt_match(self, requester_id: str, game_preference: str) -> QueueEntry | None:
        return await self.queue.find_oldest_waiting(game_preference, excluding_user_id=requester_id)
