"""Event gateway adapters: user-addressed, best-effort event delivery.

The coordinator only needs ``publish(user_id, event, data)``. Adapters raise
``DeliveryError`` on failure; callers log and continue.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Protocol

import asyncpg

from randomconnect.shared.errors import DeliveryError

logger = logging.getLogger(__name__)

CONNECTION_MATCHED = "connection-matched"
PARTNER_DISCONNECTED = "partner-disconnected"
REJOINED_QUEUE = "rejoined-queue"
RANDOM_CONNECTION_MESSAGE = "random-connection-message"
WEBRTC_SIGNAL = "webrtc-signal"

DEFAULT_EVENT_CHANNEL = "random_connection_events"

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more
_NOTIFY_PAYLOAD_LIMIT = 8000


class EventGateway(Protocol):
    async def publish(self, user_id: str, event: str, data: dict[str, Any]) -> None: ...


def encode_event(user_id: str, event: str, data: dict[str, Any]) -> str:
    return json.dumps({"userId": user_id, "event": event, "data": data}, default=str)


class PgNotifyGateway:
    """Publish events on a PostgreSQL NOTIFY channel.

    A separate fan-out process LISTENs on the channel and forwards each
    payload to the sockets of ``userId``.
    """

    def __init__(self, pool: asyncpg.Pool, channel: str = DEFAULT_EVENT_CHANNEL) -> None:
        self.pool = pool
        self.channel = channel

    async def publish(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        payload = encode_event(user_id, event, data)
        if len(payload.encode("utf-8")) >= _NOTIFY_PAYLOAD_LIMIT:
            raise DeliveryError(f"{event} payload for {user_id} exceeds NOTIFY limit")
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("SELECT pg_notify($1, $2)", self.channel, payload)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError) as e:
            raise DeliveryError(f"Failed to publish {event} to {user_id}: {e}") from e


class LocalEventGateway:
    """Deliver events to in-process subscriber queues.

    Each subscription is a bounded ``asyncio.Queue`` of ``(event, data)``
    tuples. A user with no subscribers simply misses the event.
    """

    def __init__(self, max_pending: int = 100) -> None:
        self.max_pending = max_pending
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)

    def subscribe(self, user_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_pending)
        self._subscribers[user_id].append(queue)
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(user_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, []))

    async def publish(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        queues = self._subscribers.get(user_id)
        if not queues:
            logger.debug(f"No subscribers for {user_id}, dropping {event}")
            return
        dropped = 0
        for queue in queues:
            try:
                queue.put_nowait((event, data))
            except asyncio.QueueFull:
                dropped += 1
        if dropped:
            raise DeliveryError(f"{dropped} subscriber queue(s) full for {user_id}, {event} dropped")
