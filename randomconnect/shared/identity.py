"""Last-seen identity snapshots, keyed by user id.

The auth layer records every identity it verifies. Background work that has no
request (auto re-queue) resolves display data from here, falling back to the
snapshot it already holds.
"""

from __future__ import annotations

import logging
from typing import Protocol

from cachetools import TTLCache  # type: ignore[import-untyped]

from randomconnect.shared.models.random_connection import UserIdentity

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    async def resolve(self, user_id: str) -> UserIdentity | None: ...


class IdentityDirectory:
    """In-process TTL cache of identities seen on authenticated requests."""

    def __init__(self, maxsize: int = 10_000, ttl: float = 6 * 3600) -> None:
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)

    def remember(self, identity: UserIdentity) -> None:
        self._cache[identity.user_id] = identity

    async def resolve(self, user_id: str) -> UserIdentity | None:
        return self._cache.get(user_id)
