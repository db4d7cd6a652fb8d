"""Shared fixtures: in-memory stores driven by a controllable clock."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from randomconnect.api.services import RandomConnectionService
from randomconnect.shared.events import LocalEventGateway
from randomconnect.shared.models import UserIdentity
from randomconnect.shared.repositories import MemoryConnectionQueue, MemoryRandomConnectionStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_identity(user_id: str) -> UserIdentity:
    return UserIdentity(
        user_id=user_id,
        username=user_id.lower(),
        display_name=f"User {user_id}",
        avatar_ref=f"https://cdn.example/{user_id}.png",
    )


def drain(queue: asyncio.Queue) -> list[tuple[str, dict]]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


def event_names(queue: asyncio.Queue) -> list[str]:
    return [name for name, _ in drain(queue)]


async def settle(service: RandomConnectionService) -> None:
    """Wait for every auto re-queue, scheduled or already running, to finish."""
    while True:
        tasks = [
            t
            for t in asyncio.all_tasks()
            if t.get_name().startswith("auto-requeue:") and not t.done()
        ]
        tasks.extend(t for t in service.pending_requeues.values() if t not in tasks)
        if not tasks:
            return
        await asyncio.gather(*tasks, return_exceptions=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock: FakeClock) -> MemoryConnectionQueue:
    return MemoryConnectionQueue(clock=clock)


@pytest.fixture
def sessions(clock: FakeClock) -> MemoryRandomConnectionStore:
    return MemoryRandomConnectionStore(clock=clock, transcript_limit=5)


@pytest.fixture
def gateway() -> LocalEventGateway:
    return LocalEventGateway()


@pytest.fixture
async def service(queue, sessions, gateway, clock):
    svc = RandomConnectionService(queue, sessions, gateway, requeue_delay=0, clock=clock)
    yield svc
    await svc.shutdown()
