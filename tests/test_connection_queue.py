"""Tests for the in-memory wait queue."""

from datetime import timedelta

from randomconnect.shared.models import QueueEntry
from randomconnect.shared.repositories import MemoryConnectionQueue


def entry(user_id: str, game: str, clock, video: bool = True) -> QueueEntry:
    now = clock()
    return QueueEntry(
        user_id=user_id,
        game_preference=game,
        joined_at=now,
        expires_at=now,
        video_enabled=video,
    )


async def test_enqueue_stamps_expiry(queue: MemoryConnectionQueue, clock) -> None:
    stored = await queue.enqueue(entry("A", "Valorant", clock))
    assert stored.joined_at == clock()
    assert stored.expires_at == clock() + timedelta(minutes=30)
    assert stored.status == "waiting"


async def test_enqueue_replaces_existing_entry(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    clock.advance(seconds=5)
    await queue.enqueue(entry("A", "BGMI", clock, video=False))

    assert await queue.count_waiting() == 1
    waiting = await queue.get_waiting("A")
    assert waiting.game_preference == "BGMI"
    assert waiting.video_enabled is False
    assert waiting.joined_at == clock()


async def test_find_oldest_waiting_is_fifo(queue: MemoryConnectionQueue, clock) -> None:
    for user_id in ("A", "B", "C"):
        await queue.enqueue(entry(user_id, "Valorant", clock))
        clock.advance(seconds=1)

    oldest = await queue.find_oldest_waiting("Valorant", excluding_user_id="C")
    assert oldest.user_id == "A"
    oldest = await queue.find_oldest_waiting("Valorant", excluding_user_id="A")
    assert oldest.user_id == "B"


async def test_find_oldest_waiting_respects_game(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "BGMI", clock))
    assert await queue.find_oldest_waiting("Valorant", excluding_user_id="B") is None
    # game matching is exact
    assert await queue.find_oldest_waiting("bgmi", excluding_user_id="B") is None


async def test_find_oldest_waiting_never_returns_requester(
    queue: MemoryConnectionQueue, clock
) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    assert await queue.find_oldest_waiting("Valorant", excluding_user_id="A") is None


async def test_expired_entries_are_purged_on_lookup(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    clock.advance(minutes=31)

    assert await queue.get_waiting("A") is None
    assert await queue.find_oldest_waiting("Valorant", excluding_user_id="B") is None
    assert await queue.count_waiting() == 0
    assert await queue.dequeue("A") is False


async def test_purge_expired_counts_removed(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    clock.advance(minutes=20)
    await queue.enqueue(entry("B", "Valorant", clock))
    clock.advance(minutes=15)

    assert await queue.purge_expired() == 1
    assert await queue.get_waiting("B") is not None


async def test_dequeue(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    assert await queue.dequeue("A") is True
    assert await queue.dequeue("A") is False


async def test_claim_pair_removes_both(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    await queue.enqueue(entry("B", "Valorant", clock))

    claimed = await queue.claim_pair("B", "A")
    assert [e.user_id for e in claimed] == ["B", "A"]
    assert await queue.count_waiting() == 0


async def test_claim_pair_is_all_or_nothing(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))

    assert await queue.claim_pair("A", "B") == []
    assert await queue.get_waiting("A") is not None


async def test_restore_keeps_original_position(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    clock.advance(seconds=1)
    await queue.enqueue(entry("B", "Valorant", clock))
    claimed = await queue.claim_pair("A", "B")

    clock.advance(seconds=1)
    await queue.enqueue(entry("C", "Valorant", clock))
    for e in claimed:
        assert await queue.restore(e) is True

    oldest = await queue.find_oldest_waiting("Valorant", excluding_user_id="C")
    assert oldest.user_id == "A"


async def test_restore_does_not_override_newer_entry(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    await queue.enqueue(entry("B", "Valorant", clock))
    claimed = await queue.claim_pair("A", "B")

    await queue.enqueue(entry("A", "BGMI", clock))
    assert await queue.restore(claimed[0]) is False
    assert (await queue.get_waiting("A")).game_preference == "BGMI"


async def test_returned_entries_are_copies(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    waiting = await queue.get_waiting("A")
    waiting.game_preference = "changed"
    assert (await queue.get_waiting("A")).game_preference == "Valorant"


async def test_count_waiting_by_game(queue: MemoryConnectionQueue, clock) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    await queue.enqueue(entry("B", "BGMI", clock))
    await queue.enqueue(entry("C", "BGMI", clock))

    assert await queue.count_waiting() == 3
    assert await queue.count_waiting("BGMI") == 2


async def test_dequeue_of_expired_entry_reports_not_waiting(
    queue: MemoryConnectionQueue, clock
) -> None:
    await queue.enqueue(entry("A", "Valorant", clock))
    clock.advance(minutes=31)

    assert await queue.dequeue("A") is False
    assert queue._entries == {}
