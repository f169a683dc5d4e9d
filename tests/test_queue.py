from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from collab_mcp.coordination import ClaimStore, SessionRegistry, WaitQueue
from collab_mcp.coordination.errors import (
    AlreadyInQueue,
    CannotQueueOwnClaim,
    ClaimNotFound,
    SessionNotFound,
)


@pytest.fixture
def registry(database):
    return SessionRegistry(database)


@pytest.fixture
def store(database):
    return ClaimStore(database)


@pytest.fixture
def queue(database):
    return WaitQueue(database)


@pytest.fixture
def held_claim(registry, store):
    owner = registry.create(project_root="/repo", name="owner")
    return store.create_claim(session_id=owner.id, intent="rewrite", files=["src/a.ts"])


def _waiter(registry, name):
    return registry.create(project_root="/repo", name=name)


def test_positions_strictly_increase_even_after_tail_leaves(registry, queue, held_claim) -> None:
    first = queue.join(claim_id=held_claim.id, session_id=_waiter(registry, "w1").id, intent="a")
    second = queue.join(claim_id=held_claim.id, session_id=_waiter(registry, "w2").id, intent="b")
    assert (first.entry.position, second.entry.position) == (1, 2)

    assert queue.leave(second.entry.id) is True
    third = queue.join(claim_id=held_claim.id, session_id=_waiter(registry, "w3").id, intent="c")

    assert third.entry.position == 3
    assert third.queue_length == 2


def test_service_order_is_priority_then_position(registry, queue, held_claim) -> None:
    queue.join(claim_id=held_claim.id, session_id=_waiter(registry, "normal").id, intent="a")
    queue.join(
        claim_id=held_claim.id, session_id=_waiter(registry, "urgent").id, intent="b", priority=95
    )
    queue.join(claim_id=held_claim.id, session_id=_waiter(registry, "later").id, intent="c")

    ordered = queue.queued_sessions(held_claim.id)

    assert [entry.session_name for entry in ordered] == ["urgent", "normal", "later"]
    assert ordered[0].claim_owner_name == "owner"
    assert ordered[0].claim_files == ["src/a.ts"]


def test_estimated_wait_uses_scopes(registry, queue, held_claim) -> None:
    first = queue.join(
        claim_id=held_claim.id, session_id=_waiter(registry, "w1").id, intent="a", scope="large"
    )
    second = queue.join(
        claim_id=held_claim.id, session_id=_waiter(registry, "w2").id, intent="b", scope="small"
    )

    # Half of the held medium claim, plus every entry ahead.
    assert first.entry.estimated_wait_minutes == 60
    assert second.entry.estimated_wait_minutes == 480 + 60


def test_join_rejections(registry, queue, held_claim) -> None:
    waiter = _waiter(registry, "w1")
    queue.join(claim_id=held_claim.id, session_id=waiter.id, intent="a")

    with pytest.raises(AlreadyInQueue):
        queue.join(claim_id=held_claim.id, session_id=waiter.id, intent="again")
    with pytest.raises(CannotQueueOwnClaim):
        queue.join(claim_id=held_claim.id, session_id=held_claim.session_id, intent="mine")
    with pytest.raises(ClaimNotFound):
        queue.join(claim_id="missing", session_id=waiter.id, intent="a")
    with pytest.raises(SessionNotFound):
        queue.join(claim_id=held_claim.id, session_id="ghost", intent="a")


def test_join_released_claim_returns_no_entry(registry, store, queue, held_claim) -> None:
    store.release_claim(held_claim.id, status="completed")

    result = queue.join(claim_id=held_claim.id, session_id=_waiter(registry, "w1").id, intent="a")

    assert result.entry is None
    assert result.claim.status.value == "completed"


def test_remove_session_from_all_queues(registry, store, queue, held_claim) -> None:
    owner = registry.create(project_root="/repo", name="owner-2")
    other_claim = store.create_claim(session_id=owner.id, intent="x", files=["b.py"])
    waiter = _waiter(registry, "w1")
    queue.join(claim_id=held_claim.id, session_id=waiter.id, intent="a")
    queue.join(claim_id=other_claim.id, session_id=waiter.id, intent="b")

    assert queue.remove_session_from_all_queues(waiter.id) == 2
    assert queue.list_entries(session_id=waiter.id) == []
    assert queue.leave("missing") is False


def test_concurrent_joins_get_distinct_increasing_positions(registry, queue, held_claim) -> None:
    waiters = [_waiter(registry, f"w{index}") for index in range(12)]
    barrier = threading.Barrier(len(waiters))

    def join(session_id: str) -> int:
        barrier.wait()
        result = queue.join(claim_id=held_claim.id, session_id=session_id, intent="wait")
        return result.entry.position

    with ThreadPoolExecutor(max_workers=len(waiters)) as pool:
        positions = list(pool.map(join, [waiter.id for waiter in waiters]))

    assert sorted(positions) == list(range(1, len(waiters) + 1))
    entries = queue.queued_sessions(held_claim.id)
    assert [entry.position for entry in entries] == list(range(1, len(waiters) + 1))
    assert {entry.session_id for entry in entries} == {waiter.id for waiter in waiters}
