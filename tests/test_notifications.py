from __future__ import annotations

import pytest

from collab_mcp.coordination import (
    ClaimStore,
    NotificationCenter,
    ReleaseNotifier,
    SessionRegistry,
    WaitQueue,
)
from collab_mcp.coordination.types import NotificationType


@pytest.fixture
def registry(database):
    return SessionRegistry(database)


@pytest.fixture
def center(database):
    return NotificationCenter(database)


@pytest.fixture
def queue(database):
    return WaitQueue(database)


def test_release_fan_out_in_service_order(database, registry, center, queue) -> None:
    owner = registry.create(project_root="/repo", name="owner")
    claim = ClaimStore(database).create_claim(
        session_id=owner.id, intent="x", files=["src/a.ts", "src/b.ts"]
    )
    first = registry.create(project_root="/repo", name="first")
    second = registry.create(project_root="/repo", name="second")
    queue.join(claim_id=claim.id, session_id=first.id, intent="a")
    queue.join(claim_id=claim.id, session_id=second.id, intent="b")

    notified = ReleaseNotifier(queue, center).notify_queue_on_claim_release(
        claim.id, owner.id, claim.files
    )

    assert notified == 2
    [ready] = center.list_notifications(first.id)
    assert ready.type is NotificationType.QUEUE_READY
    assert ready.title == "You are next in queue!"
    assert ready.message == (
        "The claim for src/a.ts, src/b.ts has been released. You can now claim these files."
    )
    assert ready.reference_type == "claim"
    assert ready.reference_id == claim.id
    assert ready.metadata == {
        "claim_id": claim.id,
        "files": ["src/a.ts", "src/b.ts"],
        "released_by": owner.id,
        "queue_position": 1,
    }

    [released] = center.list_notifications(second.id)
    assert released.type is NotificationType.CLAIM_RELEASED
    assert released.message == "A claim you were waiting for has been released. Position: 2"

    # Waiters leave the queue themselves.
    assert len(queue.queued_sessions(claim.id)) == 2


def test_notifier_without_waiters_sends_nothing(registry, center, queue) -> None:
    assert ReleaseNotifier(queue, center).notify_queue_on_claim_release("c-1", "s-1", ["a"]) == 0


def test_list_filters_and_limit(registry, center) -> None:
    session = registry.create(project_root="/repo")
    created = [
        center.create(
            session_id=session.id,
            type=NotificationType.SESSION_MESSAGE if index % 2 else NotificationType.CLAIM_RELEASED,
            title=f"n{index}",
            message="m",
        )
        for index in range(4)
    ]

    newest_first = center.list_notifications(session.id)
    assert [item.title for item in newest_first] == ["n3", "n2", "n1", "n0"]

    messages = center.list_notifications(session.id, type="session_message")
    assert [item.title for item in messages] == ["n3", "n1"]

    assert len(center.list_notifications(session.id, limit=0)) == 1
    assert len(center.list_notifications(session.id, limit=1000)) == 4

    assert center.mark_read([created[0].id, created[1].id]) == 2
    assert center.mark_read([created[0].id]) == 0
    unread = center.list_notifications(session.id, unread_only=True)
    assert [item.title for item in unread] == ["n3", "n2"]
    assert center.get(created[0].id).read_at is not None
