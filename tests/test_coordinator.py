from __future__ import annotations

from pathlib import Path
import textwrap

import pytest

from collab_mcp.coordination import ClaimCoordinator
from collab_mcp.coordination.errors import (
    ClaimAlreadyReleased,
    ClaimNotFound,
    InvalidInput,
    NotificationNotFound,
    NotOwner,
    QueueEntryNotFound,
    SessionInactive,
    SessionNotFound,
)
from collab_mcp.coordination.types import ClaimStatus, ConflictMode, NotificationType, SessionStatus
from collab_mcp.policies import PolicyLoader


def _start(coordinator, name):
    return coordinator.start_session(project_root="/repo", name=name).session


def test_queue_ready_end_to_end(coordinator, audit_log) -> None:
    s1 = _start(coordinator, "s1")
    s2 = _start(coordinator, "s2")
    outcome = coordinator.claim(s1.id, intent="refactor auth", files=["src/auth.ts"])

    report = coordinator.check(["src/auth.ts"], session_id=s2.id)
    assert report.recommendation == "abort"
    assert report.can_edit is False

    joined = coordinator.join_queue(s2.id, outcome.claim.id, intent="add logging")
    assert joined.entry.position == 1

    released = coordinator.release(s1.id, outcome.claim.id, status="completed", summary="done")

    assert released.was_forced is False
    assert released.notified_sessions == 1
    [ready] = coordinator.list_notifications(s2.id, unread_only=True)
    assert ready.type is NotificationType.QUEUE_READY
    assert ready.metadata["released_by"] == s1.id
    assert coordinator.check(["src/auth.ts"], session_id=s2.id).recommendation == "proceed_all"
    assert audit_log.actions() == [
        "session_started",
        "session_started",
        "claim_created",
        "queue_joined",
        "claim_released",
    ]


def test_optimistic_double_win_informs_both_sides(coordinator, audit_log) -> None:
    s1 = _start(coordinator, "s1")
    s2 = _start(coordinator, "s2")

    first = coordinator.claim(s1.id, intent="one", files=["src/a.ts"])
    second = coordinator.claim(s2.id, intent="two", files=["src/a.ts"])

    assert first.conflicts == []
    assert [c.claim_id for c in second.conflicts] == [first.claim.id]
    assert second.claim.is_active
    assert second.notified_owners == 1

    [notice] = coordinator.list_notifications(s1.id)
    assert notice.type is NotificationType.CONFLICT_DETECTED
    assert notice.reference_id == second.claim.id
    assert notice.metadata["files"] == ["src/a.ts"]
    assert "conflict_detected" in audit_log.actions()


def test_non_owner_release_denied_with_staleness_hint(coordinator, clock) -> None:
    owner = _start(coordinator, "owner")
    other = _start(coordinator, "other")
    claim = coordinator.claim(owner.id, intent="x", files=["a.py"]).claim
    clock.advance(hours=3)
    coordinator.heartbeat(owner.id)
    coordinator.heartbeat(other.id)

    with pytest.raises(NotOwner) as excinfo:
        coordinator.release(other.id, claim.id, status="abandoned")

    context = excinfo.value.context
    assert context["claim_owner"] == "owner"
    assert context["claim_age_hours"] == 3.0
    assert context["is_stale"] is True
    assert excinfo.value.to_dict()["error"] == "NOT_OWNER"


def test_force_release_by_non_owner(coordinator) -> None:
    owner = _start(coordinator, "owner")
    other = _start(coordinator, "other")
    claim = coordinator.claim(owner.id, intent="x", files=["a.py"]).claim

    outcome = coordinator.release(other.id, claim.id, status="abandoned", force=True)

    assert outcome.was_forced is True
    assert outcome.claim.status is ClaimStatus.ABANDONED
    with pytest.raises(ClaimAlreadyReleased):
        coordinator.release(owner.id, claim.id, status="completed")


def test_force_release_can_require_opt_in(database) -> None:
    coordinator = ClaimCoordinator(database, force_release_requires_opt_in=True)
    owner = _start(coordinator, "owner")
    other = _start(coordinator, "other")
    claim = coordinator.claim(owner.id, intent="x", files=["a.py"]).claim

    with pytest.raises(NotOwner):
        coordinator.release(other.id, claim.id, status="abandoned", force=True)

    coordinator.configure(other.id, allow_release_others=True)
    outcome = coordinator.release(other.id, claim.id, status="abandoned", force=True)
    assert outcome.was_forced is True


def test_release_errors(coordinator) -> None:
    owner = _start(coordinator, "owner")

    with pytest.raises(ClaimNotFound):
        coordinator.release(owner.id, "missing", status="completed")
    with pytest.raises(InvalidInput):
        coordinator.release(owner.id, "missing", status="active")


def test_end_session_releases_claims_and_leaves_queues(coordinator, audit_log) -> None:
    leaver = _start(coordinator, "leaver")
    waiter = _start(coordinator, "waiter")
    holder = _start(coordinator, "holder")
    owned = coordinator.claim(leaver.id, intent="x", files=["a.py"]).claim
    other = coordinator.claim(holder.id, intent="y", files=["b.py"]).claim
    coordinator.join_queue(waiter.id, owned.id, intent="after leaver")
    coordinator.join_queue(leaver.id, other.id, intent="after holder")

    ended = coordinator.end_session(leaver.id, release_claims="complete")

    assert ended.session.status is SessionStatus.TERMINATED
    assert [claim.id for claim in ended.released_claims] == [owned.id]
    assert ended.claim_status is ClaimStatus.COMPLETED
    assert ended.removed_queue_entries == 1
    assert ended.notified_sessions == 1
    assert coordinator.claims.get_claim(owned.id).status is ClaimStatus.COMPLETED
    assert coordinator.list_queue(claim_id=other.id) == []
    assert audit_log.actions()[-2:] == ["claim_released", "session_ended"]

    with pytest.raises(SessionInactive):
        coordinator.claim(leaver.id, intent="z", files=["c.py"])
    with pytest.raises(SessionNotFound):
        coordinator.end_session("ghost")


def test_start_session_sweeps_stale_sessions(coordinator, clock) -> None:
    stale = _start(coordinator, "stale")
    claim = coordinator.claim(stale.id, intent="x", files=["a.py"]).claim
    clock.advance(minutes=45)

    started = coordinator.start_session(project_root="/repo", name="fresh")

    assert started.stale_sessions == 1
    assert started.released_claims == 1
    assert [session.name for session in started.active_sessions] == ["fresh"]
    assert coordinator.claims.get_claim(claim.id).status is ClaimStatus.ABANDONED


def test_check_recommends_safe_subset(coordinator) -> None:
    owner = _start(coordinator, "owner")
    caller = _start(coordinator, "caller")
    coordinator.claim(owner.id, intent="x", files=["a.py"])
    coordinator.claim(
        owner.id, intent="y", symbols=[{"file": "b.py", "symbols": ["parse"]}]
    )
    coordinator.update_status(
        caller.id,
        todos=[
            {"content": "one", "status": "in_progress"},
            {"content": "two", "status": "completed"},
        ],
    )

    files_report = coordinator.check(["a.py", "c.py"], session_id=caller.id)
    assert files_report.recommendation == "proceed_safe_only"
    assert files_report.safe_files == ["c.py"]
    assert files_report.blocked_files == ["a.py"]
    assert files_report.message == (
        "Edit ONLY these safe files: [c.py]. Skip blocked files: [a.py]."
    )
    payload = files_report.to_dict()
    assert payload["has_in_progress_todo"] is True
    assert payload["todos_status"] == {"total": 2, "in_progress": 1, "completed": 1, "pending": 0}
    assert payload["conflicts"][0]["session_name"] == "owner"

    symbol_report = coordinator.check(
        None, symbols=[{"file": "b.py", "symbols": ["parse", "render"]}], session_id=caller.id
    )
    assert symbol_report.recommendation == "proceed_safe_only"
    assert symbol_report.safe_symbols == [{"file": "b.py", "symbols": ["render"]}]
    assert symbol_report.blocked_symbols == [{"file": "b.py", "symbols": ["parse"]}]

    blocked = coordinator.check(["a.py"], session_id=caller.id)
    assert blocked.recommendation == "abort"
    assert blocked.message == "All 1 file(s) are blocked. Coordinate with other session(s) or wait."

    with pytest.raises(InvalidInput):
        coordinator.check([])


def test_release_file_notifies_only_on_full_release(coordinator) -> None:
    owner = _start(coordinator, "owner")
    waiter = _start(coordinator, "waiter")
    claim = coordinator.claim(owner.id, intent="x", files=["a.py", "b.py"]).claim
    coordinator.join_queue(waiter.id, claim.id, intent="next")

    partial = coordinator.release_file(owner.id, "a.py")
    assert partial.result.partial is True
    assert partial.notified_sessions == 0

    full = coordinator.release_file(owner.id, "b.py")
    assert full.result.partial is False
    assert full.notified_sessions == 1


def test_update_priority_rules(coordinator, audit_log) -> None:
    owner = _start(coordinator, "owner")
    other = _start(coordinator, "other")
    claim = coordinator.claim(owner.id, intent="x", files=["a.py"]).claim

    with pytest.raises(NotOwner):
        coordinator.update_claim_priority(other.id, claim.id, 80)

    updated, previous = coordinator.update_claim_priority(owner.id, claim.id, 92, reason="hotfix")
    assert previous == 50
    assert updated.priority == 92
    assert audit_log.records[-1]["metadata"]["new_level"] == "critical"

    coordinator.release(owner.id, claim.id, status="completed")
    with pytest.raises(ClaimAlreadyReleased):
        coordinator.update_claim_priority(owner.id, claim.id, 10)


def test_leave_queue_and_mark_read_check_ownership(coordinator) -> None:
    owner = _start(coordinator, "owner")
    waiter = _start(coordinator, "waiter")
    claim = coordinator.claim(owner.id, intent="x", files=["a.py"]).claim
    entry = coordinator.join_queue(waiter.id, claim.id, intent="next").entry

    with pytest.raises(NotOwner):
        coordinator.leave_queue(owner.id, entry.id)
    assert coordinator.leave_queue(waiter.id, entry.id).id == entry.id
    with pytest.raises(QueueEntryNotFound):
        coordinator.leave_queue(waiter.id, entry.id)

    coordinator.claim(waiter.id, intent="y", files=["a.py"])
    [notice] = coordinator.list_notifications(owner.id)
    with pytest.raises(NotOwner):
        coordinator.mark_notifications_read(waiter.id, [notice.id])
    with pytest.raises(NotificationNotFound):
        coordinator.mark_notifications_read(owner.id, [notice.id, "missing"])
    assert coordinator.mark_notifications_read(owner.id, [notice.id]) == 1


def test_configure_merges_and_validates(coordinator) -> None:
    session = _start(coordinator, "s")

    updated = coordinator.configure(session.id, mode="strict", stale_threshold_hours=4)
    again = coordinator.configure(session.id, auto_release_stale=True)

    assert again.config.mode is ConflictMode.STRICT
    assert again.config.stale_threshold_hours == 4
    assert again.config.auto_release_stale is True
    assert updated.config.auto_release_stale is False
    with pytest.raises(InvalidInput):
        coordinator.configure(session.id, stale_threshold_hours=-1)


def test_policy_seeds_session_config(database, tmp_path: Path) -> None:
    (tmp_path / "solo.yaml").write_text(
        textwrap.dedent(
            """
            id: solo
            title: Solo
            config:
              mode: bypass
              auto_release_stale: true
            """
        ).strip(),
        encoding="utf-8",
    )
    coordinator = ClaimCoordinator(database, policies=PolicyLoader([tmp_path]))

    started = coordinator.start_session(project_root="/repo", policy="solo")
    session = started.session

    assert session.config.mode is ConflictMode.BYPASS
    assert started.policy.seeded_fields == ["auto_release_stale", "mode"]
    assert started.policy.origin == tmp_path / "solo.yaml"
    assert session.config.auto_release_stale is True
    with pytest.raises(InvalidInput):
        coordinator.start_session(project_root="/repo", policy="unknown")


def test_audit_failures_do_not_block_arbitration(database) -> None:
    class BrokenAudit:
        def record(self, **_):
            raise RuntimeError("disk full")

    coordinator = ClaimCoordinator(database, audit_log=BrokenAudit())
    session = _start(coordinator, "s")

    outcome = coordinator.claim(session.id, intent="x", files=["a.py"])

    assert outcome.claim.is_active


def test_run_reaper_notifies_waiters(coordinator, clock) -> None:
    owner = _start(coordinator, "owner")
    waiter = _start(coordinator, "waiter")
    claim = coordinator.claim(owner.id, intent="x", files=["a.py"]).claim
    coordinator.join_queue(waiter.id, claim.id, intent="next")
    clock.advance(minutes=40)
    coordinator.heartbeat(waiter.id)

    outcome = coordinator.run_reaper()

    assert outcome.stale_sessions == 1
    assert [released.id for released in outcome.released_claims] == [claim.id]
    assert outcome.notified_sessions == 1
    [ready] = coordinator.list_notifications(waiter.id)
    assert ready.type is NotificationType.QUEUE_READY
