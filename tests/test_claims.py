from __future__ import annotations

import pytest

from collab_mcp.coordination import ClaimStore, SessionRegistry
from collab_mcp.coordination.errors import (
    ClaimAlreadyReleased,
    ClaimNotFound,
    InvalidInput,
    OwnerInactive,
    SessionNotFound,
)
from collab_mcp.coordination.types import ClaimScope, ClaimStatus


@pytest.fixture
def registry(database):
    return SessionRegistry(database)


@pytest.fixture
def store(database):
    return ClaimStore(database)


@pytest.fixture
def session(registry):
    return registry.create(project_root="/repo", name="alpha")


def test_create_claim_merges_files_and_symbols(store, session) -> None:
    claim = store.create_claim(
        session_id=session.id,
        intent="split module",
        files=["src/a.ts", "src/b.ts", "src/a.ts"],
        symbols=[
            {"file": "src/c.ts", "symbols": ["run", "run", "stop"], "symbol_type": "class"},
        ],
        scope="large",
        priority=75,
    )

    assert claim.status is ClaimStatus.ACTIVE
    assert claim.scope is ClaimScope.LARGE
    assert claim.priority == 75
    assert claim.session_name == "alpha"
    assert claim.files == ["src/a.ts", "src/b.ts", "src/c.ts"]
    assert [(s.file_path, s.symbol_name) for s in claim.symbols] == [
        ("src/c.ts", "run"),
        ("src/c.ts", "stop"),
    ]
    assert claim.to_dict()["priority_level"] == "high"


@pytest.mark.parametrize("path", ["../etc/passwd", "src/\0evil.ts", ""])
def test_create_claim_rejects_unsafe_paths(store, session, path) -> None:
    with pytest.raises(InvalidInput):
        store.create_claim(session_id=session.id, intent="x", files=[path])


@pytest.mark.parametrize("priority", [-1, 101, True, "high"])
def test_create_claim_rejects_bad_priority(store, session, priority) -> None:
    with pytest.raises(InvalidInput):
        store.create_claim(session_id=session.id, intent="x", files=["a.py"], priority=priority)


def test_create_claim_requires_files_or_symbols(store, session) -> None:
    with pytest.raises(InvalidInput):
        store.create_claim(session_id=session.id, intent="x")


def test_create_claim_checks_owner(store, registry, session) -> None:
    with pytest.raises(SessionNotFound):
        store.create_claim(session_id="missing", intent="x", files=["a.py"])

    registry.terminate(session.id)
    with pytest.raises(OwnerInactive):
        store.create_claim(session_id=session.id, intent="x", files=["a.py"])


def test_release_claim_is_terminal(store, session) -> None:
    claim = store.create_claim(session_id=session.id, intent="x", files=["a.py"])

    assert store.release_claim(claim.id, status="completed", summary="done") is True
    released = store.get_claim(claim.id)
    assert released.status is ClaimStatus.COMPLETED
    assert released.completed_summary == "done"

    with pytest.raises(ClaimAlreadyReleased) as excinfo:
        store.release_claim(claim.id, status="abandoned")
    assert excinfo.value.context["current_status"] == "completed"

    assert store.release_claim("missing", status="completed") is False


def test_release_claim_by_file_partial_then_full(store, session, clock) -> None:
    claim = store.create_claim(
        session_id=session.id,
        intent="x",
        files=["a.py"],
        symbols=[{"file": "b.py", "symbols": ["main"]}],
    )
    before = store.get_claim(claim.id).updated_at
    clock.advance(minutes=1)

    partial = store.release_claim_by_file(session.id, "b.py")

    assert partial.partial is True
    assert partial.remaining_files == ["a.py"]
    assert partial.claim.status is ClaimStatus.ACTIVE
    assert partial.claim.symbols == []
    assert partial.claim.updated_at > before

    full = store.release_claim_by_file(session.id, "a.py")

    assert full.partial is False
    assert full.remaining_files == []
    assert full.claim.status is ClaimStatus.COMPLETED
    assert full.claim.completed_summary == "Released after editing a.py"


def test_release_claim_by_file_without_claim(store, session) -> None:
    with pytest.raises(ClaimNotFound):
        store.release_claim_by_file(session.id, "nothing.py")


def test_update_priority_only_for_active_claims(store, session) -> None:
    claim = store.create_claim(session_id=session.id, intent="x", files=["a.py"])

    assert store.update_claim_priority(claim.id, 90) is True
    assert store.get_claim(claim.id).priority == 90

    store.release_claim(claim.id, status="abandoned")
    assert store.update_claim_priority(claim.id, 10) is False
    assert store.update_claim_priority("missing", 10) is False


def test_list_claims_filters(store, registry, session) -> None:
    other = registry.create(project_root="/elsewhere", name="beta")
    first = store.create_claim(session_id=session.id, intent="one", files=["a.py"])
    second = store.create_claim(session_id=session.id, intent="two", files=["b.py"])
    store.create_claim(session_id=other.id, intent="three", files=["c.py"])
    store.release_claim(first.id, status="completed")

    active_here = store.list_claims(project_root="/repo")
    assert [claim.id for claim in active_here] == [second.id]

    everything = store.list_claims(session_id=session.id, status="all")
    assert [claim.id for claim in everything] == [second.id, first.id]

    with pytest.raises(InvalidInput):
        store.list_claims(status="pending")
