from __future__ import annotations

import pytest

from collab_mcp.coordination import ClaimStore, ConflictDetector, SessionRegistry, path_matches
from collab_mcp.coordination.types import ClaimStatus, ConflictLevel


@pytest.fixture
def registry(database):
    return SessionRegistry(database)


@pytest.fixture
def store(database):
    return ClaimStore(database)


@pytest.fixture
def detector(database):
    return ConflictDetector(database)


def _session(registry, name):
    return registry.create(project_root="/repo", name=name)


def test_exact_path_conflict_between_sessions(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    other = _session(registry, "other")
    claim = store.create_claim(session_id=owner.id, intent="refactor", files=["src/a.ts"])

    conflicts = detector.check_conflicts(["src/a.ts", "src/b.ts"], exclude_session_id=other.id)

    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.claim_id == claim.id
    assert conflict.session_name == "owner"
    assert conflict.file_path == "src/a.ts"
    assert conflict.conflict_level is ConflictLevel.FILE
    assert conflict.matched_pattern is None


def test_own_claims_are_excluded(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    store.create_claim(session_id=owner.id, intent="refactor", files=["src/a.ts"])

    assert detector.check_conflicts(["src/a.ts"], exclude_session_id=owner.id) == []


def test_released_claims_and_inactive_owners_do_not_conflict(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    departed = _session(registry, "departed")
    released = store.create_claim(session_id=owner.id, intent="done", files=["src/a.ts"])
    store.release_claim(released.id, status=ClaimStatus.COMPLETED)
    store.create_claim(session_id=departed.id, intent="gone", files=["src/b.ts"])
    registry.terminate(departed.id)

    assert detector.check_conflicts(["src/a.ts", "src/b.ts"]) == []


def test_disjoint_symbols_do_not_conflict(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    store.create_claim(
        session_id=owner.id,
        intent="fix validate",
        symbols=[{"file": "src/auth.ts", "symbols": ["validateToken"]}],
    )

    conflicts = detector.check_conflicts(
        None, symbols=[{"file": "src/auth.ts", "symbols": ["refreshToken"]}]
    )

    assert conflicts == []


def test_same_symbol_conflicts_at_symbol_level(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    store.create_claim(
        session_id=owner.id,
        intent="fix validate",
        symbols=[{"file": "src/auth.ts", "symbols": ["validateToken", "parse"], "symbol_type": "method"}],
    )

    conflicts = detector.check_conflicts(
        None, symbols=[{"file": "src/auth.ts", "symbols": ["parse", "refreshToken"]}]
    )

    assert [(c.file_path, c.symbol_name, c.conflict_level) for c in conflicts] == [
        ("src/auth.ts", "parse", ConflictLevel.SYMBOL)
    ]
    assert conflicts[0].symbol_type.value == "method"


def test_whole_file_claim_blocks_symbol_request(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    store.create_claim(session_id=owner.id, intent="rewrite", files=["src/auth.ts"])

    conflicts = detector.check_conflicts(
        None, symbols=[{"file": "src/auth.ts", "symbols": ["refreshToken"]}]
    )

    assert len(conflicts) == 1
    assert conflicts[0].conflict_level is ConflictLevel.FILE


def test_symbol_claim_blocks_whole_file_request(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    store.create_claim(
        session_id=owner.id,
        intent="fix validate",
        symbols=[{"file": "src/auth.ts", "symbols": ["validateToken"]}],
    )

    conflicts = detector.check_conflicts(["src/auth.ts"])

    levels = {c.conflict_level for c in conflicts}
    assert ConflictLevel.SYMBOL in levels
    assert any(c.symbol_name == "validateToken" for c in conflicts)


def test_glob_claim_matches_nested_path(registry, store, detector) -> None:
    owner = _session(registry, "owner")
    store.create_claim(session_id=owner.id, intent="migrate", files=["src/**/*.ts"])

    conflicts = detector.check_conflicts(["src/utils/helper.ts", "docs/readme.md"])

    assert len(conflicts) == 1
    assert conflicts[0].file_path == "src/utils/helper.ts"
    assert conflicts[0].matched_pattern == "src/**/*.ts"


def test_conflicts_sorted_by_priority_then_age(registry, store, detector) -> None:
    low = _session(registry, "low")
    high = _session(registry, "high")
    store.create_claim(session_id=low.id, intent="tidy", files=["src/a.ts"], priority=20)
    store.create_claim(session_id=high.id, intent="hotfix", files=["src/a.ts"], priority=95)

    conflicts = detector.check_conflicts(["src/a.ts"])

    assert [c.session_name for c in conflicts] == ["high", "low"]


@pytest.mark.parametrize(
    ("requested", "stored", "is_pattern", "expected"),
    [
        ("src/a.ts", "src/a.ts", False, True),
        ("src/a.ts", "src/*", False, False),
        ("src/api/v1/users.ts", "src/api/*", True, True),
        ("src/a.TS", "src/*.ts", True, False),
        ("lib/a.ts", "src/*.ts", True, False),
    ],
)
def test_path_matches(requested, stored, is_pattern, expected) -> None:
    assert path_matches(requested, stored, is_pattern) is expected
