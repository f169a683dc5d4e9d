from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from collab_mcp.storage import ChromaAuditLog, ChromaUnavailableError
from collab_mcp.coordination.types import AuditAction, AuditEntityType


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    for key, condition in where.items():
        if key == "$and":
            if not all(_matches(metadata, clause) for clause in condition):
                return False
            continue
        value = metadata.get(key)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if value is None:
                    return False
                if op == "$gte" and not value >= operand:
                    return False
                if op == "$lt" and not value < operand:
                    return False
        elif value != condition:
            return False
    return True


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }

    def delete(self, *, ids) -> None:  # type: ignore[override]
        doomed = set(ids)
        self.records = [record for record in self.records if record.id not in doomed]


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class SteppingClock:
    def __init__(self) -> None:
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def audit(tmp_path: Path, clock) -> ChromaAuditLog:
    client = StubClient()
    return ChromaAuditLog(tmp_path, client_factory=lambda: client, clock=clock)


def test_record_and_list_newest_first(audit, clock) -> None:
    first = audit.record(
        action=AuditAction.CLAIM_CREATED,
        entity_type=AuditEntityType.CLAIM,
        entity_id="claim-1",
        session_id="s1",
        metadata={"files": ["a.py"], "priority": 50},
    )
    clock.current += timedelta(minutes=1)
    audit.record(
        action=AuditAction.CLAIM_RELEASED,
        entity_type=AuditEntityType.CLAIM,
        entity_id="claim-1",
        session_id="s1",
        metadata={"status": "completed", "summary": None},
    )

    entries = audit.list_entries(entity_id="claim-1")

    assert [entry.action for entry in entries] == [
        AuditAction.CLAIM_RELEASED,
        AuditAction.CLAIM_CREATED,
    ]
    assert entries[1].id == first.id
    assert entries[1].metadata == {"files": ["a.py"], "priority": 50}


def test_filters_combine(audit, clock) -> None:
    audit.record(
        action=AuditAction.SESSION_STARTED,
        entity_type=AuditEntityType.SESSION,
        entity_id="s1",
        session_id="s1",
    )
    clock.current += timedelta(hours=1)
    cutoff = clock.current
    audit.record(
        action=AuditAction.QUEUE_JOINED,
        entity_type=AuditEntityType.QUEUE,
        entity_id="q1",
        session_id="s1",
    )
    audit.record(
        action=AuditAction.QUEUE_JOINED,
        entity_type=AuditEntityType.QUEUE,
        entity_id="q2",
        session_id="s2",
    )

    by_session = audit.list_entries(session_id="s1", entity_type=AuditEntityType.QUEUE)
    assert [entry.entity_id for entry in by_session] == ["q1"]

    recent = audit.list_entries(since=cutoff, limit=1)
    assert len(recent) == 1
    assert recent[0].action is AuditAction.QUEUE_JOINED


def test_cleanup_removes_expired_records(audit, clock) -> None:
    audit.record(action=AuditAction.SESSION_STARTED, entity_type=AuditEntityType.SESSION, entity_id="old")
    clock.current += timedelta(days=8)
    audit.record(action=AuditAction.SESSION_STARTED, entity_type=AuditEntityType.SESSION, entity_id="new")

    assert audit.cleanup(retention_days=7) == 1
    assert [entry.entity_id for entry in audit.list_entries()] == ["new"]


def test_client_factory_failure_surfaces_as_unavailable(tmp_path: Path) -> None:
    def broken_factory():
        raise ChromaUnavailableError("no backend")

    audit = ChromaAuditLog(tmp_path, client_factory=broken_factory)

    with pytest.raises(ChromaUnavailableError):
        audit.ping()
