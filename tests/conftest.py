from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from collab_mcp.coordination import ClaimCoordinator
from collab_mcp.storage import Database


class FakeClock:
    """Deterministic clock; every reading moves forward by one millisecond."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(milliseconds=1)
        return self.current

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


class RecordingAuditLog:
    def __init__(self) -> None:
        self.records: list[dict] = []

    def record(self, *, action, entity_type, entity_id, session_id=None, metadata=None):
        self.records.append(
            {
                "action": action.value,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "session_id": session_id,
                "metadata": dict(metadata or {}),
            }
        )

    def actions(self) -> list[str]:
        return [record["action"] for record in self.records]

    def list_entries(self, **filters):
        return []

    def cleanup(self, retention_days: int = 7) -> int:
        return 0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database(tmp_path: Path, clock: FakeClock) -> Database:
    db = Database.from_path(tmp_path / "collab.db", clock=clock)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def audit_log() -> RecordingAuditLog:
    return RecordingAuditLog()


@pytest.fixture
def coordinator(database: Database, audit_log: RecordingAuditLog) -> ClaimCoordinator:
    return ClaimCoordinator(database, audit_log=audit_log)
