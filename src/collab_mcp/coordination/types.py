"""Domain records shared by the claim arbitration components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator


class SessionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class ClaimStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ClaimScope(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class SymbolType(str, Enum):
    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    VARIABLE = "variable"
    BLOCK = "block"
    OTHER = "other"


class ConflictMode(str, Enum):
    STRICT = "strict"
    SMART = "smart"
    BYPASS = "bypass"


class ConflictLevel(str, Enum):
    FILE = "file"
    SYMBOL = "symbol"


class NotificationType(str, Enum):
    CLAIM_RELEASED = "claim_released"
    QUEUE_READY = "queue_ready"
    CONFLICT_DETECTED = "conflict_detected"
    SESSION_MESSAGE = "session_message"


class AuditAction(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    CLAIM_CREATED = "claim_created"
    CLAIM_RELEASED = "claim_released"
    CONFLICT_DETECTED = "conflict_detected"
    QUEUE_JOINED = "queue_joined"
    QUEUE_LEFT = "queue_left"
    PRIORITY_CHANGED = "priority_changed"


class AuditEntityType(str, Enum):
    SESSION = "session"
    CLAIM = "claim"
    QUEUE = "queue"


# Expected minutes of work per claim scope, used for queue wait estimates.
SCOPE_WAIT_MINUTES: dict[ClaimScope, int] = {
    ClaimScope.SMALL: 30,
    ClaimScope.MEDIUM: 120,
    ClaimScope.LARGE: 480,
}

DEFAULT_PRIORITY = 50
GLOB_CHARACTERS = frozenset("*?[")


def priority_level(priority: int) -> str:
    """Map a numeric priority onto its named band."""

    if priority >= 90:
        return "critical"
    if priority >= 70:
        return "high"
    if priority >= 40:
        return "normal"
    return "low"


def is_glob_pattern(path: str) -> bool:
    return any(char in GLOB_CHARACTERS for char in path)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class CollabConfig(BaseModel):
    """Per-session coordination preferences."""

    mode: ConflictMode = Field(
        default=ConflictMode.SMART,
        description="How the calling agent should react to conflicts.",
    )
    allow_release_others: bool = Field(
        default=False,
        description="Whether this session may release claims owned by other sessions.",
    )
    auto_release_stale: bool = Field(
        default=False,
        description="Opt in to automatic release of this session's own stale claims.",
    )
    stale_threshold_hours: float = Field(
        default=2.0,
        description="Hours without claim activity before a claim counts as stale.",
    )
    auto_release_immediate: bool = Field(
        default=False,
        description="Release claims right after an edit instead of waiting for completion.",
    )
    auto_release_delay_minutes: float = Field(
        default=5.0,
        description="Grace period added to the stale threshold before auto-release.",
    )

    @field_validator("stale_threshold_hours", "auto_release_delay_minutes")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Thresholds must be >= 0")
        return value

    @classmethod
    def from_stored(cls, raw: dict[str, Any] | None) -> "CollabConfig":
        """Decode a persisted config, falling back to defaults for missing keys."""

        return cls.model_validate(raw or {})

    def merged(self, **changes: Any) -> "CollabConfig":
        """Return a copy with the non-``None`` changes applied and re-validated."""

        updates = {key: value for key, value in changes.items() if value is not None}
        return type(self).model_validate({**self.model_dump(), **updates})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class TodoItem(BaseModel):
    content: str
    status: Literal["pending", "in_progress", "completed"] = "pending"


class SymbolRequest(BaseModel):
    """Symbols within a single file that a caller wants to claim or check."""

    file: str = Field(..., min_length=1)
    symbols: list[str] = Field(..., min_length=1)
    symbol_type: SymbolType = SymbolType.FUNCTION

    @field_validator("symbols")
    @classmethod
    def _non_empty_names(cls, value: list[str]) -> list[str]:
        names = [name.strip() for name in value]
        if any(not name for name in names):
            raise ValueError("Symbol names must not be empty")
        return names


@dataclass(slots=True)
class Session:
    id: str
    name: str
    project_root: str
    status: SessionStatus
    config: CollabConfig
    created_at: datetime
    last_heartbeat: datetime
    machine_id: str | None = None
    current_task: str | None = None
    todos: list[TodoItem] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def progress(self) -> dict[str, int] | None:
        if not self.todos:
            return None
        completed = sum(1 for todo in self.todos if todo.status == "completed")
        total = len(self.todos)
        return {
            "completed": completed,
            "total": total,
            "percentage": round(completed / total * 100),
        }

    def todo_counts(self) -> dict[str, int] | None:
        if not self.todos:
            return None
        counts = {"total": len(self.todos), "in_progress": 0, "completed": 0, "pending": 0}
        for todo in self.todos:
            counts[todo.status] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_root": self.project_root,
            "machine_id": self.machine_id,
            "status": self.status.value,
            "config": self.config.to_dict(),
            "current_task": self.current_task,
            "todos": [todo.model_dump() for todo in self.todos],
            "progress": self.progress,
            "created_at": _iso(self.created_at),
            "last_heartbeat": _iso(self.last_heartbeat),
        }


@dataclass(slots=True)
class ClaimSymbol:
    file_path: str
    symbol_name: str
    symbol_type: SymbolType = SymbolType.FUNCTION

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "symbol_name": self.symbol_name,
            "symbol_type": self.symbol_type.value,
        }


@dataclass(slots=True)
class Claim:
    id: str
    session_id: str
    intent: str
    scope: ClaimScope
    priority: int
    status: ClaimStatus
    created_at: datetime
    updated_at: datetime
    completed_summary: str | None = None
    files: list[str] = field(default_factory=list)
    symbols: list[ClaimSymbol] = field(default_factory=list)
    session_name: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is ClaimStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "session_name": self.session_name,
            "intent": self.intent,
            "scope": self.scope.value,
            "priority": self.priority,
            "priority_level": priority_level(self.priority),
            "status": self.status.value,
            "files": list(self.files),
            "symbols": [symbol.to_dict() for symbol in self.symbols],
            "completed_summary": self.completed_summary,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(slots=True)
class ConflictInfo:
    claim_id: str
    session_id: str
    session_name: str | None
    file_path: str
    intent: str
    scope: ClaimScope
    priority: int
    created_at: datetime
    conflict_level: ConflictLevel
    symbol_name: str | None = None
    symbol_type: SymbolType | None = None
    matched_pattern: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.claim_id, self.file_path, self.symbol_name or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "session_id": self.session_id,
            "session_name": self.session_name,
            "file_path": self.file_path,
            "matched_pattern": self.matched_pattern,
            "intent": self.intent,
            "scope": self.scope.value,
            "priority": self.priority,
            "created_at": _iso(self.created_at),
            "conflict_level": self.conflict_level.value,
            "symbol_name": self.symbol_name,
            "symbol_type": self.symbol_type.value if self.symbol_type else None,
        }


@dataclass(slots=True)
class QueueEntry:
    id: str
    claim_id: str
    session_id: str
    intent: str
    position: int
    priority: int
    scope: ClaimScope
    estimated_wait_minutes: int
    created_at: datetime
    session_name: str | None = None
    claim_intent: str | None = None
    claim_owner_name: str | None = None
    claim_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "session_id": self.session_id,
            "session_name": self.session_name,
            "intent": self.intent,
            "position": self.position,
            "priority": self.priority,
            "priority_level": priority_level(self.priority),
            "scope": self.scope.value,
            "estimated_wait_minutes": self.estimated_wait_minutes,
            "created_at": _iso(self.created_at),
            "claim_intent": self.claim_intent,
            "claim_owner_name": self.claim_owner_name,
            "claim_files": list(self.claim_files),
        }


@dataclass(slots=True)
class Notification:
    id: str
    session_id: str
    type: NotificationType
    title: str
    message: str
    created_at: datetime
    reference_type: str | None = None
    reference_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    read_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "metadata": dict(self.metadata),
            "read_at": _iso(self.read_at),
            "created_at": _iso(self.created_at),
        }


@dataclass(slots=True)
class AuditHistoryEntry:
    id: str
    session_id: str | None
    action: AuditAction
    entity_type: AuditEntityType
    entity_id: str
    metadata: dict[str, Any]
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "action": self.action.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
        }


@dataclass(slots=True)
class FileReleaseResult:
    claim: Claim
    file_path: str
    partial: bool
    remaining_files: list[str]


@dataclass(slots=True)
class QueueJoinResult:
    """Outcome of a queue join; ``entry`` is ``None`` when the claim already ended."""

    claim: Claim
    entry: QueueEntry | None
    queue_length: int = 0


@dataclass(slots=True)
class SweepResult:
    stale_sessions: int = 0
    released_claims: list[Claim] = field(default_factory=list)


class ReferenceLocation(BaseModel):
    file: str = Field(..., min_length=1)
    line: int = Field(..., ge=0)
    context: str | None = None


class SymbolReferences(BaseModel):
    """Every known use of one symbol, typically from an editor's find-references.

    Accepts either ``source_file``/``source_symbol`` or the shorter
    ``file``/``symbol`` keys.
    """

    source_file: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("source_file", "file")
    )
    source_symbol: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("source_symbol", "symbol")
    )
    references: list[ReferenceLocation] = Field(default_factory=list)


@dataclass(slots=True)
class StoredReference:
    source_file: str
    source_symbol: str
    ref_file: str
    ref_line: int
    session_id: str
    created_at: datetime
    ref_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_file": self.source_file,
            "source_symbol": self.source_symbol,
            "ref_file": self.ref_file,
            "ref_line": self.ref_line,
            "ref_context": self.ref_context,
            "session_id": self.session_id,
            "created_at": _iso(self.created_at),
        }


@dataclass(slots=True)
class AffectedClaim:
    claim_id: str
    session_id: str
    session_name: str | None
    intent: str
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "session_id": self.session_id,
            "session_name": self.session_name,
            "intent": self.intent,
            "files": list(self.files),
        }


@dataclass(slots=True)
class ImpactInfo:
    """Who would be affected by changing ``symbol`` in ``file``."""

    file: str
    symbol: str
    reference_count: int
    affected_files: list[str]
    affected_claims: list[AffectedClaim] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "symbol": self.symbol,
            "reference_count": self.reference_count,
            "affected_files": list(self.affected_files),
            "affected_claims": [claim.to_dict() for claim in self.affected_claims],
        }


__all__ = [
    "AffectedClaim",
    "AuditAction",
    "AuditEntityType",
    "AuditHistoryEntry",
    "Claim",
    "ClaimScope",
    "ClaimStatus",
    "ClaimSymbol",
    "CollabConfig",
    "ConflictInfo",
    "ConflictLevel",
    "ConflictMode",
    "DEFAULT_PRIORITY",
    "FileReleaseResult",
    "ImpactInfo",
    "Notification",
    "NotificationType",
    "QueueEntry",
    "QueueJoinResult",
    "ReferenceLocation",
    "SCOPE_WAIT_MINUTES",
    "Session",
    "SessionStatus",
    "StoredReference",
    "SweepResult",
    "SymbolReferences",
    "SymbolRequest",
    "SymbolType",
    "TodoItem",
    "is_glob_pattern",
    "priority_level",
]
