"""Claim lifecycle API tying sessions, claims, queues and notifications together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from pydantic import ValidationError

from ..storage.database import Database
from .claims import ClaimStore, parse_symbols
from .conflicts import ConflictDetector
from .errors import (
    ClaimAlreadyReleased,
    ClaimNotFound,
    InvalidInput,
    NotificationNotFound,
    NotOwner,
    QueueEntryNotFound,
)
from .notifications import NotificationCenter, ReleaseNotifier
from .queue import WaitQueue
from .reaper import StalenessReaper
from .references import ReferenceStore
from .sessions import SessionRegistry
from .symbols import FileSymbols, LspSymbol, SymbolAnalysis, SymbolAnalyzer, SymbolValidation
from .types import (
    AuditAction,
    AuditEntityType,
    AuditHistoryEntry,
    Claim,
    ClaimScope,
    ClaimStatus,
    CollabConfig,
    ConflictInfo,
    ConflictLevel,
    FileReleaseResult,
    ImpactInfo,
    Notification,
    NotificationType,
    QueueEntry,
    QueueJoinResult,
    Session,
    SymbolReferences,
    SymbolRequest,
    TodoItem,
    priority_level,
)

if TYPE_CHECKING:
    from ..config import CollabSettings
    from ..policies import PolicyLoader, PolicySeed
    from ..storage.chroma import ChromaAuditLog

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionStart:
    session: Session
    active_sessions: list[Session]
    stale_sessions: int
    released_claims: int
    policy: "PolicySeed | None" = None


@dataclass(slots=True)
class SessionEnd:
    session: Session
    released_claims: list[Claim]
    claim_status: ClaimStatus
    removed_queue_entries: int
    notified_sessions: int


@dataclass(slots=True)
class ClaimOutcome:
    claim: Claim
    conflicts: list[ConflictInfo]
    notified_owners: int = 0

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass(slots=True)
class CheckReport:
    conflicts: list[ConflictInfo]
    safe_files: list[str]
    blocked_files: list[str]
    safe_symbols: list[dict[str, Any]] | None
    blocked_symbols: list[dict[str, Any]] | None
    recommendation: str
    can_edit: bool
    message: str
    todos_status: dict[str, int] | None = None

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def conflicts_by_session(self) -> list[dict[str, Any]]:
        grouped: dict[str, list[ConflictInfo]] = {}
        for conflict in self.conflicts:
            grouped.setdefault(conflict.session_id, []).append(conflict)
        details = []
        for session_id, items in grouped.items():
            head = items[0]
            details.append(
                {
                    "session_id": session_id,
                    "session_name": head.session_name,
                    "intent": head.intent,
                    "scope": head.scope.value,
                    "priority": head.priority,
                    "files": [
                        item.file_path
                        for item in items
                        if item.conflict_level is ConflictLevel.FILE
                    ],
                    "symbols": [
                        {
                            "file": item.file_path,
                            "symbol": item.symbol_name,
                            "type": item.symbol_type.value if item.symbol_type else None,
                        }
                        for item in items
                        if item.conflict_level is ConflictLevel.SYMBOL
                    ],
                    "started_at": head.created_at.isoformat(),
                }
            )
        return details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "has_conflicts": self.has_conflicts,
            "safe": not self.has_conflicts,
            "can_edit": self.can_edit,
            "recommendation": self.recommendation,
            "file_status": {"safe": self.safe_files, "blocked": self.blocked_files},
            "symbol_status": (
                {"safe": self.safe_symbols, "blocked": self.blocked_symbols}
                if self.safe_symbols is not None
                else None
            ),
            "message": self.message,
            "has_in_progress_todo": bool(self.todos_status and self.todos_status["in_progress"]),
            "todos_status": self.todos_status,
        }
        if self.conflicts:
            payload["conflicts"] = self.conflicts_by_session()
        return payload


@dataclass(slots=True)
class ReleaseOutcome:
    claim: Claim
    was_forced: bool
    notified_sessions: int


@dataclass(slots=True)
class FileReleaseOutcome:
    result: FileReleaseResult
    notified_sessions: int


@dataclass(slots=True)
class ReaperOutcome:
    stale_sessions: int = 0
    released_claims: list[Claim] = field(default_factory=list)
    notified_sessions: int = 0


@dataclass(slots=True)
class ReferenceUpdate:
    stored: int = 0
    skipped: int = 0
    cleared: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"stored": self.stored, "skipped": self.skipped, "cleared": self.cleared}


class ClaimCoordinator:
    """Entry points used by the MCP tools; enforces ownership and force rules."""

    def __init__(
        self,
        database: Database,
        *,
        audit_log: ChromaAuditLog | None = None,
        policies: PolicyLoader | None = None,
        stale_session_minutes: int = 30,
        force_release_requires_opt_in: bool = False,
    ) -> None:
        self.database = database
        self.sessions = SessionRegistry(database)
        self.claims = ClaimStore(database)
        self.detector = ConflictDetector(database)
        self.queue = WaitQueue(database)
        self.reaper = StalenessReaper(database)
        self.notifications = NotificationCenter(database)
        self.notifier = ReleaseNotifier(self.queue, self.notifications)
        self.references = ReferenceStore(database)
        self.analyzer = SymbolAnalyzer(self.detector, self.references)
        self.audit_log = audit_log
        self.policies = policies
        self.stale_session_minutes = stale_session_minutes
        self.force_release_requires_opt_in = force_release_requires_opt_in

    @classmethod
    def from_settings(
        cls,
        settings: CollabSettings,
        *,
        database: Database,
        audit_log: ChromaAuditLog | None = None,
        policies: PolicyLoader | None = None,
    ) -> "ClaimCoordinator":
        return cls(
            database,
            audit_log=audit_log,
            policies=policies,
            stale_session_minutes=settings.stale_session_minutes,
            force_release_requires_opt_in=settings.force_release_requires_opt_in,
        )

    # ------------------------------------------------------------------
    # audit

    def _audit(
        self,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: str,
        *,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self.audit_log is None:
            return
        try:
            self.audit_log.record(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                session_id=session_id,
                metadata=metadata,
            )
        except Exception:  # audit is best effort; the arbitration result stands
            logger.warning(
                "Failed to write audit record",
                exc_info=True,
                extra={"action": action.value, "entity_id": entity_id},
            )

    def list_history(
        self,
        *,
        session_id: str | None = None,
        entity_type: AuditEntityType | str | None = None,
        entity_id: str | None = None,
        action: AuditAction | str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[AuditHistoryEntry]:
        if self.audit_log is None:
            return []
        try:
            entity_filter = AuditEntityType(entity_type) if entity_type else None
            action_filter = AuditAction(action) if action else None
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc
        return self.audit_log.list_entries(
            session_id=session_id,
            entity_type=entity_filter,
            entity_id=entity_id,
            action=action_filter,
            since=since,
            limit=max(1, min(int(limit), 500)),
        )

    # ------------------------------------------------------------------
    # sessions

    def _policy_seed(self, policy: str | None) -> "PolicySeed | None":
        if not policy:
            return None
        if self.policies is None:
            raise InvalidInput(f"Unknown policy '{policy}'", policy=policy)
        seed = self.policies.seed(policy)
        if seed is None:
            raise InvalidInput(
                f"Unknown policy '{policy}'",
                policy=policy,
                available=sorted(self.policies.load_all()),
            )
        return seed

    def run_reaper(self, *, stale_minutes: int | None = None) -> ReaperOutcome:
        """Run both staleness sweeps, then notify queues and audit the releases."""

        minutes = stale_minutes if stale_minutes is not None else self.stale_session_minutes
        with self.database.transaction():
            session_sweep = self.reaper.cleanup_stale_sessions(minutes)
            claim_sweep = self.reaper.cleanup_stale_claims()
            released = session_sweep.released_claims + claim_sweep.released_claims
            notified = 0
            for claim in released:
                notified += self.notifier.notify_queue_on_claim_release(
                    claim.id, claim.session_id, claim.files
                )

        for claim in released:
            self._audit(
                AuditAction.CLAIM_RELEASED,
                AuditEntityType.CLAIM,
                claim.id,
                session_id=claim.session_id,
                metadata={"status": claim.status.value, "reason": "stale", "files": claim.files},
            )
        return ReaperOutcome(
            stale_sessions=session_sweep.stale_sessions,
            released_claims=released,
            notified_sessions=notified,
        )

    def start_session(
        self,
        *,
        project_root: str,
        name: str | None = None,
        machine_id: str | None = None,
        policy: str | None = None,
    ) -> SessionStart:
        if not project_root or not project_root.strip():
            raise InvalidInput("project_root is required")
        seed = self._policy_seed(policy)
        config = seed.config if seed is not None else None
        sweep = self.run_reaper()

        session = self.sessions.create(
            project_root=project_root, name=name, machine_id=machine_id, config=config
        )
        self._audit(
            AuditAction.SESSION_STARTED,
            AuditEntityType.SESSION,
            session.id,
            session_id=session.id,
            metadata={"project_root": project_root, "policy": policy},
        )
        active = self.sessions.list_sessions(project_root=project_root)
        return SessionStart(
            session=session,
            active_sessions=active,
            stale_sessions=sweep.stale_sessions,
            released_claims=len(sweep.released_claims),
            policy=seed,
        )

    def end_session(
        self,
        session_id: str,
        *,
        release_claims: str = "abandon",
    ) -> SessionEnd:
        """Leave every queue, release owned claims (notifying their queues) and terminate."""

        if release_claims not in {"complete", "abandon"}:
            raise InvalidInput(
                "release_claims must be 'complete' or 'abandon'", release_claims=release_claims
            )
        status = ClaimStatus.COMPLETED if release_claims == "complete" else ClaimStatus.ABANDONED
        self.sessions.require(session_id)

        with self.database.transaction():
            removed = self.queue.remove_session_from_all_queues(session_id)
            owned = self.claims.list_claims(session_id=session_id, status=ClaimStatus.ACTIVE)
            notified = 0
            for claim in owned:
                self.claims.release_claim(claim.id, status=status, summary="Session ended")
                notified += self.notifier.notify_queue_on_claim_release(
                    claim.id, session_id, claim.files
                )
            session = self.sessions.terminate(session_id)

        for claim in owned:
            self._audit(
                AuditAction.CLAIM_RELEASED,
                AuditEntityType.CLAIM,
                claim.id,
                session_id=session_id,
                metadata={"status": status.value, "reason": "session_ended", "files": claim.files},
            )
        self._audit(
            AuditAction.SESSION_ENDED,
            AuditEntityType.SESSION,
            session_id,
            session_id=session_id,
            metadata={
                "claims_released": len(owned),
                "release_status": status.value,
                "removed_queue_entries": removed,
            },
        )
        logger.info(
            "Session ended",
            extra={"session_id": session_id, "claims_released": len(owned)},
        )
        return SessionEnd(
            session=session,
            released_claims=owned,
            claim_status=status,
            removed_queue_entries=removed,
            notified_sessions=notified,
        )

    def validate_active_session(self, session_id: str) -> Session:
        return self.sessions.require_active(session_id)

    def list_sessions(
        self, *, include_inactive: bool = False, project_root: str | None = None
    ) -> list[Session]:
        return self.sessions.list_sessions(
            include_inactive=include_inactive, project_root=project_root
        )

    def heartbeat(
        self,
        session_id: str,
        *,
        current_task: str | None = None,
        todos: Iterable[TodoItem | dict[str, Any]] | None = None,
    ) -> Session:
        return self.sessions.heartbeat(session_id, current_task=current_task, todos=todos)

    def update_status(
        self,
        session_id: str,
        *,
        current_task: str | None = None,
        todos: Iterable[TodoItem | dict[str, Any]] | None = None,
    ) -> Session:
        self.sessions.require_active(session_id)
        return self.sessions.update_status(session_id, current_task=current_task, todos=todos)

    def configure(self, session_id: str, *, policy: str | None = None, **changes: Any) -> Session:
        """Merge the given settings over the session config (or over a named policy)."""

        session = self.sessions.require_active(session_id)
        seed = self._policy_seed(policy)
        base = seed.config if seed is not None else session.config
        try:
            config = base.merged(**changes)
        except ValidationError as exc:
            raise InvalidInput(f"Invalid configuration: {exc}") from exc
        updated = self.sessions.update_config(session_id, config)
        logger.info(
            "Session configuration updated",
            extra={"session_id": session_id, "policy": policy, "mode": config.mode.value},
        )
        return updated

    # ------------------------------------------------------------------
    # claims

    def claim(
        self,
        session_id: str,
        *,
        intent: str,
        files: Sequence[str] | None = None,
        symbols: Iterable[SymbolRequest | dict[str, Any]] | None = None,
        scope: ClaimScope | str = ClaimScope.MEDIUM,
        priority: int = 50,
    ) -> ClaimOutcome:
        """Create the claim first, then report whoever else already holds overlapping work."""

        self.sessions.require_active(session_id)
        symbol_requests = parse_symbols(symbols)
        claim = self.claims.create_claim(
            session_id=session_id,
            intent=intent,
            files=files,
            symbols=symbol_requests,
            scope=scope,
            priority=priority,
        )
        self._audit(
            AuditAction.CLAIM_CREATED,
            AuditEntityType.CLAIM,
            claim.id,
            session_id=session_id,
            metadata={
                "files": claim.files,
                "intent": intent,
                "scope": claim.scope.value,
                "priority": claim.priority,
            },
        )

        conflicts = self.detector.check_conflicts(
            claim.files, exclude_session_id=session_id, symbols=symbol_requests or None
        )
        notified = 0
        if conflicts:
            for conflict in conflicts:
                self._audit(
                    AuditAction.CONFLICT_DETECTED,
                    AuditEntityType.CLAIM,
                    claim.id,
                    session_id=session_id,
                    metadata={
                        "conflicting_claim_id": conflict.claim_id,
                        "conflicting_session_id": conflict.session_id,
                        "conflicting_session_name": conflict.session_name,
                        "files": [conflict.file_path],
                        "symbol": conflict.symbol_name,
                    },
                )
            notified = self._notify_conflicting_owners(claim, conflicts)
            logger.warning(
                "Claim created with conflicts",
                extra={"claim_id": claim.id, "session_id": session_id, "conflicts": len(conflicts)},
            )
        return ClaimOutcome(claim=claim, conflicts=conflicts, notified_owners=notified)

    def _notify_conflicting_owners(self, claim: Claim, conflicts: list[ConflictInfo]) -> int:
        by_owner: dict[str, list[ConflictInfo]] = {}
        for conflict in conflicts:
            by_owner.setdefault(conflict.session_id, []).append(conflict)

        claimant = claim.session_name or claim.session_id
        with self.database.transaction():
            for owner_id, items in by_owner.items():
                overlapping = sorted({item.file_path for item in items})
                self.notifications.create(
                    session_id=owner_id,
                    type=NotificationType.CONFLICT_DETECTED,
                    title="Claim conflict detected",
                    message=(
                        f"{claimant} claimed {', '.join(overlapping)}, which overlaps your "
                        f"active claim. Intent: {claim.intent}"
                    ),
                    reference_type="claim",
                    reference_id=claim.id,
                    metadata={
                        "claim_id": claim.id,
                        "claimed_by": claim.session_id,
                        "conflicting_claim_ids": sorted({item.claim_id for item in items}),
                        "files": overlapping,
                        "symbols": sorted(
                            {item.symbol_name for item in items if item.symbol_name}
                        ),
                    },
                )
        return len(by_owner)

    def check(
        self,
        files: Sequence[str] | None,
        *,
        symbols: Iterable[SymbolRequest | dict[str, Any]] | None = None,
        session_id: str | None = None,
    ) -> CheckReport:
        """Report which requested files and symbols are safe to edit right now."""

        symbol_requests = parse_symbols(symbols)
        file_list = list(files or [])
        if not file_list and not symbol_requests:
            raise InvalidInput("At least one file is required")

        todos_status = None
        if session_id:
            caller = self.sessions.get(session_id)
            if caller is not None:
                todos_status = caller.todo_counts()

        conflicts = self.detector.check_conflicts(
            file_list, exclude_session_id=session_id, symbols=symbol_requests or None
        )

        blocked_paths: set[str] = set()
        blocked_names: dict[str, set[str]] = {}
        for conflict in conflicts:
            if conflict.conflict_level is ConflictLevel.FILE:
                blocked_paths.add(conflict.file_path)
            elif conflict.symbol_name:
                blocked_names.setdefault(conflict.file_path, set()).add(conflict.symbol_name)

        safe_symbols: list[dict[str, Any]] | None = None
        blocked_symbols: list[dict[str, Any]] | None = None
        if symbol_requests:
            safe_symbols, blocked_symbols = [], []
            for request in symbol_requests:
                # A whole-file claim on the file blocks every symbol in it.
                taken = blocked_names.get(request.file, set())
                file_blocked = request.file in blocked_paths
                safe = [name for name in request.symbols if not file_blocked and name not in taken]
                blocked = [name for name in request.symbols if file_blocked or name in taken]
                if safe:
                    safe_symbols.append({"file": request.file, "symbols": safe})
                if blocked:
                    blocked_symbols.append({"file": request.file, "symbols": blocked})

        safe_files = [
            path for path in file_list if path not in blocked_paths and path not in blocked_names
        ]
        blocked_files = [path for path in file_list if path in blocked_paths]

        if not conflicts:
            recommendation, can_edit = "proceed_all", True
            message = (
                "All symbols are safe to edit. Proceed."
                if symbol_requests
                else "All files are safe to edit. Proceed."
            )
        elif safe_files or safe_symbols:
            recommendation, can_edit = "proceed_safe_only", True
            if safe_symbols:
                safe_desc = ", ".join(
                    f"{item['file']}:[{','.join(item['symbols'])}]" for item in safe_symbols
                )
                blocked_desc = ", ".join(
                    f"{item['file']}:[{','.join(item['symbols'])}]" for item in blocked_symbols or []
                )
                message = f"Edit ONLY these safe symbols: {safe_desc}. Skip blocked: {blocked_desc}."
            else:
                message = (
                    f"Edit ONLY these safe files: [{', '.join(safe_files)}]. "
                    f"Skip blocked files: [{', '.join(blocked_files)}]."
                )
        else:
            recommendation, can_edit = "abort", False
            message = (
                "All requested symbols are blocked. Coordinate with other session(s) or wait."
                if symbol_requests
                else f"All {len(file_list)} file(s) are blocked. Coordinate with other session(s) or wait."
            )

        return CheckReport(
            conflicts=conflicts,
            safe_files=safe_files,
            blocked_files=blocked_files,
            safe_symbols=safe_symbols,
            blocked_symbols=blocked_symbols,
            recommendation=recommendation,
            can_edit=can_edit,
            message=message,
            todos_status=todos_status,
        )

    def release(
        self,
        session_id: str,
        claim_id: str,
        *,
        status: ClaimStatus | str,
        summary: str | None = None,
        force: bool = False,
    ) -> ReleaseOutcome:
        try:
            terminal = ClaimStatus(status)
        except ValueError as exc:
            raise InvalidInput(f"Invalid release status '{status}'") from exc
        if terminal is ClaimStatus.ACTIVE:
            raise InvalidInput("status must be 'completed' or 'abandoned'")

        caller = self.sessions.require_active(session_id)
        claim = self.claims.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFound(claim_id=claim_id)

        was_forced = False
        if claim.session_id != session_id:
            config = caller.config
            permitted = force and (
                config.allow_release_others or not self.force_release_requires_opt_in
            )
            if not permitted:
                raise self._not_owner(claim, config)
            was_forced = True

        if not claim.is_active:
            raise ClaimAlreadyReleased(claim_id, claim.status.value)

        with self.database.transaction():
            self.claims.release_claim(claim_id, status=terminal, summary=summary)
            notified = self.notifier.notify_queue_on_claim_release(
                claim_id, session_id, claim.files
            )
            released = self.claims.require_claim(claim_id)

        self._audit(
            AuditAction.CLAIM_RELEASED,
            AuditEntityType.CLAIM,
            claim_id,
            session_id=session_id,
            metadata={
                "status": terminal.value,
                "summary": summary,
                "was_forced": was_forced,
                "original_owner": claim.session_id if was_forced else None,
                "files": claim.files,
            },
        )
        if was_forced:
            logger.warning(
                "Claim force-released by non-owner",
                extra={"claim_id": claim_id, "session_id": session_id, "owner": claim.session_id},
            )
        return ReleaseOutcome(claim=released, was_forced=was_forced, notified_sessions=notified)

    def _not_owner(self, claim: Claim, caller_config: CollabConfig) -> NotOwner:
        age_hours = (self.database.now() - claim.created_at).total_seconds() / 3600
        is_stale = age_hours > caller_config.stale_threshold_hours
        owner = claim.session_name or claim.session_id
        suggestions = [
            f"Ask {owner} to release the claim",
            "Join the queue for this claim with collab_queue_join",
        ]
        if is_stale:
            suggestions.append(
                "The claim looks stale; confirm with the user, then retry with force=true"
            )
        return NotOwner(
            "You can only release your own claims. Use force=true with user confirmation.",
            claim_id=claim.id,
            claim_owner=owner,
            claim_owner_id=claim.session_id,
            claim_age_hours=round(age_hours, 1),
            is_stale=is_stale,
            stale_threshold_hours=caller_config.stale_threshold_hours,
            suggestions=suggestions,
        )

    def release_file(self, session_id: str, file_path: str) -> FileReleaseOutcome:
        """Release one of the caller's own files; a full release also notifies the queue."""

        self.sessions.require_active(session_id)
        with self.database.transaction():
            result = self.claims.release_claim_by_file(session_id, file_path)
            notified = 0
            if not result.partial:
                notified = self.notifier.notify_queue_on_claim_release(
                    result.claim.id, session_id, result.claim.files
                )

        self._audit(
            AuditAction.CLAIM_RELEASED,
            AuditEntityType.CLAIM,
            result.claim.id,
            session_id=session_id,
            metadata={
                "status": result.claim.status.value,
                "file_path": file_path,
                "partial": result.partial,
                "remaining_files": result.remaining_files,
            },
        )
        return FileReleaseOutcome(result=result, notified_sessions=notified)

    def list_claims(
        self,
        *,
        session_id: str | None = None,
        status: ClaimStatus | str = ClaimStatus.ACTIVE,
        project_root: str | None = None,
    ) -> list[Claim]:
        return self.claims.list_claims(
            session_id=session_id, status=status, project_root=project_root
        )

    def update_claim_priority(
        self,
        session_id: str,
        claim_id: str,
        priority: int,
        *,
        reason: str | None = None,
    ) -> tuple[Claim, int]:
        """Returns the updated claim and its previous priority."""

        self.sessions.require_active(session_id)
        claim = self.claims.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFound(claim_id=claim_id)
        if claim.session_id != session_id:
            raise NotOwner(
                "You can only update priority of your own claims.",
                claim_id=claim_id,
                claim_owner=claim.session_name or claim.session_id,
            )
        if not claim.is_active:
            raise ClaimAlreadyReleased(claim_id, claim.status.value)
        if not self.claims.update_claim_priority(claim_id, priority):
            raise ClaimAlreadyReleased(claim_id, claim.status.value)

        updated = self.claims.require_claim(claim_id)
        self._audit(
            AuditAction.PRIORITY_CHANGED,
            AuditEntityType.CLAIM,
            claim_id,
            session_id=session_id,
            metadata={
                "old_priority": claim.priority,
                "new_priority": updated.priority,
                "old_level": priority_level(claim.priority),
                "new_level": priority_level(updated.priority),
                "reason": reason,
            },
        )
        return updated, claim.priority

    # ------------------------------------------------------------------
    # queue

    def join_queue(
        self,
        session_id: str,
        claim_id: str,
        *,
        intent: str,
        priority: int = 50,
        scope: ClaimScope | str = ClaimScope.MEDIUM,
    ) -> QueueJoinResult:
        self.sessions.require_active(session_id)
        result = self.queue.join(
            claim_id=claim_id,
            session_id=session_id,
            intent=intent,
            priority=priority,
            scope=scope,
        )
        if result.entry is not None:
            self._audit(
                AuditAction.QUEUE_JOINED,
                AuditEntityType.QUEUE,
                result.entry.id,
                session_id=session_id,
                metadata={
                    "claim_id": claim_id,
                    "position": result.entry.position,
                    "priority": result.entry.priority,
                    "estimated_wait_minutes": result.entry.estimated_wait_minutes,
                },
            )
        return result

    def leave_queue(self, session_id: str, queue_id: str) -> QueueEntry:
        entry = self.queue.get(queue_id)
        if entry is None:
            raise QueueEntryNotFound(queue_id)
        if entry.session_id != session_id:
            raise NotOwner("You can only remove your own queue entries.", queue_id=queue_id)
        self.queue.leave(queue_id)
        self._audit(
            AuditAction.QUEUE_LEFT,
            AuditEntityType.QUEUE,
            queue_id,
            session_id=session_id,
            metadata={"claim_id": entry.claim_id, "position": entry.position},
        )
        return entry

    def list_queue(
        self, *, claim_id: str | None = None, session_id: str | None = None
    ) -> list[QueueEntry]:
        return self.queue.list_entries(claim_id=claim_id, session_id=session_id)

    # ------------------------------------------------------------------
    # notifications

    def list_notifications(
        self,
        session_id: str,
        *,
        unread_only: bool = False,
        type: NotificationType | str | None = None,
        limit: int = 50,
    ) -> list[Notification]:
        try:
            kind = NotificationType(type) if type else None
        except ValueError as exc:
            raise InvalidInput(f"Invalid notification type '{type}'") from exc
        return self.notifications.list_notifications(
            session_id, unread_only=unread_only, type=kind, limit=limit
        )

    def mark_notifications_read(self, session_id: str, notification_ids: Sequence[str]) -> int:
        ids = list(dict.fromkeys(notification_ids))
        if not ids:
            raise InvalidInput("notification_ids must not be empty")
        found = self.notifications.get_many(ids)
        missing = sorted(set(ids) - {item.id for item in found})
        if missing:
            raise NotificationNotFound(missing)
        foreign = sorted(item.id for item in found if item.session_id != session_id)
        if foreign:
            raise NotOwner(
                "You can only mark your own notifications as read.", notification_ids=foreign
            )
        return self.notifications.mark_read(ids)

    # ------------------------------------------------------------------
    # symbols

    def analyze_symbols(
        self,
        session_id: str,
        files: Sequence[FileSymbols | dict[str, Any]],
        *,
        references: Iterable[SymbolReferences | dict[str, Any]] | None = None,
        check_symbols: Sequence[str] | None = None,
    ) -> SymbolAnalysis:
        """Split the symbols of ``files`` into safe and blocked against other sessions' claims."""

        if not session_id:
            raise InvalidInput("session_id is required")
        if not files:
            raise InvalidInput("files array is required")
        return self.analyzer.analyze(
            files,
            exclude_session_id=session_id,
            references=references,
            check_symbols=check_symbols,
        )

    def validate_symbols(
        self,
        file: str,
        symbols: Sequence[str],
        lsp_symbols: Sequence[LspSymbol | dict[str, Any]],
    ) -> SymbolValidation:
        if not symbols:
            raise InvalidInput("file, symbols, and lsp_symbols are required")
        return self.analyzer.validate(file, symbols, lsp_symbols)

    def store_references(
        self,
        session_id: str,
        references: Iterable[SymbolReferences | dict[str, Any]],
        *,
        clear_existing: bool = False,
    ) -> ReferenceUpdate:
        """Record who-uses-what locations reported by ``session_id``.

        With ``clear_existing`` the session's earlier references are dropped in
        the same transaction, so readers never see a half-replaced index.
        """

        self.sessions.require_active(session_id)
        update = ReferenceUpdate()
        with self.database.transaction():
            if clear_existing:
                update.cleared = self.references.clear_session(session_id)
            update.stored, update.skipped = self.references.store(session_id, references)
        return update

    def analyze_impact(self, session_id: str, file: str, symbol: str) -> ImpactInfo:
        return self.analyzer.impact(file, symbol, exclude_session_id=session_id or None)


__all__ = [
    "CheckReport",
    "ClaimCoordinator",
    "ClaimOutcome",
    "FileReleaseOutcome",
    "ReaperOutcome",
    "ReferenceUpdate",
    "ReleaseOutcome",
    "SessionEnd",
    "SessionStart",
]
