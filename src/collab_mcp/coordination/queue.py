"""Per-claim wait queue with priority ordering and wait estimates."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from ..storage.database import Database
from ..storage.models import ClaimRow, QueueEntryRow, SessionRow
from .claims import claim_from_row, validate_priority
from .errors import (
    AlreadyInQueue,
    CannotQueueOwnClaim,
    ClaimNotFound,
    InvalidInput,
    SessionNotFound,
)
from .types import (
    DEFAULT_PRIORITY,
    SCOPE_WAIT_MINUTES,
    ClaimScope,
    ClaimStatus,
    QueueEntry,
    QueueJoinResult,
)

logger = logging.getLogger(__name__)


def entry_from_row(row: QueueEntryRow) -> QueueEntry:
    claim_row = row.claim
    return QueueEntry(
        id=row.id,
        claim_id=row.claim_id,
        session_id=row.session_id,
        session_name=row.session.name if row.session is not None else None,
        intent=row.intent,
        position=row.position,
        priority=row.priority,
        scope=ClaimScope(row.scope),
        estimated_wait_minutes=row.estimated_wait_minutes,
        created_at=row.created_at,
        claim_intent=claim_row.intent if claim_row is not None else None,
        claim_owner_name=(
            claim_row.session.name if claim_row is not None and claim_row.session is not None else None
        ),
        claim_files=[item.file_path for item in claim_row.files] if claim_row is not None else [],
    )


def _ordered(stmt):
    return stmt.order_by(
        QueueEntryRow.priority.desc(),
        QueueEntryRow.position.asc(),
        QueueEntryRow.created_at.asc(),
    )


class WaitQueue:
    """Advisory queue of sessions waiting for a claim to be released.

    Positions are handed out per claim from a counter that only grows, so a
    position is never reused even after the tail entry leaves. Service order
    is priority descending, then position ascending.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    def join(
        self,
        *,
        claim_id: str,
        session_id: str,
        intent: str,
        priority: int = DEFAULT_PRIORITY,
        scope: ClaimScope | str = ClaimScope.MEDIUM,
    ) -> QueueJoinResult:
        if not intent or not intent.strip():
            raise InvalidInput("intent is required")
        priority = validate_priority(priority)
        try:
            scope = ClaimScope(scope)
        except ValueError as exc:
            raise InvalidInput(f"Invalid scope '{scope}'", scope=str(scope)) from exc

        with self._db.transaction() as tx:
            claim_row = tx.get(ClaimRow, claim_id)
            if claim_row is None:
                raise ClaimNotFound(claim_id=claim_id)
            if claim_row.session_id == session_id:
                raise CannotQueueOwnClaim(claim_id)
            if claim_row.status != ClaimStatus.ACTIVE.value:
                return QueueJoinResult(claim=claim_from_row(claim_row), entry=None)
            if tx.get(SessionRow, session_id) is None:
                raise SessionNotFound(session_id)

            existing = tx.scalar(
                select(QueueEntryRow.id).where(
                    QueueEntryRow.claim_id == claim_id,
                    QueueEntryRow.session_id == session_id,
                )
            )
            if existing is not None:
                raise AlreadyInQueue(claim_id, session_id)

            highest = tx.scalar(
                select(func.max(QueueEntryRow.position)).where(QueueEntryRow.claim_id == claim_id)
            )
            position = max(claim_row.queue_counter or 0, highest or 0) + 1
            claim_row.queue_counter = position

            ahead = tx.scalars(
                _ordered(
                    select(QueueEntryRow.scope).where(
                        QueueEntryRow.claim_id == claim_id,
                        QueueEntryRow.position < position,
                    )
                )
            ).all()
            estimated = sum(SCOPE_WAIT_MINUTES[ClaimScope(item)] for item in ahead)
            estimated += round(SCOPE_WAIT_MINUTES[ClaimScope(claim_row.scope)] / 2)

            row = QueueEntryRow(
                id=str(uuid.uuid4()),
                claim_id=claim_id,
                session_id=session_id,
                intent=intent,
                position=position,
                priority=priority,
                scope=scope.value,
                estimated_wait_minutes=estimated,
                created_at=self._db.now(),
            )
            tx.add(row)
            try:
                tx.flush()
            except IntegrityError as exc:
                raise AlreadyInQueue(claim_id, session_id) from exc

            queue_length = tx.scalar(
                select(func.count(QueueEntryRow.id)).where(QueueEntryRow.claim_id == claim_id)
            )
            entry = entry_from_row(row)
            claim = claim_from_row(claim_row)

        logger.info(
            "Session joined queue",
            extra={
                "claim_id": claim_id,
                "session_id": session_id,
                "position": position,
                "estimated_wait_minutes": estimated,
            },
        )
        return QueueJoinResult(claim=claim, entry=entry, queue_length=queue_length or 0)

    def get(self, entry_id: str) -> QueueEntry | None:
        with self._db.transaction(write=False) as tx:
            row = tx.get(QueueEntryRow, entry_id)
            return entry_from_row(row) if row is not None else None

    def leave(self, entry_id: str) -> bool:
        with self._db.transaction() as tx:
            result = tx.execute(delete(QueueEntryRow).where(QueueEntryRow.id == entry_id))
            removed = result.rowcount > 0
        if removed:
            logger.info("Queue entry removed", extra={"queue_id": entry_id})
        return removed

    def list_entries(
        self,
        *,
        claim_id: str | None = None,
        session_id: str | None = None,
    ) -> list[QueueEntry]:
        stmt = select(QueueEntryRow)
        if claim_id:
            stmt = stmt.where(QueueEntryRow.claim_id == claim_id)
        if session_id:
            stmt = stmt.where(QueueEntryRow.session_id == session_id)
        with self._db.transaction(write=False) as tx:
            return [entry_from_row(row) for row in tx.scalars(_ordered(stmt)).unique()]

    def queued_sessions(self, claim_id: str) -> list[QueueEntry]:
        """Entries waiting on ``claim_id`` in service order."""

        return self.list_entries(claim_id=claim_id)

    def remove_session_from_all_queues(self, session_id: str) -> int:
        with self._db.transaction() as tx:
            result = tx.execute(delete(QueueEntryRow).where(QueueEntryRow.session_id == session_id))
            return result.rowcount or 0


__all__ = ["WaitQueue", "entry_from_row"]
