"""Notification inbox and queue fan-out on claim release."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Sequence

from sqlalchemy import select, update

from ..storage.database import Database
from ..storage.models import NotificationRow
from .queue import WaitQueue
from .types import Notification, NotificationType

logger = logging.getLogger(__name__)

MAX_NOTIFICATION_LIMIT = 100


def notification_from_row(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        session_id=row.session_id,
        type=NotificationType(row.type),
        title=row.title,
        message=row.message,
        reference_type=row.reference_type,
        reference_id=row.reference_id,
        metadata=dict(row.payload or {}),
        read_at=row.read_at,
        created_at=row.created_at,
    )


class NotificationCenter:
    """Per-session inbox stored alongside the claims."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def create(
        self,
        *,
        session_id: str,
        type: NotificationType,
        title: str,
        message: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        row = NotificationRow(
            id=str(uuid.uuid4()),
            session_id=session_id,
            type=NotificationType(type).value,
            title=title,
            message=message,
            reference_type=reference_type,
            reference_id=reference_id,
            payload=dict(metadata or {}),
            created_at=self._db.now(),
        )
        with self._db.transaction() as tx:
            tx.add(row)
            tx.flush()
            return notification_from_row(row)

    def get(self, notification_id: str) -> Notification | None:
        with self._db.transaction(write=False) as tx:
            row = tx.get(NotificationRow, notification_id)
            return notification_from_row(row) if row is not None else None

    def get_many(self, notification_ids: Sequence[str]) -> list[Notification]:
        if not notification_ids:
            return []
        with self._db.transaction(write=False) as tx:
            rows = tx.scalars(
                select(NotificationRow).where(NotificationRow.id.in_(list(notification_ids)))
            )
            return [notification_from_row(row) for row in rows]

    def list_notifications(
        self,
        session_id: str,
        *,
        unread_only: bool = False,
        type: NotificationType | str | None = None,
        limit: int = 50,
    ) -> list[Notification]:
        """Newest first; ``limit`` is clamped to 1..100."""

        limit = max(1, min(int(limit), MAX_NOTIFICATION_LIMIT))
        stmt = select(NotificationRow).where(NotificationRow.session_id == session_id)
        if unread_only:
            stmt = stmt.where(NotificationRow.read_at.is_(None))
        if type is not None:
            stmt = stmt.where(NotificationRow.type == NotificationType(type).value)
        stmt = stmt.order_by(NotificationRow.created_at.desc(), NotificationRow.id).limit(limit)
        with self._db.transaction(write=False) as tx:
            return [notification_from_row(row) for row in tx.scalars(stmt)]

    def mark_read(self, notification_ids: Sequence[str]) -> int:
        """Stamp ``read_at`` on unread notifications; already-read ones are left alone."""

        if not notification_ids:
            return 0
        with self._db.transaction() as tx:
            result = tx.execute(
                update(NotificationRow)
                .where(
                    NotificationRow.id.in_(list(notification_ids)),
                    NotificationRow.read_at.is_(None),
                )
                .values(read_at=self._db.now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0


class ReleaseNotifier:
    """Tell everyone waiting on a claim that it has been released."""

    def __init__(self, queue: WaitQueue, center: NotificationCenter) -> None:
        self._queue = queue
        self._center = center

    def notify_queue_on_claim_release(
        self,
        claim_id: str,
        released_by: str,
        files: Sequence[str],
    ) -> int:
        """Notify queued sessions in service order; the head gets ``queue_ready``.

        Queue entries are left in place; waiters leave explicitly.
        """

        waiting = self._queue.queued_sessions(claim_id)
        file_list = ", ".join(files)
        for index, entry in enumerate(waiting):
            position = index + 1
            if index == 0:
                kind = NotificationType.QUEUE_READY
                title = "You are next in queue!"
                message = (
                    f"The claim for {file_list} has been released. You can now claim these files."
                )
            else:
                kind = NotificationType.CLAIM_RELEASED
                title = "Claim released"
                message = f"A claim you were waiting for has been released. Position: {position}"
            self._center.create(
                session_id=entry.session_id,
                type=kind,
                title=title,
                message=message,
                reference_type="claim",
                reference_id=claim_id,
                metadata={
                    "claim_id": claim_id,
                    "files": list(files),
                    "released_by": released_by,
                    "queue_position": position,
                },
            )

        if waiting:
            logger.info(
                "Queue notified of claim release",
                extra={"claim_id": claim_id, "notified": len(waiting)},
            )
        return len(waiting)


__all__ = ["MAX_NOTIFICATION_LIMIT", "NotificationCenter", "ReleaseNotifier", "notification_from_row"]
