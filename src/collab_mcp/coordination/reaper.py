"""Sweeps that reclaim claims held by departed or idle sessions."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import select

from ..storage.database import Database
from ..storage.models import ClaimRow, SessionRow
from .claims import claim_from_row
from .types import ClaimStatus, CollabConfig, SessionStatus, SweepResult

logger = logging.getLogger(__name__)


class StalenessReaper:
    """Idempotent sweeps; each one runs in a single write transaction."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def cleanup_stale_sessions(self, stale_minutes: int = 30) -> SweepResult:
        """Mark silent sessions inactive and abandon every claim of a non-active owner."""

        now = self._db.now()
        cutoff = now - timedelta(minutes=stale_minutes)
        with self._db.transaction() as tx:
            stale_rows = tx.scalars(
                select(SessionRow).where(
                    SessionRow.status == SessionStatus.ACTIVE.value,
                    SessionRow.last_heartbeat < cutoff,
                )
            ).all()
            for session_row in stale_rows:
                session_row.status = SessionStatus.INACTIVE.value
            tx.flush()

            orphaned = tx.scalars(
                select(ClaimRow)
                .join(SessionRow, ClaimRow.session_id == SessionRow.id)
                .where(
                    ClaimRow.status == ClaimStatus.ACTIVE.value,
                    SessionRow.status.in_(
                        [SessionStatus.INACTIVE.value, SessionStatus.TERMINATED.value]
                    ),
                )
            ).unique().all()
            for claim_row in orphaned:
                claim_row.status = ClaimStatus.ABANDONED.value
                claim_row.updated_at = now
            tx.flush()
            released = [claim_from_row(row) for row in orphaned]

        if stale_rows or released:
            logger.info(
                "Stale sessions swept",
                extra={"stale_sessions": len(stale_rows), "abandoned_claims": len(released)},
            )
        return SweepResult(stale_sessions=len(stale_rows), released_claims=released)

    def cleanup_stale_claims(self) -> SweepResult:
        """Abandon idle claims of active sessions that opted in to auto-release."""

        now = self._db.now()
        released_rows: list[ClaimRow] = []
        with self._db.transaction() as tx:
            sessions = tx.scalars(
                select(SessionRow).where(SessionRow.status == SessionStatus.ACTIVE.value)
            ).all()
            for session_row in sessions:
                config = CollabConfig.from_stored(session_row.config)
                if not config.auto_release_stale:
                    continue
                cutoff = now - timedelta(
                    hours=config.stale_threshold_hours,
                    minutes=config.auto_release_delay_minutes,
                )
                idle = tx.scalars(
                    select(ClaimRow).where(
                        ClaimRow.session_id == session_row.id,
                        ClaimRow.status == ClaimStatus.ACTIVE.value,
                        ClaimRow.updated_at < cutoff,
                    )
                ).unique().all()
                for claim_row in idle:
                    claim_row.status = ClaimStatus.ABANDONED.value
                    claim_row.updated_at = now
                released_rows.extend(idle)
            tx.flush()
            released = [claim_from_row(row) for row in released_rows]

        if released:
            logger.info(
                "Stale claims auto-released",
                extra={"abandoned_claims": len(released)},
            )
        return SweepResult(released_claims=released)


__all__ = ["StalenessReaper"]
