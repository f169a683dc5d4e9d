"""Session registry backed by the durable store."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import select

from ..storage.database import Database
from ..storage.models import SessionRow
from .errors import InvalidInput, SessionInactive, SessionNotFound
from .types import CollabConfig, Session, SessionStatus, TodoItem

logger = logging.getLogger(__name__)


def session_from_row(row: SessionRow) -> Session:
    return Session(
        id=row.id,
        name=row.name,
        project_root=row.project_root,
        machine_id=row.machine_id,
        status=SessionStatus(row.status),
        config=CollabConfig.from_stored(row.config),
        current_task=row.current_task,
        todos=[TodoItem.model_validate(item) for item in (row.todos or [])],
        created_at=row.created_at,
        last_heartbeat=row.last_heartbeat,
    )


class SessionRegistry:
    """Create, look up and mutate editing sessions."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def create(
        self,
        *,
        project_root: str,
        name: str | None = None,
        machine_id: str | None = None,
        config: CollabConfig | None = None,
    ) -> Session:
        session_id = str(uuid.uuid4())
        now = self._db.now()
        row = SessionRow(
            id=session_id,
            name=name or f"session-{session_id[:8]}",
            project_root=project_root,
            machine_id=machine_id,
            status=SessionStatus.ACTIVE.value,
            config=(config or CollabConfig()).to_dict(),
            todos=[],
            created_at=now,
            last_heartbeat=now,
        )
        with self._db.transaction() as tx:
            tx.add(row)
            tx.flush()
            session = session_from_row(row)
        logger.info(
            "Session registered",
            extra={"session_id": session_id, "project_root": project_root},
        )
        return session

    def get(self, session_id: str) -> Session | None:
        with self._db.transaction(write=False) as tx:
            row = tx.get(SessionRow, session_id)
            return session_from_row(row) if row is not None else None

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def require_active(self, session_id: str) -> Session:
        session = self.require(session_id)
        if not session.is_active:
            raise SessionInactive(session_id, session.status.value)
        return session

    def list_sessions(
        self,
        *,
        include_inactive: bool = False,
        project_root: str | None = None,
    ) -> list[Session]:
        stmt = select(SessionRow)
        if not include_inactive:
            stmt = stmt.where(SessionRow.status == SessionStatus.ACTIVE.value)
        if project_root:
            stmt = stmt.where(SessionRow.project_root == project_root)
        stmt = stmt.order_by(SessionRow.last_heartbeat.desc())
        with self._db.transaction(write=False) as tx:
            return [session_from_row(row) for row in tx.scalars(stmt)]

    def heartbeat(
        self,
        session_id: str,
        *,
        current_task: str | None = None,
        todos: Iterable[TodoItem | dict[str, Any]] | None = None,
    ) -> Session:
        """Refresh the heartbeat and optionally the reported work status."""

        with self._db.transaction() as tx:
            row = tx.get(SessionRow, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            if row.status != SessionStatus.ACTIVE.value:
                raise SessionInactive(session_id, row.status)
            row.last_heartbeat = self._db.now()
            self._apply_status(row, current_task=current_task, todos=todos)
            tx.flush()
            return session_from_row(row)

    def update_status(
        self,
        session_id: str,
        *,
        current_task: str | None = None,
        todos: Iterable[TodoItem | dict[str, Any]] | None = None,
    ) -> Session:
        with self._db.transaction() as tx:
            row = tx.get(SessionRow, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            row.last_heartbeat = self._db.now()
            self._apply_status(row, current_task=current_task, todos=todos)
            tx.flush()
            return session_from_row(row)

    def update_config(self, session_id: str, config: CollabConfig) -> Session:
        with self._db.transaction() as tx:
            row = tx.get(SessionRow, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            row.config = config.to_dict()
            tx.flush()
            return session_from_row(row)

    def terminate(self, session_id: str) -> Session:
        with self._db.transaction() as tx:
            row = tx.get(SessionRow, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            row.status = SessionStatus.TERMINATED.value
            tx.flush()
            return session_from_row(row)

    @staticmethod
    def _apply_status(
        row: SessionRow,
        *,
        current_task: str | None,
        todos: Iterable[TodoItem | dict[str, Any]] | None,
    ) -> None:
        if current_task is not None:
            row.current_task = current_task
        if todos is not None:
            try:
                row.todos = [TodoItem.model_validate(item).model_dump() for item in todos]
            except ValidationError as exc:
                raise InvalidInput(f"Invalid todo list: {exc}") from exc


__all__ = ["SessionRegistry", "session_from_row"]
