"""Claim persistence: atomic creation, release and lookup."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Sequence

from pydantic import ValidationError
from sqlalchemy import select

from ..storage.database import Database
from ..storage.models import ClaimFileRow, ClaimRow, ClaimSymbolRow, SessionRow
from .errors import (
    ClaimAlreadyReleased,
    ClaimNotFound,
    InvalidInput,
    OwnerInactive,
    SessionNotFound,
)
from .types import (
    DEFAULT_PRIORITY,
    Claim,
    ClaimScope,
    ClaimStatus,
    ClaimSymbol,
    FileReleaseResult,
    SessionStatus,
    SymbolRequest,
    SymbolType,
    is_glob_pattern,
)

logger = logging.getLogger(__name__)


def validate_path(path: str) -> str:
    if not isinstance(path, str) or not path:
        raise InvalidInput("File paths must be non-empty strings", file_path=path)
    if ".." in path or "\0" in path:
        raise InvalidInput(
            "Path cannot contain path traversal sequences (..) or null bytes",
            file_path=path,
        )
    return path


def validate_priority(priority: Any) -> int:
    if isinstance(priority, bool) or not isinstance(priority, (int, float)):
        raise InvalidInput("Priority must be a number between 0 and 100", priority=priority)
    if not 0 <= priority <= 100:
        raise InvalidInput("Priority must be between 0 and 100", priority=priority)
    return int(priority)


def parse_symbols(symbols: Iterable[SymbolRequest | dict[str, Any]] | None) -> list[SymbolRequest]:
    """Validate raw symbol requests, merging repeated files."""

    if not symbols:
        return []
    try:
        parsed = [SymbolRequest.model_validate(item) for item in symbols]
    except ValidationError as exc:
        raise InvalidInput(f"Invalid symbol request: {exc}") from exc
    for request in parsed:
        validate_path(request.file)
    return parsed


def merge_files(files: Sequence[str] | None, symbols: Sequence[SymbolRequest]) -> list[str]:
    """Union of explicit files and files named by symbol requests, order preserved."""

    merged: dict[str, None] = {}
    for path in files or []:
        merged.setdefault(validate_path(path), None)
    for request in symbols:
        merged.setdefault(request.file, None)
    return list(merged)


def claim_from_row(row: ClaimRow) -> Claim:
    return Claim(
        id=row.id,
        session_id=row.session_id,
        session_name=row.session.name if row.session is not None else None,
        intent=row.intent,
        scope=ClaimScope(row.scope),
        priority=row.priority,
        status=ClaimStatus(row.status),
        completed_summary=row.completed_summary,
        created_at=row.created_at,
        updated_at=row.updated_at,
        files=[file_row.file_path for file_row in row.files],
        symbols=[
            ClaimSymbol(
                file_path=symbol_row.file_path,
                symbol_name=symbol_row.symbol_name,
                symbol_type=SymbolType(symbol_row.symbol_type),
            )
            for symbol_row in row.symbols
        ],
    )


class ClaimStore:
    """Owns claim rows together with their file and symbol children."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def create_claim(
        self,
        *,
        session_id: str,
        intent: str,
        files: Sequence[str] | None = None,
        symbols: Iterable[SymbolRequest | dict[str, Any]] | None = None,
        scope: ClaimScope | str = ClaimScope.MEDIUM,
        priority: int = DEFAULT_PRIORITY,
    ) -> Claim:
        """Insert a claim with all of its file and symbol rows in one transaction."""

        if not intent or not intent.strip():
            raise InvalidInput("intent is required")
        symbol_requests = parse_symbols(symbols)
        all_files = merge_files(files, symbol_requests)
        if not all_files:
            raise InvalidInput("Either files or symbols must be provided")
        priority = validate_priority(priority)
        try:
            scope = ClaimScope(scope)
        except ValueError as exc:
            raise InvalidInput(f"Invalid scope '{scope}'", scope=str(scope)) from exc

        now = self._db.now()
        with self._db.transaction() as tx:
            session_row = tx.get(SessionRow, session_id)
            if session_row is None:
                raise SessionNotFound(session_id)
            if session_row.status != SessionStatus.ACTIVE.value:
                raise OwnerInactive(session_id, session_row.status)

            seen_symbols: set[tuple[str, str]] = set()
            symbol_rows: list[ClaimSymbolRow] = []
            for request in symbol_requests:
                for name in request.symbols:
                    if (request.file, name) in seen_symbols:
                        continue
                    seen_symbols.add((request.file, name))
                    symbol_rows.append(
                        ClaimSymbolRow(
                            file_path=request.file,
                            symbol_name=name,
                            symbol_type=request.symbol_type.value,
                        )
                    )

            row = ClaimRow(
                id=str(uuid.uuid4()),
                session=session_row,
                intent=intent,
                scope=scope.value,
                priority=priority,
                status=ClaimStatus.ACTIVE.value,
                queue_counter=0,
                created_at=now,
                updated_at=now,
                files=[
                    ClaimFileRow(file_path=path, is_pattern=is_glob_pattern(path))
                    for path in all_files
                ],
                symbols=symbol_rows,
            )
            tx.add(row)
            tx.flush()
            claim = claim_from_row(row)

        logger.info(
            "Claim created",
            extra={
                "claim_id": claim.id,
                "session_id": session_id,
                "files": claim.files,
                "symbols": len(claim.symbols),
            },
        )
        return claim

    def get_claim(self, claim_id: str) -> Claim | None:
        with self._db.transaction(write=False) as tx:
            row = tx.get(ClaimRow, claim_id)
            return claim_from_row(row) if row is not None else None

    def require_claim(self, claim_id: str) -> Claim:
        claim = self.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFound(claim_id=claim_id)
        return claim

    def list_claims(
        self,
        *,
        session_id: str | None = None,
        status: ClaimStatus | str = ClaimStatus.ACTIVE,
        project_root: str | None = None,
    ) -> list[Claim]:
        """List claims newest first; file and symbol rows load in one batched query each."""

        stmt = select(ClaimRow).join(SessionRow, ClaimRow.session_id == SessionRow.id)
        if session_id:
            stmt = stmt.where(ClaimRow.session_id == session_id)
        if status != "all":
            try:
                status_value = ClaimStatus(status).value
            except ValueError as exc:
                raise InvalidInput(f"Invalid claim status '{status}'") from exc
            stmt = stmt.where(ClaimRow.status == status_value)
        if project_root:
            stmt = stmt.where(SessionRow.project_root == project_root)
        stmt = stmt.order_by(ClaimRow.created_at.desc(), ClaimRow.id)

        with self._db.transaction(write=False) as tx:
            return [claim_from_row(row) for row in tx.scalars(stmt).unique()]

    def release_claim(
        self,
        claim_id: str,
        *,
        status: ClaimStatus | str,
        summary: str | None = None,
    ) -> bool:
        """Move an active claim into a terminal state.

        Returns ``False`` when the claim does not exist.
        """

        terminal = ClaimStatus(status)
        if terminal is ClaimStatus.ACTIVE:
            raise InvalidInput("Claims can only be released as completed or abandoned")

        with self._db.transaction() as tx:
            row = tx.get(ClaimRow, claim_id)
            if row is None:
                return False
            if row.status != ClaimStatus.ACTIVE.value:
                raise ClaimAlreadyReleased(claim_id, row.status)
            row.status = terminal.value
            row.completed_summary = summary
            row.updated_at = self._db.now()

        logger.info(
            "Claim released",
            extra={"claim_id": claim_id, "status": terminal.value},
        )
        return True

    def release_claim_by_file(self, session_id: str, file_path: str) -> FileReleaseResult:
        """Release one file from the session's most recently touched claim on it.

        A claim holding only that file is completed outright; otherwise the file
        and its symbol rows are dropped and the claim stays active.
        """

        validate_path(file_path)
        stmt = (
            select(ClaimRow)
            .join(ClaimFileRow, ClaimFileRow.claim_id == ClaimRow.id)
            .where(
                ClaimRow.session_id == session_id,
                ClaimRow.status == ClaimStatus.ACTIVE.value,
                ClaimFileRow.file_path == file_path,
            )
            .order_by(ClaimRow.updated_at.desc(), ClaimRow.created_at.desc())
            .limit(1)
        )
        with self._db.transaction() as tx:
            row = tx.scalars(stmt).first()
            if row is None:
                raise ClaimNotFound(
                    "No active claim found for this file in your session.",
                    file_path=file_path,
                    session_id=session_id,
                )

            now = self._db.now()
            if len(row.files) <= 1:
                row.status = ClaimStatus.COMPLETED.value
                row.completed_summary = f"Released after editing {file_path}"
                row.updated_at = now
                partial = False
            else:
                row.files = [item for item in row.files if item.file_path != file_path]
                row.symbols = [item for item in row.symbols if item.file_path != file_path]
                row.updated_at = now
                partial = True
            tx.flush()
            claim = claim_from_row(row)

        logger.info(
            "Claim file released",
            extra={"claim_id": claim.id, "file_path": file_path, "partial": partial},
        )
        return FileReleaseResult(
            claim=claim,
            file_path=file_path,
            partial=partial,
            remaining_files=claim.files if partial else [],
        )

    def update_claim_priority(self, claim_id: str, priority: int) -> bool:
        """Change the priority of an active claim; returns ``False`` otherwise."""

        priority = validate_priority(priority)
        with self._db.transaction() as tx:
            row = tx.get(ClaimRow, claim_id)
            if row is None or row.status != ClaimStatus.ACTIVE.value:
                return False
            row.priority = priority
            row.updated_at = self._db.now()
        return True


__all__ = [
    "ClaimStore",
    "claim_from_row",
    "merge_files",
    "parse_symbols",
    "validate_path",
    "validate_priority",
]
