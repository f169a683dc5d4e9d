"""Conflict detection between requested paths/symbols and active claims."""

from __future__ import annotations

import logging
from fnmatch import fnmatchcase
from typing import Any, Iterable, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import lazyload

from ..storage.database import Database
from ..storage.models import ClaimFileRow, ClaimRow, ClaimSymbolRow, SessionRow
from .claims import merge_files, parse_symbols
from .types import (
    ClaimScope,
    ClaimStatus,
    ConflictInfo,
    ConflictLevel,
    SessionStatus,
    SymbolRequest,
    SymbolType,
)

logger = logging.getLogger(__name__)


def path_matches(requested: str, stored: str, is_pattern: bool) -> bool:
    """Exact match, or case-sensitive glob match where ``*`` also crosses ``/``."""

    if requested == stored:
        return True
    return is_pattern and fnmatchcase(requested, stored)


def _conflict(
    claim_row: ClaimRow,
    session_row: SessionRow,
    *,
    file_path: str,
    level: ConflictLevel,
    symbol_name: str | None = None,
    symbol_type: str | None = None,
    matched_pattern: str | None = None,
) -> ConflictInfo:
    return ConflictInfo(
        claim_id=claim_row.id,
        session_id=claim_row.session_id,
        session_name=session_row.name,
        file_path=file_path,
        intent=claim_row.intent,
        scope=ClaimScope(claim_row.scope),
        priority=claim_row.priority,
        created_at=claim_row.created_at,
        conflict_level=level,
        symbol_name=symbol_name,
        symbol_type=SymbolType(symbol_type) if symbol_type else None,
        matched_pattern=matched_pattern,
    )


class ConflictDetector:
    """Read-only check of a request against every live claim."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def check_conflicts(
        self,
        files: Sequence[str] | None,
        *,
        exclude_session_id: str | None = None,
        symbols: Iterable[SymbolRequest | dict[str, Any]] | None = None,
    ) -> list[ConflictInfo]:
        symbol_requests = parse_symbols(symbols)
        requested = merge_files(files, symbol_requests)
        if not requested:
            return []

        symbols_by_file: dict[str, set[str]] = {}
        for request in symbol_requests:
            symbols_by_file.setdefault(request.file, set()).update(request.symbols)

        live = (
            ClaimRow.status == ClaimStatus.ACTIVE.value,
            SessionRow.status == SessionStatus.ACTIVE.value,
        )
        file_stmt = (
            select(ClaimFileRow, ClaimRow, SessionRow)
            .join(ClaimRow, ClaimFileRow.claim_id == ClaimRow.id)
            .join(SessionRow, ClaimRow.session_id == SessionRow.id)
            .where(
                *live,
                or_(ClaimFileRow.file_path.in_(requested), ClaimFileRow.is_pattern.is_(True)),
            )
            .options(lazyload("*"))
        )
        symbol_stmt = (
            select(ClaimSymbolRow, ClaimRow, SessionRow)
            .join(ClaimRow, ClaimSymbolRow.claim_id == ClaimRow.id)
            .join(SessionRow, ClaimRow.session_id == SessionRow.id)
            .where(*live, ClaimSymbolRow.file_path.in_(requested))
            .options(lazyload("*"))
        )
        if exclude_session_id:
            file_stmt = file_stmt.where(ClaimRow.session_id != exclude_session_id)
            symbol_stmt = symbol_stmt.where(ClaimRow.session_id != exclude_session_id)

        found: dict[tuple[str, str, str], ConflictInfo] = {}
        with self._db.transaction(write=False) as tx:
            file_rows = tx.execute(file_stmt).all()
            symbol_rows = tx.execute(symbol_stmt).all()

            # (claim, file) pairs that are symbol-scoped rather than whole-file.
            candidate_ids = {claim_row.id for _, claim_row, _ in file_rows}
            symbol_scoped: set[tuple[str, str]] = set()
            if candidate_ids and symbols_by_file:
                scoped_stmt = (
                    select(ClaimSymbolRow.claim_id, ClaimSymbolRow.file_path)
                    .where(ClaimSymbolRow.claim_id.in_(candidate_ids))
                    .distinct()
                )
                symbol_scoped = {(row.claim_id, row.file_path) for row in tx.execute(scoped_stmt)}

            for file_row, claim_row, session_row in file_rows:
                for path in requested:
                    if not path_matches(path, file_row.file_path, file_row.is_pattern):
                        continue
                    if path in symbols_by_file and (claim_row.id, file_row.file_path) in symbol_scoped:
                        continue
                    info = _conflict(
                        claim_row,
                        session_row,
                        file_path=path,
                        level=ConflictLevel.FILE,
                        matched_pattern=file_row.file_path if file_row.file_path != path else None,
                    )
                    found.setdefault(info.key, info)

            for symbol_row, claim_row, session_row in symbol_rows:
                wanted = symbols_by_file.get(symbol_row.file_path)
                if wanted is not None and symbol_row.symbol_name not in wanted:
                    continue
                info = _conflict(
                    claim_row,
                    session_row,
                    file_path=symbol_row.file_path,
                    level=ConflictLevel.SYMBOL,
                    symbol_name=symbol_row.symbol_name,
                    symbol_type=symbol_row.symbol_type,
                )
                found.setdefault(info.key, info)

        conflicts = sorted(
            found.values(),
            key=lambda item: (-item.priority, item.created_at, item.file_path, item.symbol_name or ""),
        )
        if conflicts:
            logger.debug(
                "Conflicts detected",
                extra={
                    "files": requested,
                    "conflicts": len(conflicts),
                    "exclude_session_id": exclude_session_id,
                },
            )
        return conflicts


__all__ = ["ConflictDetector", "path_matches"]
