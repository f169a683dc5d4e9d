"""Symbol reference index used for change-impact analysis."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from pydantic import ValidationError
from sqlalchemy import and_, delete, or_, select

from ..storage.database import Database
from ..storage.models import SymbolReferenceRow
from .claims import validate_path
from .errors import InvalidInput
from .types import StoredReference, SymbolReferences

logger = logging.getLogger(__name__)


def reference_from_row(row: SymbolReferenceRow) -> StoredReference:
    return StoredReference(
        source_file=row.source_file,
        source_symbol=row.source_symbol,
        ref_file=row.ref_file,
        ref_line=row.ref_line,
        ref_context=row.ref_context,
        session_id=row.session_id,
        created_at=row.created_at,
    )


def parse_references(
    references: Iterable[SymbolReferences | dict[str, Any]] | None,
) -> list[SymbolReferences]:
    if not references:
        return []
    try:
        parsed = [SymbolReferences.model_validate(item) for item in references]
    except ValidationError as exc:
        raise InvalidInput(f"Invalid symbol references: {exc}") from exc
    for item in parsed:
        validate_path(item.source_file)
        for location in item.references:
            validate_path(location.file)
    return parsed


class ReferenceStore:
    """Who-uses-what index; a location is recorded once regardless of reporter."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def store(
        self,
        session_id: str,
        references: Iterable[SymbolReferences | dict[str, Any]],
    ) -> tuple[int, int]:
        """Insert new reference locations; returns ``(stored, skipped)``."""

        parsed = parse_references(references)
        stored = skipped = 0
        seen: set[tuple[str, str, str, int]] = set()
        now = self._db.now()
        with self._db.transaction() as tx:
            for item in parsed:
                for location in item.references:
                    key = (item.source_file, item.source_symbol, location.file, location.line)
                    if key in seen:
                        skipped += 1
                        continue
                    existing = tx.scalar(
                        select(SymbolReferenceRow.id).where(
                            SymbolReferenceRow.source_file == item.source_file,
                            SymbolReferenceRow.source_symbol == item.source_symbol,
                            SymbolReferenceRow.ref_file == location.file,
                            SymbolReferenceRow.ref_line == location.line,
                        )
                    )
                    if existing is not None:
                        skipped += 1
                        continue
                    seen.add(key)
                    tx.add(
                        SymbolReferenceRow(
                            source_file=item.source_file,
                            source_symbol=item.source_symbol,
                            ref_file=location.file,
                            ref_line=location.line,
                            ref_context=location.context,
                            session_id=session_id,
                            created_at=now,
                        )
                    )
                    stored += 1
            tx.flush()

        if stored:
            logger.info(
                "Symbol references stored",
                extra={"session_id": session_id, "stored": stored, "skipped": skipped},
            )
        return stored, skipped

    def clear_session(self, session_id: str) -> int:
        with self._db.transaction() as tx:
            result = tx.execute(
                delete(SymbolReferenceRow).where(SymbolReferenceRow.session_id == session_id)
            )
            return result.rowcount or 0

    def references_for_symbol(self, source_file: str, source_symbol: str) -> list[StoredReference]:
        stmt = (
            select(SymbolReferenceRow)
            .where(
                SymbolReferenceRow.source_file == source_file,
                SymbolReferenceRow.source_symbol == source_symbol,
            )
            .order_by(SymbolReferenceRow.ref_file, SymbolReferenceRow.ref_line)
        )
        with self._db.transaction(write=False) as tx:
            return [reference_from_row(row) for row in tx.scalars(stmt)]

    def references_for_symbols(
        self, symbols: Sequence[tuple[str, str]]
    ) -> dict[tuple[str, str], list[StoredReference]]:
        """Batch lookup keyed by ``(source_file, source_symbol)``."""

        if not symbols:
            return {}
        pairs = list(dict.fromkeys(symbols))
        stmt = (
            select(SymbolReferenceRow)
            .where(
                or_(
                    *(
                        and_(
                            SymbolReferenceRow.source_file == source_file,
                            SymbolReferenceRow.source_symbol == source_symbol,
                        )
                        for source_file, source_symbol in pairs
                    )
                )
            )
            .order_by(SymbolReferenceRow.ref_file, SymbolReferenceRow.ref_line)
        )
        found: dict[tuple[str, str], list[StoredReference]] = {}
        with self._db.transaction(write=False) as tx:
            for row in tx.scalars(stmt):
                found.setdefault((row.source_file, row.source_symbol), []).append(
                    reference_from_row(row)
                )
        return found


__all__ = ["ReferenceStore", "parse_references", "reference_from_row"]
