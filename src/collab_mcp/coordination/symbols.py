"""Symbol-level analysis of editor (LSP) document symbols against live claims."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from pydantic import BaseModel, Field, ValidationError

from .conflicts import ConflictDetector
from .errors import InvalidInput
from .references import ReferenceStore, parse_references
from .types import (
    AffectedClaim,
    ConflictInfo,
    ConflictLevel,
    ImpactInfo,
    SymbolReferences,
    SymbolRequest,
    SymbolType,
)

logger = logging.getLogger(__name__)

# LSP SymbolKind values we distinguish; every other kind is "other".
LSP_SYMBOL_KINDS: dict[int, SymbolType] = {
    5: SymbolType.CLASS,
    6: SymbolType.METHOD,
    9: SymbolType.FUNCTION,  # constructor
    12: SymbolType.FUNCTION,
    13: SymbolType.VARIABLE,
    14: SymbolType.VARIABLE,  # constant
    23: SymbolType.CLASS,  # struct
}

MAX_SUGGESTIONS = 3


def symbol_type_for_kind(kind: int) -> SymbolType:
    return LSP_SYMBOL_KINDS.get(kind, SymbolType.OTHER)


class LspSymbol(BaseModel):
    """Subset of an LSP ``DocumentSymbol``; ranges and details are ignored."""

    name: str = Field(..., min_length=1)
    kind: int
    children: list["LspSymbol"] = Field(default_factory=list)


class FileSymbols(BaseModel):
    file: str = Field(..., min_length=1)
    symbols: list[LspSymbol] = Field(default_factory=list)


@dataclass(slots=True)
class FlatSymbol:
    name: str
    full_name: str
    type: SymbolType
    file: str


def flatten_symbols(
    symbols: Iterable[LspSymbol], file: str, parent: str | None = None
) -> list[FlatSymbol]:
    """Depth-first list of symbols; nested names are dotted (``Class.method``)."""

    flat: list[FlatSymbol] = []
    for symbol in symbols:
        full_name = f"{parent}.{symbol.name}" if parent else symbol.name
        flat.append(
            FlatSymbol(
                name=symbol.name,
                full_name=full_name,
                type=symbol_type_for_kind(symbol.kind),
                file=file,
            )
        )
        if symbol.children:
            flat.extend(flatten_symbols(symbol.children, file, full_name))
    return flat


@dataclass(slots=True)
class AnalyzedSymbol:
    name: str
    full_name: str
    type: SymbolType
    file: str
    conflict: ConflictInfo | None = None
    reference_count: int = 0
    affected_files: list[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.conflict is not None

    @property
    def label(self) -> str:
        return f"{self.file}:{self.name}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "full_name": self.full_name,
            "type": self.type.value,
            "file": self.file,
            "conflict_status": "blocked" if self.blocked else "safe",
        }
        if self.conflict is not None:
            payload["conflict_info"] = {
                "claim_id": self.conflict.claim_id,
                "session_name": self.conflict.session_name,
                "intent": self.conflict.intent,
                "conflict_level": self.conflict.conflict_level.value,
                "matched_pattern": self.conflict.matched_pattern,
            }
        if self.reference_count:
            payload["impact"] = {
                "references_count": self.reference_count,
                "affected_files": list(self.affected_files),
            }
        return payload


@dataclass(slots=True)
class SymbolAnalysis:
    symbols: list[AnalyzedSymbol]

    @property
    def safe_symbols(self) -> list[str]:
        return [symbol.label for symbol in self.symbols if not symbol.blocked]

    @property
    def blocked_symbols(self) -> list[str]:
        return [symbol.label for symbol in self.symbols if symbol.blocked]

    @property
    def can_edit(self) -> bool:
        return bool(self.safe_symbols)

    @property
    def recommendation(self) -> str:
        if not self.blocked_symbols:
            return "proceed_all"
        if self.safe_symbols:
            return "proceed_safe_only"
        return "abort"

    @property
    def message(self) -> str:
        safe, blocked = len(self.safe_symbols), len(self.blocked_symbols)
        if self.recommendation == "proceed_all":
            return f"All {safe} symbols are safe to edit. Proceed."
        if self.recommendation == "proceed_safe_only":
            return f"Edit ONLY {safe} safe symbols. {blocked} symbols are blocked."
        return f"All {blocked} symbols are blocked. Coordinate with other sessions."

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_edit": self.can_edit,
            "recommendation": self.recommendation,
            "summary": {
                "total": len(self.symbols),
                "safe": len(self.safe_symbols),
                "blocked": len(self.blocked_symbols),
            },
            "symbols": [symbol.to_dict() for symbol in self.symbols],
            "safe_symbols": self.safe_symbols,
            "blocked_symbols": self.blocked_symbols,
            "message": self.message,
        }


@dataclass(slots=True)
class SymbolValidation:
    file: str
    valid_symbols: list[str]
    invalid_symbols: list[str]
    available_symbols: list[str]
    suggestions: dict[str, list[str]] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.invalid_symbols

    def to_dict(self) -> dict[str, Any]:
        if self.valid:
            message = f"All {len(self.valid_symbols)} symbols are valid."
        else:
            message = (
                f"{len(self.invalid_symbols)} symbol(s) not found: "
                f"{', '.join(self.invalid_symbols)}"
            )
        return {
            "valid": self.valid,
            "file": self.file,
            "valid_symbols": list(self.valid_symbols),
            "invalid_symbols": list(self.invalid_symbols),
            "suggestions": dict(self.suggestions) or None,
            "available_symbols": list(self.available_symbols),
            "message": message,
        }


def _parse(model: type[BaseModel], items: Iterable[Any], what: str) -> list[Any]:
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as exc:
        raise InvalidInput(f"Invalid {what}: {exc}") from exc


class SymbolAnalyzer:
    """Classifies editor symbols as safe or blocked and estimates change impact."""

    def __init__(self, detector: ConflictDetector, references: ReferenceStore) -> None:
        self._detector = detector
        self._references = references

    def analyze(
        self,
        files: Sequence[FileSymbols | dict[str, Any]],
        *,
        exclude_session_id: str | None = None,
        references: Iterable[SymbolReferences | dict[str, Any]] | None = None,
        check_symbols: Sequence[str] | None = None,
    ) -> SymbolAnalysis:
        """Blocked means a whole-file claim on the symbol's file or a claim on the symbol itself.

        Impact comes from ``references`` when given for a symbol, otherwise from
        the stored reference index.
        """

        parsed_files: list[FileSymbols] = _parse(FileSymbols, files, "file symbols")
        flat = [
            symbol
            for entry in parsed_files
            for symbol in flatten_symbols(entry.symbols, entry.file)
        ]
        if check_symbols:
            wanted = set(check_symbols)
            flat = [symbol for symbol in flat if symbol.name in wanted or symbol.full_name in wanted]

        names_by_file: dict[str, set[str]] = {}
        for symbol in flat:
            names_by_file.setdefault(symbol.file, set()).update({symbol.name, symbol.full_name})
        requests = [
            SymbolRequest(file=path, symbols=sorted(names))
            for path, names in names_by_file.items()
        ]
        conflicts = (
            self._detector.check_conflicts(
                None, exclude_session_id=exclude_session_id, symbols=requests
            )
            if requests
            else []
        )

        # Conflicts arrive priority-sorted; keep the strongest per target.
        file_level: dict[str, ConflictInfo] = {}
        symbol_level: dict[tuple[str, str], ConflictInfo] = {}
        for conflict in conflicts:
            if conflict.conflict_level is ConflictLevel.FILE:
                file_level.setdefault(conflict.file_path, conflict)
            elif conflict.symbol_name:
                symbol_level.setdefault((conflict.file_path, conflict.symbol_name), conflict)

        reported = {
            (item.source_file, item.source_symbol): item for item in parse_references(references)
        }
        unreported = [
            (symbol.file, name)
            for symbol in flat
            for name in (symbol.name, symbol.full_name)
            if (symbol.file, name) not in reported
        ]
        indexed = self._references.references_for_symbols(unreported)

        analyzed: list[AnalyzedSymbol] = []
        for symbol in flat:
            conflict = (
                file_level.get(symbol.file)
                or symbol_level.get((symbol.file, symbol.name))
                or symbol_level.get((symbol.file, symbol.full_name))
            )
            ref_files = self._reference_files(symbol, reported, indexed)
            analyzed.append(
                AnalyzedSymbol(
                    name=symbol.name,
                    full_name=symbol.full_name,
                    type=symbol.type,
                    file=symbol.file,
                    conflict=conflict,
                    reference_count=len(ref_files),
                    affected_files=list(dict.fromkeys(ref_files)),
                )
            )

        analysis = SymbolAnalysis(symbols=analyzed)
        logger.debug(
            "Symbols analyzed",
            extra={
                "total": len(analyzed),
                "blocked": len(analysis.blocked_symbols),
                "exclude_session_id": exclude_session_id,
            },
        )
        return analysis

    @staticmethod
    def _reference_files(
        symbol: FlatSymbol,
        reported: dict[tuple[str, str], SymbolReferences],
        indexed: dict[tuple[str, str], list[Any]],
    ) -> list[str]:
        """One entry per referencing location (files may repeat)."""

        for name in (symbol.name, symbol.full_name):
            item = reported.get((symbol.file, name))
            if item is not None:
                return [location.file for location in item.references]
        for name in (symbol.name, symbol.full_name):
            stored = indexed.get((symbol.file, name))
            if stored:
                return [reference.ref_file for reference in stored]
        return []

    def validate(
        self,
        file: str,
        symbols: Sequence[str],
        lsp_symbols: Sequence[LspSymbol | dict[str, Any]],
    ) -> SymbolValidation:
        """Check requested names against the file's symbols, suggesting near misses."""

        if not file:
            raise InvalidInput("file, symbols, and lsp_symbols are required")
        parsed: list[LspSymbol] = _parse(LspSymbol, lsp_symbols, "LSP symbols")
        available: dict[str, None] = {}
        for symbol in flatten_symbols(parsed, file):
            available.setdefault(symbol.name, None)
            available.setdefault(symbol.full_name, None)

        valid: list[str] = []
        invalid: list[str] = []
        suggestions: dict[str, list[str]] = {}
        for name in symbols:
            if name in available:
                valid.append(name)
                continue
            invalid.append(name)
            lowered = name.lower()
            similar = [
                candidate
                for candidate in available
                if lowered in candidate.lower() or candidate.lower() in lowered
            ]
            if similar:
                suggestions[name] = similar[:MAX_SUGGESTIONS]

        return SymbolValidation(
            file=file,
            valid_symbols=valid,
            invalid_symbols=invalid,
            available_symbols=list(available),
            suggestions=suggestions,
        )

    def impact(
        self,
        file: str,
        symbol: str,
        *,
        exclude_session_id: str | None = None,
    ) -> ImpactInfo:
        """Files that use ``symbol`` and the live claims of other sessions on them."""

        if not file or not symbol:
            raise InvalidInput("file and symbol are required")
        stored = self._references.references_for_symbol(file, symbol)
        affected_files = list(dict.fromkeys(reference.ref_file for reference in stored))

        affected: dict[str, AffectedClaim] = {}
        if affected_files:
            for conflict in self._detector.check_conflicts(
                affected_files, exclude_session_id=exclude_session_id
            ):
                claim = affected.setdefault(
                    conflict.claim_id,
                    AffectedClaim(
                        claim_id=conflict.claim_id,
                        session_id=conflict.session_id,
                        session_name=conflict.session_name,
                        intent=conflict.intent,
                    ),
                )
                if conflict.file_path not in claim.files:
                    claim.files.append(conflict.file_path)

        return ImpactInfo(
            file=file,
            symbol=symbol,
            reference_count=len(stored),
            affected_files=affected_files,
            affected_claims=list(affected.values()),
        )


__all__ = [
    "AnalyzedSymbol",
    "FileSymbols",
    "LSP_SYMBOL_KINDS",
    "LspSymbol",
    "SymbolAnalysis",
    "SymbolAnalyzer",
    "SymbolValidation",
    "flatten_symbols",
    "symbol_type_for_kind",
]
