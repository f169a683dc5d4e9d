"""Chroma-based append-only audit log."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..coordination.types import AuditAction, AuditEntityType, AuditHistoryEntry


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the audit log."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...

    def delete(self, *, ids: Iterable[str]) -> None:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by the audit log."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


def _scalar(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)):
        return value
    return json.dumps(value, sort_keys=True, default=str)


class ChromaAuditLog:
    """Record state transitions of sessions, claims and queue entries in ChromaDB.

    Each record stores its full metadata as the JSON document and a flattened
    scalar copy as Chroma metadata so that ``where`` filters stay usable.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "collab_audit",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._sequence = 0

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError("chromadb package is not installed") from exc

        try:
            return chromadb.PersistentClient(path=str(self._path))
        except Exception as exc:  # chromadb raises a variety of backend errors
            raise ChromaUnavailableError(f"Cannot open Chroma store at {self._path}: {exc}") from exc

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[AuditHistoryEntry]:
        ordered: list[tuple[datetime, int, AuditHistoryEntry]] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for entry_id, document, metadata in zip(ids, documents, metadatas):
            try:
                body = json.loads(document) if document else {}
            except json.JSONDecodeError:
                body = {"raw": document}
            timestamp_raw = metadata.get("created_at")
            created_at = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            entry = AuditHistoryEntry(
                id=entry_id,
                session_id=metadata.get("session_id"),
                action=AuditAction(metadata["action"]),
                entity_type=AuditEntityType(metadata["entity_type"]),
                entity_id=metadata.get("entity_id", ""),
                metadata=body,
                created_at=created_at,
            )
            ordered.append((created_at, int(metadata.get("sequence", 0)), entry))
        ordered.sort(key=lambda item: (item[0], item[1]))
        return [entry for _, _, entry in ordered]

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record(
        self,
        *,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: str,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditHistoryEntry:
        collection = self._ensure_collection()
        self._sequence += 1
        entry_id = f"{entity_type.value}:{uuid.uuid4().hex}"
        timestamp = self._clock()
        body = dict(metadata or {})

        record_metadata: dict[str, Any] = {
            "action": action.value,
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "created_at": timestamp.isoformat(),
            "created_ts": timestamp.timestamp(),
            "sequence": self._sequence,
        }
        if session_id is not None:
            record_metadata["session_id"] = session_id
        for key, value in body.items():
            if value is not None and key not in record_metadata:
                record_metadata[f"meta_{key}"] = _scalar(value)

        collection.add(
            documents=[json.dumps(body, default=str)],
            metadatas=[record_metadata],
            ids=[entry_id],
        )

        return AuditHistoryEntry(
            id=entry_id,
            session_id=session_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=body,
            created_at=timestamp,
        )

    def list_entries(
        self,
        *,
        session_id: str | None = None,
        entity_type: AuditEntityType | None = None,
        entity_id: str | None = None,
        action: AuditAction | None = None,
        since: datetime | None = None,
        limit: int | None = 50,
    ) -> list[AuditHistoryEntry]:
        """Return matching records, newest first."""

        clauses: list[dict[str, Any]] = []
        if session_id:
            clauses.append({"session_id": session_id})
        if entity_type is not None:
            clauses.append({"entity_type": entity_type.value})
        if entity_id:
            clauses.append({"entity_id": entity_id})
        if action is not None:
            clauses.append({"action": action.value})
        if since is not None:
            clauses.append({"created_ts": {"$gte": since.timestamp()}})

        collection = self._ensure_collection()
        result = collection.get(where=_combine(clauses))
        entries = self._convert_result(result)
        entries.reverse()
        return entries[:limit] if limit else entries

    def cleanup(self, retention_days: int = 7) -> int:
        """Delete records older than the retention window."""

        cutoff = self._clock() - timedelta(days=retention_days)
        collection = self._ensure_collection()
        result = collection.get(where={"created_ts": {"$lt": cutoff.timestamp()}})
        stale_ids = list(result.get("ids", []))
        if stale_ids:
            collection.delete(ids=stale_ids)
        return len(stale_ids)


def _combine(clauses: list[dict[str, Any]]) -> dict[str, Any] | None:
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


__all__ = ["ChromaAuditLog", "ChromaUnavailableError"]
