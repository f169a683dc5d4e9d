"""Storage abstractions for the collab MCP server."""

from .chroma import ChromaAuditLog, ChromaUnavailableError
from .database import Database, DatabaseUnavailableError
from .models import (
    Base,
    ClaimFileRow,
    ClaimRow,
    ClaimSymbolRow,
    NotificationRow,
    QueueEntryRow,
    SessionRow,
    SymbolReferenceRow,
)

__all__ = [
    "Base",
    "ChromaAuditLog",
    "ChromaUnavailableError",
    "ClaimFileRow",
    "ClaimRow",
    "ClaimSymbolRow",
    "Database",
    "DatabaseUnavailableError",
    "NotificationRow",
    "QueueEntryRow",
    "SessionRow",
    "SymbolReferenceRow",
]
