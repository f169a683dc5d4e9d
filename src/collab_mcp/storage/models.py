"""SQLAlchemy table models for the arbitration store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Stores naive UTC timestamps and hands back timezone-aware values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class SessionRow(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    project_root: Mapped[str] = mapped_column(Text, index=True)
    machine_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    current_task: Mapped[str | None] = mapped_column(Text, nullable=True)
    todos: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    last_heartbeat: Mapped[datetime] = mapped_column(UTCDateTime, index=True)


class ClaimRow(Base):
    __tablename__ = "claims"
    __table_args__ = (Index("ix_claims_session_status", "session_id", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"))
    intent: Mapped[str] = mapped_column(Text)
    scope: Mapped[str] = mapped_column(String(10), default="medium")
    priority: Mapped[int] = mapped_column(Integer, default=50)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    completed_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Highest queue position ever handed out for this claim.
    queue_counter: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime)

    session: Mapped[SessionRow] = relationship(lazy="joined")
    files: Mapped[list[ClaimFileRow]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClaimFileRow.id",
    )
    symbols: Mapped[list[ClaimSymbolRow]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClaimSymbolRow.id",
    )


class ClaimFileRow(Base):
    __tablename__ = "claim_files"
    __table_args__ = (UniqueConstraint("claim_id", "file_path", name="uq_claim_files_claim_path"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    claim_id: Mapped[str] = mapped_column(ForeignKey("claims.id", ondelete="CASCADE"), index=True)
    file_path: Mapped[str] = mapped_column(Text, index=True)
    is_pattern: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    claim: Mapped[ClaimRow] = relationship(back_populates="files")


class ClaimSymbolRow(Base):
    __tablename__ = "claim_symbols"
    __table_args__ = (
        UniqueConstraint(
            "claim_id", "file_path", "symbol_name", name="uq_claim_symbols_claim_path_name"
        ),
        Index("ix_claim_symbols_path_name", "file_path", "symbol_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    claim_id: Mapped[str] = mapped_column(ForeignKey("claims.id", ondelete="CASCADE"), index=True)
    file_path: Mapped[str] = mapped_column(Text)
    symbol_name: Mapped[str] = mapped_column(String(500))
    symbol_type: Mapped[str] = mapped_column(String(20), default="function")

    claim: Mapped[ClaimRow] = relationship(back_populates="symbols")


class QueueEntryRow(Base):
    __tablename__ = "claim_queue"
    __table_args__ = (
        UniqueConstraint("claim_id", "session_id", name="uq_claim_queue_claim_session"),
        Index("ix_claim_queue_claim_order", "claim_id", "priority", "position"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    claim_id: Mapped[str] = mapped_column(ForeignKey("claims.id", ondelete="CASCADE"))
    session_id: Mapped[str] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"), index=True
    )
    intent: Mapped[str] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer)
    priority: Mapped[int] = mapped_column(Integer, default=50)
    scope: Mapped[str] = mapped_column(String(10), default="medium")
    estimated_wait_minutes: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)

    session: Mapped[SessionRow] = relationship(lazy="joined")
    claim: Mapped[ClaimRow] = relationship(lazy="joined")


class NotificationRow(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_session_created", "session_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"))
    type: Mapped[str] = mapped_column(String(30))
    title: Mapped[str] = mapped_column(String(500))
    message: Mapped[str] = mapped_column(Text)
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)


class SymbolReferenceRow(Base):
    """A location that references a symbol, as reported by an editor's language server."""

    __tablename__ = "symbol_references"
    __table_args__ = (
        UniqueConstraint(
            "source_file",
            "source_symbol",
            "ref_file",
            "ref_line",
            name="uq_symbol_references_location",
        ),
        Index("ix_symbol_references_source", "source_file", "source_symbol"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_file: Mapped[str] = mapped_column(Text)
    source_symbol: Mapped[str] = mapped_column(String(500))
    ref_file: Mapped[str] = mapped_column(Text, index=True)
    ref_line: Mapped[int] = mapped_column(Integer)
    ref_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)


__all__ = [
    "Base",
    "ClaimFileRow",
    "ClaimRow",
    "ClaimSymbolRow",
    "NotificationRow",
    "QueueEntryRow",
    "SessionRow",
    "SymbolReferenceRow",
    "UTCDateTime",
]
