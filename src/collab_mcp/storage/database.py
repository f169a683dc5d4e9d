"""SQLAlchemy-backed durable store for sessions, claims, queues and notifications."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as OrmSession, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


class DatabaseUnavailableError(RuntimeError):
    """Raised when the database engine cannot be constructed or reached."""


def _is_memory_url(url: str) -> bool:
    database = make_url(url).database
    return database in (None, "", ":memory:")


class Database:
    """Owns the engine and hands out re-entrant transactions.

    Every write transaction on SQLite starts with ``BEGIN IMMEDIATE`` so that
    concurrent writers, including other server processes sharing the file,
    serialize on the reserved lock before reading state they are about to
    modify. A transaction opened while another is already active in the same
    context joins the outer one; only the outermost block commits.
    """

    def __init__(
        self,
        url: str,
        *,
        engine_factory: Callable[[str], Engine] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._url = url
        self._engine_factory = engine_factory or self._default_engine_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._engine: Engine | None = None
        self._reader: sessionmaker[OrmSession] | None = None
        self._writer: sessionmaker[OrmSession] | None = None
        self._current: ContextVar[OrmSession | None] = ContextVar(
            f"collab_db_session_{id(self)}", default=None
        )

    @classmethod
    def from_path(cls, path: Path, **kwargs: Any) -> "Database":
        return cls(f"sqlite:///{Path(path)}", **kwargs)

    @property
    def url(self) -> str:
        return self._url

    def now(self) -> datetime:
        return self._clock()

    def _default_engine_factory(self, url: str) -> Engine:
        options: dict[str, Any] = {}
        is_sqlite = make_url(url).get_backend_name() == "sqlite"
        if is_sqlite:
            options["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if _is_memory_url(url):
                options["poolclass"] = StaticPool
            else:
                database = make_url(url).database
                Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(url, **options)

        if is_sqlite:

            @event.listens_for(engine, "connect")
            def _on_connect(dbapi_connection, _record) -> None:
                # Hand transaction control to the "begin" hook below.
                dbapi_connection.isolation_level = None
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            @event.listens_for(engine, "begin")
            def _on_begin(conn) -> None:
                mode = conn.get_execution_options().get("begin_mode", "DEFERRED")
                conn.exec_driver_sql(f"BEGIN {mode}")

        return engine

    def _ensure_engine(self) -> Engine:
        if self._engine is None:
            try:
                engine = self._engine_factory(self._url)
            except (SQLAlchemyError, OSError) as exc:
                raise DatabaseUnavailableError(f"Cannot open database {self._url}: {exc}") from exc
            self._engine = engine
            self._reader = sessionmaker(bind=engine, expire_on_commit=False)
            self._writer = sessionmaker(
                bind=engine.execution_options(begin_mode="IMMEDIATE"),
                expire_on_commit=False,
            )
        return self._engine

    def create_all(self) -> None:
        """Create any missing tables."""

        engine = self._ensure_engine()
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise DatabaseUnavailableError(f"Cannot initialise schema: {exc}") from exc

    def ping(self) -> bool:
        """Verify that a connection can be opened and used."""

        engine = self._ensure_engine()
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise DatabaseUnavailableError(str(exc)) from exc
        return True

    @contextmanager
    def transaction(self, *, write: bool = True) -> Iterator[OrmSession]:
        """Yield an ORM session bound to the current transaction."""

        current = self._current.get()
        if current is not None:
            yield current
            return

        self._ensure_engine()
        factory = self._writer if write else self._reader
        if factory is None:
            raise DatabaseUnavailableError(f"Database {self._url} has no session factory")
        session = factory()
        token = self._current.set(session)
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            self._current.reset(token)
            session.close()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._reader = None
            self._writer = None


__all__ = ["Database", "DatabaseUnavailableError"]
