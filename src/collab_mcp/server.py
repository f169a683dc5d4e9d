"""FastMCP server bootstrap for the collaboration coordinator."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .config import CollabSettings, get_settings
from .coordination import ClaimCoordinator
from .policies import PolicyLoadError, PolicyLoader
from .storage import ChromaAuditLog, ChromaUnavailableError, Database, DatabaseUnavailableError
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the collab server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def run_maintenance(
    coordinator: ClaimCoordinator,
    *,
    retention_days: int,
) -> dict[str, Any]:
    """One maintenance pass: staleness sweeps, then audit retention."""

    outcome = coordinator.run_reaper()
    summary: dict[str, Any] = {
        "ran_at": coordinator.database.now().isoformat(),
        "stale_sessions": outcome.stale_sessions,
        "released_claims": len(outcome.released_claims),
        "notified_sessions": outcome.notified_sessions,
        "audit_removed": 0,
    }
    if coordinator.audit_log is not None:
        try:
            summary["audit_removed"] = coordinator.audit_log.cleanup(retention_days)
        except ChromaUnavailableError as exc:
            summary["audit_error"] = str(exc)
    return summary


def _lifespan_factory(
    coordinator: ClaimCoordinator,
    settings: CollabSettings,
    maintenance_log: list[dict[str, Any]],
):
    async def _reaper_loop(interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                summary = await asyncio.to_thread(
                    run_maintenance,
                    coordinator,
                    retention_days=settings.audit_retention_days,
                )
            except SQLAlchemyError:
                logger.exception("Periodic reaper failed")
                continue
            maintenance_log.append(summary)
            del maintenance_log[:-20]
            if summary["released_claims"] or summary["stale_sessions"]:
                logger.info("Periodic reaper released stale work", extra=summary)

    @asynccontextmanager
    async def lifespan(app: FastMCP):
        task: asyncio.Task[None] | None = None
        if settings.reaper_interval_seconds > 0:
            task = asyncio.create_task(_reaper_loop(settings.reaper_interval_seconds))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
            coordinator.database.dispose()

    return lifespan


def create_server(
    settings: Optional[CollabSettings] = None,
    *,
    database: Database | None = None,
    audit_log: ChromaAuditLog | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with tools, status resource and reaper lifespan."""

    settings = settings or get_settings()

    policy_loader = PolicyLoader(settings.policy_paths)

    database = database or Database(settings.database_url)
    database_metadata: dict[str, Any] = {
        "available": False,
        "url": database.url,
        "error": None,
    }
    try:
        database.create_all()
        database.ping()
        database_metadata["available"] = True
    except DatabaseUnavailableError as exc:
        database_metadata["error"] = str(exc)
        logger.error("Database unavailable", extra={"url": database.url, "error": str(exc)})
        raise

    chroma_metadata: dict[str, Any] = {
        "available": False,
        "enabled": settings.audit_enabled,
        "path": str(settings.chroma_persist_path),
        "collection": "collab_audit",
        "error": None,
    }
    if audit_log is not None:
        chroma_metadata["available"] = True
    elif settings.audit_enabled:
        try:
            audit_log = ChromaAuditLog(settings.chroma_persist_path)
            audit_log.ping()
            chroma_metadata["available"] = True
        except ChromaUnavailableError as exc:
            chroma_metadata["error"] = str(exc)
            audit_log = None
            logger.warning("Audit log disabled; Chroma unavailable", extra={"error": str(exc)})

    coordinator = ClaimCoordinator.from_settings(
        settings, database=database, audit_log=audit_log, policies=policy_loader
    )
    maintenance_log: list[dict[str, Any]] = []

    server = FastMCP(
        name="Session Collab MCP",
        version=__version__,
        instructions=(
            "Coordinates concurrent editing sessions on one codebase. Start a session, "
            "check and claim files or symbols before editing, release claims when done, "
            "and read notifications to learn when queued work becomes available."
        ),
        lifespan=_lifespan_factory(coordinator, settings, maintenance_log),
    )

    handles = register_tools(
        server,
        coordinator=coordinator,
        settings=settings,
        policies=policy_loader,
    )

    def status_snapshot(request_id: str | None = None) -> dict[str, Any]:
        try:
            policies = policy_loader.load_all()
            policy_ids = sorted(policies.keys())
            policy_error: str | None = None
        except PolicyLoadError as exc:
            policy_ids = []
            policy_error = str(exc)

        coordination: dict[str, Any] = {}
        storage_error = None
        try:
            sessions = coordinator.list_sessions(include_inactive=True)
            session_counts: dict[str, int] = {}
            for session in sessions:
                session_counts[session.status.value] = session_counts.get(session.status.value, 0) + 1
            active_claims = coordinator.list_claims()
            queue = coordinator.list_queue()
            coordination = {
                "sessions": session_counts,
                "active_claims": len(active_claims),
                "claimed_files": sorted({path for claim in active_claims for path in claim.files}),
                "queue_entries": len(queue),
            }
        except SQLAlchemyError as exc:
            storage_error = str(exc)

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "policies": {
                "count": len(policy_ids),
                "ids": policy_ids,
                "error": policy_error,
            },
            "storage": {
                "database": database_metadata,
                "chroma": chroma_metadata,
                "error": storage_error,
            },
            "coordination": coordination,
            "reaper": {
                "interval_seconds": settings.reaper_interval_seconds,
                "stale_session_minutes": settings.stale_session_minutes,
                "audit_retention_days": settings.audit_retention_days,
                "last_run": maintenance_log[-1] if maintenance_log else None,
            },
            "request_id": request_id,
        }

    @server.resource(
        "resource://collab/status",
        name="collab_status",
        title="Collab MCP Status",
        description="Current sessions, claims, queue and storage health for the collab server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        return json.dumps(status_snapshot(getattr(context, "request_id", None)))

    setattr(server, "policy_loader", policy_loader)
    setattr(server, "coordinator", coordinator)
    setattr(server, "audit_log", audit_log)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "database_metadata", database_metadata)
    setattr(server, "maintenance_log", maintenance_log)
    setattr(server, "status_snapshot", status_snapshot)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the collab MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Session Collab MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
            "database_url": getattr(server, "database_metadata", {}).get("url"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
