"""Session Collab MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from collab_mcp.config import CollabSettings
from collab_mcp.coordination import ClaimCoordinator
from collab_mcp.storage import (
    ChromaAuditLog,
    ChromaUnavailableError,
    Database,
    DatabaseUnavailableError,
)


def load_database(settings: CollabSettings) -> Database:
    try:
        database = Database(settings.database_url)
        database.create_all()
        return database
    except DatabaseUnavailableError as exc:
        print(f"Database unavailable: {exc}")
        raise SystemExit(1)


def load_audit_log(settings: CollabSettings) -> ChromaAuditLog:
    try:
        audit_log = ChromaAuditLog(settings.chroma_persist_path)
        audit_log.ping()
        return audit_log
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def load_coordinator(settings: CollabSettings) -> ClaimCoordinator:
    return ClaimCoordinator.from_settings(settings, database=load_database(settings))


def cmd_sessions(args: argparse.Namespace) -> None:
    coordinator = load_coordinator(CollabSettings())
    sessions = coordinator.list_sessions(
        include_inactive=args.all, project_root=args.project_root
    )
    if args.json:
        print(json.dumps([session.to_dict() for session in sessions], indent=2))
    else:
        for session in sessions:
            print(
                f"{session.id} [{session.status.value}] {session.name} "
                f"heartbeat={session.last_heartbeat.isoformat()}"
            )


def cmd_claims(args: argparse.Namespace) -> None:
    coordinator = load_coordinator(CollabSettings())
    claims = coordinator.list_claims(session_id=args.session_id, status=args.status)
    if args.json:
        print(json.dumps([claim.to_dict() for claim in claims], indent=2))
    else:
        for claim in claims:
            owner = claim.session_name or claim.session_id
            print(f"{claim.id} [{claim.status.value}] p={claim.priority} {owner}: {', '.join(claim.files)}")


def cmd_queue(args: argparse.Namespace) -> None:
    coordinator = load_coordinator(CollabSettings())
    entries = coordinator.list_queue(claim_id=args.claim_id)
    print(json.dumps([entry.to_dict() for entry in entries], indent=2))


def cmd_stale(args: argparse.Namespace) -> None:
    settings = CollabSettings()
    coordinator = load_coordinator(settings)
    if not args.apply:
        now = coordinator.database.now()
        sessions = coordinator.list_sessions()
        stale = [
            session.to_dict()
            for session in sessions
            if (now - session.last_heartbeat).total_seconds() / 60 > settings.stale_session_minutes
        ]
        print(json.dumps({"stale_sessions": stale, "applied": False}, indent=2))
        return

    outcome = coordinator.run_reaper()
    print(
        json.dumps(
            {
                "applied": True,
                "stale_sessions": outcome.stale_sessions,
                "released_claims": [claim.id for claim in outcome.released_claims],
                "notified_sessions": outcome.notified_sessions,
            },
            indent=2,
        )
    )


def cmd_audit(args: argparse.Namespace) -> None:
    audit_log = load_audit_log(CollabSettings())
    try:
        entries = audit_log.list_entries(
            session_id=args.session_id,
            entity_id=args.entity_id,
            limit=args.limit,
        )
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    print(json.dumps([entry.to_dict() for entry in entries], indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    coordinator = load_coordinator(CollabSettings())
    sessions = coordinator.list_sessions(include_inactive=True)
    claims = coordinator.list_claims(status="all")
    queue = coordinator.list_queue()

    session_counts: dict[str, int] = {}
    for session in sessions:
        session_counts[session.status.value] = session_counts.get(session.status.value, 0) + 1

    claim_counts: dict[str, int] = {}
    for claim in claims:
        claim_counts[claim.status.value] = claim_counts.get(claim.status.value, 0) + 1

    waiting: dict[str, int] = {}
    for entry in queue:
        waiting[entry.claim_id] = waiting.get(entry.claim_id, 0) + 1

    active_files = sorted({path for claim in claims if claim.is_active for path in claim.files})
    metrics = {
        "sessions_total": len(sessions),
        "session_status_counts": session_counts,
        "claims_total": len(claims),
        "claim_status_counts": claim_counts,
        "active_files": active_files,
        "queue_entries": len(queue),
        "longest_queue": max(waiting.values()) if waiting else 0,
    }

    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Session Collab MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List sessions")
    p_sessions.add_argument("--all", action="store_true", help="Include inactive sessions")
    p_sessions.add_argument("--project-root")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_claims = sub.add_parser("claims", help="List claims")
    p_claims.add_argument("--session-id")
    p_claims.add_argument(
        "--status",
        default="active",
        choices=["active", "completed", "abandoned", "all"],
    )
    p_claims.add_argument("--json", action="store_true", help="Output JSON")
    p_claims.set_defaults(func=cmd_claims)

    p_queue = sub.add_parser("queue", help="List queue entries in service order")
    p_queue.add_argument("--claim-id")
    p_queue.set_defaults(func=cmd_queue)

    p_stale = sub.add_parser("stale", help="Show stale sessions; --apply runs the reaper")
    p_stale.add_argument("--apply", action="store_true", help="Release stale work now")
    p_stale.set_defaults(func=cmd_stale)

    p_audit = sub.add_parser("audit", help="List audit history records")
    p_audit.add_argument("--session-id")
    p_audit.add_argument("--entity-id")
    p_audit.add_argument("--limit", type=int, default=50)
    p_audit.set_defaults(func=cmd_audit)

    p_metrics = sub.add_parser("metrics", help="Show session/claim/queue counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
