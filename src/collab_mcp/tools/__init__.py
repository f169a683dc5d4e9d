"""Tool registration for the collaboration MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..config import CollabSettings
from ..coordination import ClaimCoordinator, CollabError
from ..coordination.errors import InvalidInput
from ..coordination.types import ClaimStatus, priority_level
from ..policies import PolicyLoadError, PolicyLoader

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    session_start: Any
    session_end: Any
    session_list: Any
    session_heartbeat: Any
    status_update: Any
    config: Any
    policies_list: Any
    claim: Any
    check: Any
    release: Any
    auto_release: Any
    claims_list: Any
    claim_update_priority: Any
    queue_join: Any
    queue_leave: Any
    queue_list: Any
    notifications_list: Any
    notifications_mark_read: Any
    history_list: Any
    analyze_symbols: Any
    validate_symbols: Any
    store_references: Any
    impact_analysis: Any


def _error_payload(context: Context | None, exc: CollabError) -> dict[str, Any]:
    payload = exc.to_dict()
    _emit_log(context, "info", "Tool call rejected", extra={"error": exc.code})
    return payload


def _policy_error(context: Context | None, exc: PolicyLoadError) -> dict[str, Any]:
    _emit_log(context, "error", "Policy load failed", extra={"error": str(exc)})
    return {"error": "POLICY_LOAD_ERROR", "message": str(exc)}


def _parse_timestamp(value: str | None, field: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidInput(f"{field} must be an ISO 8601 timestamp", **{field: value}) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def register_tools(
    server: FastMCP,
    *,
    coordinator: ClaimCoordinator,
    settings: CollabSettings,
    policies: PolicyLoader | None = None,
) -> ToolHandles:
    """Register the collab_* tools on the server."""

    def _active(session_id: str):
        # Mutating tools refuse unknown or inactive sessions before touching the core.
        return coordinator.validate_active_session(session_id)

    # ------------------------------------------------------------------
    # sessions

    def _session_start(
        project_root: str,
        name: str | None = None,
        machine_id: str | None = None,
        policy: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Register a new editing session and report who else is active."""

        try:
            started = coordinator.start_session(
                project_root=project_root, name=name, machine_id=machine_id, policy=policy
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        except PolicyLoadError as exc:
            return _policy_error(context, exc)

        session = started.session
        _emit_log(
            context,
            "info",
            "Session started",
            extra={"session_id": session.id, "project_root": project_root},
        )
        return {
            "session_id": session.id,
            "name": session.name,
            "config": session.config.to_dict(),
            "policy": started.policy.to_dict() if started.policy is not None else None,
            "message": (
                f"Session registered. {len(started.active_sessions)} active session(s) in this project."
            ),
            "active_sessions": [
                {
                    "id": item.id,
                    "name": item.name,
                    "current_task": item.current_task,
                    "last_heartbeat": item.last_heartbeat.isoformat(),
                }
                for item in started.active_sessions
            ],
            "cleanup": {
                "stale_sessions": started.stale_sessions,
                "released_claims": started.released_claims,
            },
        }

    def _session_end(
        session_id: str,
        release_claims: Literal["complete", "abandon"] = "abandon",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """End a session, leave its queues and release its claims."""

        try:
            ended = coordinator.end_session(session_id, release_claims=release_claims)
        except CollabError as exc:
            return _error_payload(context, exc)

        _emit_log(
            context,
            "info",
            "Session ended",
            extra={"session_id": session_id, "claims_released": len(ended.released_claims)},
        )
        return {
            "success": True,
            "message": (
                f"Session ended. {len(ended.released_claims)} claim(s) marked as "
                f"{ended.claim_status.value}."
            ),
            "released_claims": [claim.id for claim in ended.released_claims],
            "removed_from_queues": ended.removed_queue_entries,
            "notified_sessions": ended.notified_sessions,
        }

    def _session_list(
        include_inactive: bool = False,
        project_root: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List sessions, most recent heartbeat first."""

        sessions = coordinator.list_sessions(
            include_inactive=include_inactive, project_root=project_root
        )
        _emit_log(context, "debug", "Listing sessions", extra={"count": len(sessions)})
        return {
            "sessions": [session.to_dict() for session in sessions],
            "total": len(sessions),
        }

    def _session_heartbeat(
        session_id: str,
        current_task: str | None = None,
        todos: list[dict[str, Any]] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Keep a session alive and optionally sync its task and todo list."""

        try:
            session = coordinator.heartbeat(session_id, current_task=current_task, todos=todos)
        except CollabError as exc:
            return _error_payload(context, exc)
        return {
            "success": True,
            "message": "Heartbeat updated.",
            "last_heartbeat": session.last_heartbeat.isoformat(),
            "status_synced": current_task is not None or todos is not None,
        }

    def _status_update(
        session_id: str,
        current_task: str | None = None,
        todos: list[dict[str, Any]] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Share what this session is working on."""

        try:
            _active(session_id)
            session = coordinator.update_status(
                session_id, current_task=current_task, todos=todos
            )
        except CollabError as exc:
            return _error_payload(context, exc)

        _emit_log(
            context,
            "debug",
            "Status updated",
            extra={"session_id": session_id, "current_task": session.current_task},
        )
        return {
            "success": True,
            "message": "Status updated.",
            "current_task": session.current_task,
            "todos": [todo.model_dump() for todo in session.todos],
            "progress": session.progress,
        }

    def _config(
        session_id: str,
        policy: str | None = None,
        mode: Literal["strict", "smart", "bypass"] | None = None,
        allow_release_others: bool | None = None,
        auto_release_stale: bool | None = None,
        stale_threshold_hours: float | None = None,
        auto_release_immediate: bool | None = None,
        auto_release_delay_minutes: float | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Merge the given settings over the session configuration."""

        try:
            _active(session_id)
            session = coordinator.configure(
                session_id,
                policy=policy,
                mode=mode,
                allow_release_others=allow_release_others,
                auto_release_stale=auto_release_stale,
                stale_threshold_hours=stale_threshold_hours,
                auto_release_immediate=auto_release_immediate,
                auto_release_delay_minutes=auto_release_delay_minutes,
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        except PolicyLoadError as exc:
            return _policy_error(context, exc)
        return {
            "success": True,
            "message": "Configuration updated.",
            "config": session.config.to_dict(),
        }

    def _policies_list(context: Context | None = None) -> dict[str, Any]:
        """List the coordination policies available to collab_session_start and collab_config."""

        if policies is None:
            return {"policies": []}
        try:
            catalog = policies.catalog()
        except PolicyLoadError as exc:
            return _policy_error(context, exc)
        _emit_log(context, "debug", "Listing policies", extra={"count": len(catalog)})
        return {"policies": catalog}

    tool_session_start = server.tool(
        name="collab_session_start",
        description=(
            "Register a new editing session. Call this first; it returns the session id "
            "needed by every other tool and lists other active sessions in the project. "
            "Optionally seed the configuration from a named policy."
        ),
    )(_session_start)

    tool_session_end = server.tool(
        name="collab_session_end",
        description=(
            "End a session and release all its claims "
            "(release_claims=complete marks them done, abandon is the default)."
        ),
    )(_session_end)

    tool_session_list = server.tool(
        name="collab_session_list",
        description="List active sessions. Use to see who else is working.",
    )(_session_list)

    tool_heartbeat = server.tool(
        name="collab_session_heartbeat",
        description="Update session heartbeat to indicate the session is still active.",
    )(_session_heartbeat)

    tool_status_update = server.tool(
        name="collab_status_update",
        description="Share the current task and todo list with other sessions.",
    )(_status_update)

    tool_config = server.tool(
        name="collab_config",
        description=(
            "Configure conflict handling for this session. Only the provided values change; "
            "pass policy to start from a named preset."
        ),
    )(_config)

    tool_policies = server.tool(
        name="collab_policies_list",
        description="List named coordination policies loaded from the policy search paths.",
    )(_policies_list)

    # ------------------------------------------------------------------
    # claims

    def _claim(
        session_id: str,
        intent: str,
        files: list[str] | None = None,
        symbols: list[dict[str, Any]] | None = None,
        scope: Literal["small", "medium", "large"] = "medium",
        priority: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Declare files or symbols you are about to edit."""

        try:
            _active(session_id)
            outcome = coordinator.claim(
                session_id,
                intent=intent,
                files=files,
                symbols=symbols,
                scope=scope,
                priority=priority,
            )
        except CollabError as exc:
            return _error_payload(context, exc)

        claim = outcome.claim
        response: dict[str, Any] = {
            "claim_id": claim.id,
            "status": "created_with_conflicts" if outcome.has_conflicts else "created",
            "files": claim.files,
            "symbols": [symbol.to_dict() for symbol in claim.symbols],
            "priority": {"value": claim.priority, "level": priority_level(claim.priority)},
        }
        if outcome.has_conflicts:
            file_level = [c for c in outcome.conflicts if c.symbol_name is None]
            symbol_level = [c for c in outcome.conflicts if c.symbol_name is not None]
            response["conflicts"] = {
                "file_level": [
                    {
                        "session_name": c.session_name,
                        "file": c.file_path,
                        "matched_pattern": c.matched_pattern,
                        "intent": c.intent,
                    }
                    for c in file_level
                ],
                "symbol_level": [
                    {
                        "session_name": c.session_name,
                        "file": c.file_path,
                        "symbol": c.symbol_name,
                        "symbol_type": c.symbol_type.value if c.symbol_type else None,
                        "intent": c.intent,
                    }
                    for c in symbol_level
                ],
            }
            response["warning"] = (
                f"Conflicts detected: {len(file_level)} file-level, {len(symbol_level)} "
                "symbol-level. Coordinate before proceeding."
            )
            response["notified_owners"] = outcome.notified_owners
        elif claim.symbols:
            response["message"] = (
                f"Claimed {len(claim.symbols)} symbol(s) in {len(claim.files)} file(s). "
                "Other sessions can still edit other symbols in these files."
            )
        else:
            response["message"] = f"Successfully claimed {len(claim.files)} file(s)."

        _emit_log(
            context,
            "warning" if outcome.has_conflicts else "info",
            "Claim created",
            extra={
                "session_id": session_id,
                "claim_id": claim.id,
                "conflicts": len(outcome.conflicts),
            },
        )
        return response

    def _check(
        files: list[str] | None = None,
        symbols: list[dict[str, Any]] | None = None,
        session_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Report which files and symbols are safe to edit right now."""

        try:
            report = coordinator.check(files, symbols=symbols, session_id=session_id)
        except CollabError as exc:
            return _error_payload(context, exc)
        _emit_log(
            context,
            "debug",
            "Checked files",
            extra={"recommendation": report.recommendation, "conflicts": len(report.conflicts)},
        )
        return report.to_dict()

    def _release(
        session_id: str,
        claim_id: str,
        status: Literal["completed", "abandoned"],
        summary: str | None = None,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Release a claim as completed or abandoned."""

        try:
            _active(session_id)
            outcome = coordinator.release(
                session_id, claim_id, status=status, summary=summary, force=force
            )
        except CollabError as exc:
            return _error_payload(context, exc)

        verb = "completed" if outcome.claim.status is ClaimStatus.COMPLETED else "abandoned"
        message = f"Claim {verb}. Files are now available for other sessions."
        if outcome.was_forced:
            message = (
                f"Claim {verb} (force-released from {outcome.claim.session_name or outcome.claim.session_id}). "
                "Files are now available for other sessions."
            )
        return {
            "success": True,
            "claim_id": claim_id,
            "status": outcome.claim.status.value,
            "was_forced": outcome.was_forced,
            "notified_sessions": outcome.notified_sessions,
            "message": message,
        }

    def _auto_release(
        session_id: str,
        file_path: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Release a single file from your claim right after editing it."""

        try:
            _active(session_id)
            outcome = coordinator.release_file(session_id, file_path)
        except CollabError as exc:
            return _error_payload(context, exc)

        result = outcome.result
        if result.partial:
            message = (
                f"Released {file_path} from claim. {len(result.remaining_files)} file(s) "
                "still claimed."
            )
        else:
            message = f"Claim fully released after editing {file_path}."
        return {
            "success": True,
            "claim_id": result.claim.id,
            "file_path": file_path,
            "partial": result.partial,
            "claim_status": result.claim.status.value,
            "remaining_files": result.remaining_files,
            "notified_sessions": outcome.notified_sessions,
            "message": message,
        }

    def _claims_list(
        session_id: str | None = None,
        status: Literal["active", "completed", "abandoned", "all"] = "active",
        project_root: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List claims, newest first."""

        try:
            claims = coordinator.list_claims(
                session_id=session_id, status=status, project_root=project_root
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        return {"claims": [claim.to_dict() for claim in claims], "total": len(claims)}

    def _claim_update_priority(
        session_id: str,
        claim_id: str,
        priority: int,
        reason: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Change the priority of one of your active claims."""

        try:
            _active(session_id)
            claim, previous = coordinator.update_claim_priority(
                session_id, claim_id, priority, reason=reason
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        return {
            "success": True,
            "claim_id": claim_id,
            "old_priority": {"value": previous, "level": priority_level(previous)},
            "new_priority": {"value": claim.priority, "level": priority_level(claim.priority)},
            "message": f"Priority updated from {previous} to {claim.priority}.",
        }

    tool_claim = server.tool(
        name="collab_claim",
        description=(
            "Declare files (globs allowed) or specific symbols you are about to modify. "
            "The claim is always created; conflicts with other sessions are reported so you "
            "can coordinate."
        ),
    )(_claim)

    tool_check = server.tool(
        name="collab_check",
        description=(
            "Check files or symbols before editing. Returns safe and blocked lists and a "
            "recommendation: proceed_all, proceed_safe_only or abort."
        ),
    )(_check)

    tool_release = server.tool(
        name="collab_release",
        description=(
            "Release a claim when done or abandoning work. You can only release your own "
            "claims unless force=true is passed with user confirmation."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "force=true releases another session's claim; confirm with the user first",
            }
        },
    )(_release)

    tool_auto_release = server.tool(
        name="collab_auto_release",
        description=(
            "Release one file from your claim right after editing it. A claim holding only "
            "that file is completed."
        ),
    )(_auto_release)

    tool_claims_list = server.tool(
        name="collab_claims_list",
        description="List claims. Use to see what files are being worked on.",
    )(_claims_list)

    tool_update_priority = server.tool(
        name="collab_claim_update_priority",
        description=(
            "Update the priority (0-100) of one of your claims. Levels: critical 90-100, "
            "high 70-89, normal 40-69, low 0-39."
        ),
    )(_claim_update_priority)

    # ------------------------------------------------------------------
    # queue

    def _queue_join(
        session_id: str,
        claim_id: str,
        intent: str,
        priority: int = 50,
        scope: Literal["small", "medium", "large"] = "medium",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Wait for a claim held by another session."""

        try:
            _active(session_id)
            result = coordinator.join_queue(
                session_id, claim_id, intent=intent, priority=priority, scope=scope
            )
        except CollabError as exc:
            return _error_payload(context, exc)

        if result.entry is None:
            return {
                "success": False,
                "claim_status": result.claim.status.value,
                "message": "This claim is no longer active. You can claim the files directly.",
            }
        entry = result.entry
        return {
            "success": True,
            "queue_id": entry.id,
            "position": entry.position,
            "priority": {"value": entry.priority, "level": priority_level(entry.priority)},
            "estimated_wait_minutes": entry.estimated_wait_minutes,
            "queue_length": result.queue_length,
            "message": (
                f"Added to queue at position {entry.position}. "
                f"Estimated wait: ~{entry.estimated_wait_minutes} minutes."
            ),
        }

    def _queue_leave(
        session_id: str,
        queue_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Stop waiting for a claim."""

        try:
            _active(session_id)
            entry = coordinator.leave_queue(session_id, queue_id)
        except CollabError as exc:
            return _error_payload(context, exc)
        return {
            "success": True,
            "queue_id": entry.id,
            "claim_id": entry.claim_id,
            "message": "Removed from queue.",
        }

    def _queue_list(
        claim_id: str | None = None,
        session_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List queue entries in service order."""

        entries = coordinator.list_queue(claim_id=claim_id, session_id=session_id)
        return {"queue": [entry.to_dict() for entry in entries], "total": len(entries)}

    tool_queue_join = server.tool(
        name="collab_queue_join",
        description=(
            "Join the waiting queue for a claim held by another session. You are notified "
            "when it is released."
        ),
    )(_queue_join)

    tool_queue_leave = server.tool(
        name="collab_queue_leave",
        description="Leave the waiting queue for a claim.",
    )(_queue_leave)

    tool_queue_list = server.tool(
        name="collab_queue_list",
        description="List queue entries. Filter by claim_id or session_id.",
    )(_queue_list)

    # ------------------------------------------------------------------
    # symbols

    def _analyze_symbols(
        session_id: str,
        files: list[dict[str, Any]],
        references: list[dict[str, Any]] | None = None,
        check_symbols: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Classify document symbols from the editor as safe or blocked."""

        try:
            analysis = coordinator.analyze_symbols(
                session_id, files, references=references, check_symbols=check_symbols
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        _emit_log(
            context,
            "debug",
            "Analyzed symbols",
            extra={
                "session_id": session_id,
                "recommendation": analysis.recommendation,
                "blocked": len(analysis.blocked_symbols),
            },
        )
        return analysis.to_dict()

    def _validate_symbols(
        file: str,
        symbols: list[str],
        lsp_symbols: list[dict[str, Any]],
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Check symbol names against the file's document symbols before claiming them."""

        try:
            validation = coordinator.validate_symbols(file, symbols, lsp_symbols)
        except CollabError as exc:
            return _error_payload(context, exc)
        return validation.to_dict()

    def _store_references(
        session_id: str,
        references: list[dict[str, Any]],
        clear_existing: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record where symbols are used so impact analysis can find dependent files."""

        try:
            _active(session_id)
            update = coordinator.store_references(
                session_id, references, clear_existing=clear_existing
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        _emit_log(
            context,
            "info",
            "References stored",
            extra={"session_id": session_id, "stored": update.stored, "cleared": update.cleared},
        )
        return {
            "success": True,
            **update.to_dict(),
            "message": (
                f"Stored {update.stored} reference(s), skipped {update.skipped} duplicate(s)."
            ),
        }

    def _impact_analysis(
        session_id: str,
        file: str,
        symbol: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Show which files use a symbol and which other sessions hold claims on them."""

        try:
            impact = coordinator.analyze_impact(session_id, file, symbol)
        except CollabError as exc:
            return _error_payload(context, exc)
        response = impact.to_dict()
        if impact.affected_claims:
            response["warning"] = (
                f"Changing {symbol} affects {len(impact.affected_claims)} claim(s) held by "
                "other sessions. Coordinate before changing its signature."
            )
        else:
            response["message"] = (
                f"{symbol} is referenced in {len(impact.affected_files)} file(s); "
                "none are claimed by other sessions."
            )
        return response

    tool_analyze_symbols = server.tool(
        name="collab_analyze_symbols",
        description=(
            "Analyze document symbols (LSP documentSymbol output) for conflicts with other "
            "sessions' claims. Returns which symbols are safe to edit and which are blocked."
        ),
    )(_analyze_symbols)

    tool_validate_symbols = server.tool(
        name="collab_validate_symbols",
        description=(
            "Validate that symbol names exist in a file before claiming them, using LSP "
            "document symbols. Suggests close matches for unknown names."
        ),
    )(_validate_symbols)

    tool_store_references = server.tool(
        name="collab_store_references",
        description=(
            "Store symbol references (LSP findReferences output) for impact analysis. "
            "clear_existing=true replaces this session's earlier references."
        ),
    )(_store_references)

    tool_impact_analysis = server.tool(
        name="collab_impact_analysis",
        description=(
            "Check which files reference a symbol and which claims of other sessions "
            "would be affected by changing it."
        ),
    )(_impact_analysis)

    # ------------------------------------------------------------------
    # notifications and history

    def _notifications_list(
        session_id: str,
        unread_only: bool = False,
        type: Literal["claim_released", "queue_ready", "conflict_detected", "session_message"]
        | None = None,
        limit: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List notifications for a session, newest first."""

        try:
            items = coordinator.list_notifications(
                session_id, unread_only=unread_only, type=type, limit=limit
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        unread = sum(1 for item in items if item.read_at is None)
        return {
            "notifications": [item.to_dict() for item in items],
            "total": len(items),
            "unread_count": unread,
        }

    def _notifications_mark_read(
        session_id: str,
        notification_ids: list[str],
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Mark your notifications as read."""

        try:
            _active(session_id)
            marked = coordinator.mark_notifications_read(session_id, notification_ids)
        except CollabError as exc:
            return _error_payload(context, exc)
        return {
            "success": True,
            "marked_count": marked,
            "message": f"Marked {marked} notification(s) as read.",
        }

    def _history_list(
        session_id: str | None = None,
        action: str | None = None,
        entity_type: Literal["session", "claim", "queue"] | None = None,
        entity_id: str | None = None,
        start_date: str | None = None,
        limit: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Read the audit history of coordination actions."""

        if coordinator.audit_log is None:
            return {
                "entries": [],
                "total": 0,
                "audit_enabled": False,
                "message": "Audit history is disabled or unavailable.",
            }
        try:
            entries = coordinator.list_history(
                session_id=session_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                since=_parse_timestamp(start_date, "start_date"),
                limit=limit,
            )
        except CollabError as exc:
            return _error_payload(context, exc)
        _emit_log(context, "debug", "Listing audit history", extra={"count": len(entries)})
        return {
            "entries": [entry.to_dict() for entry in entries],
            "total": len(entries),
            "audit_enabled": True,
        }

    tool_notifications_list = server.tool(
        name="collab_notifications_list",
        description=(
            "List notifications for your session. Check periodically for claim releases, "
            "queue updates and conflicts."
        ),
    )(_notifications_list)

    tool_notifications_mark_read = server.tool(
        name="collab_notifications_mark_read",
        description="Mark notifications as read.",
    )(_notifications_mark_read)

    tool_history_list = server.tool(
        name="collab_history_list",
        description=(
            "List audit history entries. Useful for debugging coordination issues and "
            "understanding past actions."
        ),
    )(_history_list)

    logger.debug(
        "Registered collaboration tools",
        extra={"force_requires_opt_in": settings.force_release_requires_opt_in},
    )

    return ToolHandles(
        session_start=tool_session_start,
        session_end=tool_session_end,
        session_list=tool_session_list,
        session_heartbeat=tool_heartbeat,
        status_update=tool_status_update,
        config=tool_config,
        policies_list=tool_policies,
        claim=tool_claim,
        check=tool_check,
        release=tool_release,
        auto_release=tool_auto_release,
        claims_list=tool_claims_list,
        claim_update_priority=tool_update_priority,
        queue_join=tool_queue_join,
        queue_leave=tool_queue_leave,
        queue_list=tool_queue_list,
        notifications_list=tool_notifications_list,
        notifications_mark_read=tool_notifications_mark_read,
        history_list=tool_history_list,
        analyze_symbols=tool_analyze_symbols,
        validate_symbols=tool_validate_symbols,
        store_references=tool_store_references,
        impact_analysis=tool_impact_analysis,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
