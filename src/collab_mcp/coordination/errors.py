"""Typed failures raised by the coordination components."""

from __future__ import annotations

from typing import Any


class CollabError(Exception):
    """Base class for arbitration failures reported back to callers."""

    code = "COLLAB_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


class InvalidInput(CollabError):
    code = "INVALID_INPUT"


class SessionNotFound(CollabError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "Session not found. Please start a new session.", session_id=session_id
        )


class SessionInactive(CollabError):
    code = "SESSION_INACTIVE"

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            f"Session is no longer active (status: {status}). Please start a new session.",
            session_id=session_id,
            status=status,
        )


class OwnerInactive(CollabError):
    code = "OWNER_INACTIVE"

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            f"Session {session_id} cannot own new claims while {status}.",
            session_id=session_id,
            status=status,
        )


class ClaimNotFound(CollabError):
    code = "CLAIM_NOT_FOUND"

    def __init__(self, message: str = "Claim not found. It may have already been released.", **context: Any) -> None:
        super().__init__(message, **context)


class ClaimAlreadyReleased(CollabError):
    code = "CLAIM_ALREADY_RELEASED"

    def __init__(self, claim_id: str, status: str) -> None:
        super().__init__(
            f"Claim was already {status}.", claim_id=claim_id, current_status=status
        )


class NotOwner(CollabError):
    code = "NOT_OWNER"


class CannotQueueOwnClaim(CollabError):
    code = "CANNOT_QUEUE_OWN_CLAIM"

    def __init__(self, claim_id: str) -> None:
        super().__init__("You cannot queue for your own claim.", claim_id=claim_id)


class AlreadyInQueue(CollabError):
    code = "ALREADY_IN_QUEUE"

    def __init__(self, claim_id: str, session_id: str) -> None:
        super().__init__(
            "You are already in the queue for this claim.",
            claim_id=claim_id,
            session_id=session_id,
        )


class QueueEntryNotFound(CollabError):
    code = "QUEUE_ENTRY_NOT_FOUND"

    def __init__(self, queue_id: str) -> None:
        super().__init__("Queue entry not found.", queue_id=queue_id)


class NotificationNotFound(CollabError):
    code = "NOTIFICATION_NOT_FOUND"

    def __init__(self, notification_ids: list[str]) -> None:
        super().__init__(
            "One or more notifications were not found.", notification_ids=notification_ids
        )


__all__ = [
    "AlreadyInQueue",
    "CannotQueueOwnClaim",
    "ClaimAlreadyReleased",
    "ClaimNotFound",
    "CollabError",
    "InvalidInput",
    "NotOwner",
    "NotificationNotFound",
    "OwnerInactive",
    "QueueEntryNotFound",
    "SessionInactive",
    "SessionNotFound",
]
