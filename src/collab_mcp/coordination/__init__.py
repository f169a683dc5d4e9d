"""Claim arbitration core: sessions, claims, conflicts, queues and notifications."""

from .claims import ClaimStore
from .conflicts import ConflictDetector, path_matches
from .coordinator import CheckReport, ClaimCoordinator, ClaimOutcome, ReaperOutcome
from .errors import CollabError
from .notifications import NotificationCenter, ReleaseNotifier
from .queue import WaitQueue
from .reaper import StalenessReaper
from .references import ReferenceStore
from .sessions import SessionRegistry
from .symbols import SymbolAnalyzer

__all__ = [
    "CheckReport",
    "ClaimCoordinator",
    "ClaimOutcome",
    "ClaimStore",
    "CollabError",
    "ConflictDetector",
    "NotificationCenter",
    "ReaperOutcome",
    "ReferenceStore",
    "ReleaseNotifier",
    "SessionRegistry",
    "StalenessReaper",
    "SymbolAnalyzer",
    "WaitQueue",
    "path_matches",
]
