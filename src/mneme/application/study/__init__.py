# Application Study Package
from .deck_tree import DeckNode, build_deck_tree, collect_descendant_ids, resolve_scope
from .queue_builder import CandidateCriteria, QueueBuildResult, build_study_queue
from .session_manager import (
    ReviewOutcome,
    SessionSettings,
    SessionSnapshot,
    SessionState,
    StudySessionManager,
)
from .study_queue import StudyQueue

__all__ = [
    "DeckNode",
    "build_deck_tree",
    "collect_descendant_ids",
    "resolve_scope",
    "CandidateCriteria",
    "QueueBuildResult",
    "build_study_queue",
    "ReviewOutcome",
    "SessionSettings",
    "SessionSnapshot",
    "SessionState",
    "StudySessionManager",
    "StudyQueue",
]
