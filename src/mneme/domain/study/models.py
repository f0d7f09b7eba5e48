"""
Domain models for decks, cards, study sessions and review events.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import datetime

from mneme.domain.scheduling.models import CardScheduleState, RatingScale


@dataclass
class Deck:
    """
    A deck in a category. Decks form a parent-pointer tree.

    Attributes:
        id: Storage identifier.
        user_id: Owner.
        category_id: Category the deck belongs to (shared by its whole tree).
        name: Display name.
        parent_deck_id: Parent deck, None for a root deck.
    """

    id: int
    user_id: int
    category_id: int
    name: str
    parent_deck_id: int | None = None
    description: str | None = None


@dataclass
class Flashcard:
    """A learnable item plus its scheduling state."""

    id: int
    user_id: int
    deck_id: int
    front: str
    back: str
    schedule: CardScheduleState = field(default_factory=CardScheduleState)


@dataclass
class StudySession:
    """
    One bounded study pass over a scope (a deck and its descendants).

    cards_reviewed only counts cards mastered in this session; re-queued
    attempts never count.
    """

    id: str
    user_id: int
    deck_id: int
    cards_total: int
    cards_reviewed: int = 0
    is_active: bool = True
    started_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    def is_stale(self, now: datetime, max_age_hours: float) -> bool:
        last_activity = self.updated_at or self.started_at
        if last_activity is None:
            return False
        return (now - last_activity).total_seconds() > max_age_hours * 3600


@dataclass(frozen=True)
class ReviewEvent:
    """
    Append-only record of one submitted rating. Used for analytics and to
    restore pending retries when a session resumes.

    Attributes:
        card_id: The card that was reviewed.
        user_id: Reviewer.
        rating: Raw value submitted on `scale`.
        scale: Scale the rating was given on.
        reviewed_at: When the rating was applied.
        time_taken_ms: Optional answer time.
        session_id: Session the review belongs to, None for standalone reviews.
    """

    card_id: int
    user_id: int
    rating: int
    scale: RatingScale
    reviewed_at: datetime
    time_taken_ms: int | None = None
    session_id: str | None = None
