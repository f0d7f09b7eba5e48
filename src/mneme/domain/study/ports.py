"""
Ports (interfaces) for study storage.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from mneme.domain.scheduling.models import CardScheduleState

from .models import Deck, Flashcard, ReviewEvent, StudySession


class StudyRepository(ABC):
    """
    Port for reading and writing decks, cards, sessions and review events.

    Implementations:
        - InMemoryStudyRepository: Process-local dictionaries.
        - SqliteStudyRepository: SQLite database file.

    Adapters raise StorageError for transient persistence failures.
    """

    # ---------- Decks ----------

    @abstractmethod
    async def get_deck(self, deck_id: int) -> Deck | None:
        pass

    @abstractmethod
    async def list_decks(self, user_id: int, category_id: int) -> list[Deck]:
        """
        Fetch every deck of a category in one call.

        Scope resolution builds the deck tree from this bulk result.
        """
        pass

    @abstractmethod
    async def add_deck(
        self,
        user_id: int,
        category_id: int,
        name: str,
        parent_deck_id: int | None = None,
        description: str | None = None,
    ) -> Deck:
        """
        Create a deck, optionally under a parent deck.

        Raises:
            NotFoundError: the parent does not exist or belongs to another user.
            ValidationError: the parent is in a different category.
        """
        pass

    # ---------- Cards ----------

    @abstractmethod
    async def get_card(self, card_id: int) -> Flashcard | None:
        pass

    @abstractmethod
    async def add_card(
        self, user_id: int, deck_id: int, front: str, back: str, now: datetime
    ) -> Flashcard:
        """Create a card with the initial schedule (interval 0, ease 250, due now)."""
        pass

    @abstractmethod
    async def find_new_cards(
        self, user_id: int, deck_ids: Sequence[int], limit: int
    ) -> list[Flashcard]:
        """
        Cards never reviewed (repetitions == 0), oldest due first.
        """
        pass

    @abstractmethod
    async def find_due_cards(
        self,
        user_id: int,
        deck_ids: Sequence[int],
        now: datetime,
        limit: int,
        repetition_tiers: Sequence[int] | None = None,
    ) -> list[Flashcard]:
        """
        Cards with repetitions > 0 and next_review_at <= now, due-soonest first.

        Args:
            repetition_tiers: If non-empty, only cards whose repetition count
                is in this set are returned. None and an empty set both mean
                no tier filter.
        """
        pass

    # ---------- Sessions ----------

    @abstractmethod
    async def get_active_session(self, user_id: int, deck_id: int) -> StudySession | None:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> StudySession | None:
        pass

    @abstractmethod
    async def create_session(self, session: StudySession) -> StudySession:
        """
        Persist a new active session.

        Raises:
            ConflictError: an active session already exists for (user, deck).
        """
        pass

    @abstractmethod
    async def close_session(
        self, session_id: str, now: datetime, completed: bool
    ) -> StudySession:
        """
        Mark a session inactive. completed_at is only set when completed is True;
        abandoned sessions keep it empty.
        """
        pass

    # ---------- Reviews ----------

    @abstractmethod
    async def save_review(
        self,
        card_id: int,
        state: CardScheduleState,
        event: ReviewEvent,
        session: StudySession | None = None,
    ) -> Flashcard:
        """
        Atomically persist the new card state, the review event and, when
        given, the session's progress fields. Returns the updated card.
        """
        pass

    @abstractmethod
    async def list_review_events(self, card_id: int) -> list[ReviewEvent]:
        """Review history for a card, oldest first."""
        pass

    @abstractmethod
    async def list_session_events(self, session_id: str) -> list[ReviewEvent]:
        """Reviews recorded inside one study session, oldest first."""
        pass
