"""
In-Memory Study Repository — Infrastructure adapter backed by dictionaries.

Used by tests and by the `memory` backend. Values are copied on the way in
and out so callers never alias stored state.
"""

import logging
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from mneme.domain.errors import ConflictError, NotFoundError, ValidationError
from mneme.domain.scheduling.models import CardScheduleState
from mneme.domain.study.models import Deck, Flashcard, ReviewEvent, StudySession
from mneme.domain.study.ports import StudyRepository

logger = logging.getLogger(__name__)


class InMemoryStudyRepository(StudyRepository):
    def __init__(self):
        self._decks: dict[int, Deck] = {}
        self._cards: dict[int, Flashcard] = {}
        self._sessions: dict[str, StudySession] = {}
        self._events: list[ReviewEvent] = []
        self._next_deck_id = 1
        self._next_card_id = 1

    # ---------- Decks ----------

    async def get_deck(self, deck_id: int) -> Deck | None:
        deck = self._decks.get(deck_id)
        return replace(deck) if deck else None

    async def list_decks(self, user_id: int, category_id: int) -> list[Deck]:
        return [
            replace(d)
            for d in self._decks.values()
            if d.user_id == user_id and d.category_id == category_id
        ]

    async def add_deck(
        self,
        user_id: int,
        category_id: int,
        name: str,
        parent_deck_id: int | None = None,
        description: str | None = None,
    ) -> Deck:
        if parent_deck_id is not None:
            parent = self._decks.get(parent_deck_id)
            if parent is None or parent.user_id != user_id:
                raise NotFoundError(f"Parent deck {parent_deck_id} not found")
            if parent.category_id != category_id:
                raise ValidationError(
                    f"Parent deck {parent_deck_id} belongs to category {parent.category_id}",
                    field="parent_deck_id",
                )
        deck = Deck(
            id=self._next_deck_id,
            user_id=user_id,
            category_id=category_id,
            name=name,
            parent_deck_id=parent_deck_id,
            description=description,
        )
        self._decks[deck.id] = deck
        self._next_deck_id += 1
        return replace(deck)

    # ---------- Cards ----------

    async def get_card(self, card_id: int) -> Flashcard | None:
        card = self._cards.get(card_id)
        return replace(card) if card else None

    async def add_card(
        self, user_id: int, deck_id: int, front: str, back: str, now: datetime
    ) -> Flashcard:
        if deck_id not in self._decks:
            raise NotFoundError(f"Deck {deck_id} not found")
        card = Flashcard(
            id=self._next_card_id,
            user_id=user_id,
            deck_id=deck_id,
            front=front,
            back=back,
            schedule=CardScheduleState.new(now),
        )
        self._cards[card.id] = card
        self._next_card_id += 1
        return replace(card)

    def put_card(self, card: Flashcard) -> None:
        """Insert or overwrite a card as-is (test seeding)."""
        self._cards[card.id] = replace(card)
        self._next_card_id = max(self._next_card_id, card.id + 1)

    def _in_scope(self, user_id: int, deck_ids: Sequence[int]) -> list[Flashcard]:
        scope = set(deck_ids)
        return [c for c in self._cards.values() if c.user_id == user_id and c.deck_id in scope]

    @staticmethod
    def _order(card: Flashcard) -> tuple:
        due = card.schedule.next_review_at
        return (due is not None, due or datetime.min, card.id)

    async def find_new_cards(
        self, user_id: int, deck_ids: Sequence[int], limit: int
    ) -> list[Flashcard]:
        cards = [c for c in self._in_scope(user_id, deck_ids) if c.schedule.repetitions == 0]
        return [replace(c) for c in sorted(cards, key=self._order)[:limit]]

    async def find_due_cards(
        self,
        user_id: int,
        deck_ids: Sequence[int],
        now: datetime,
        limit: int,
        repetition_tiers: Sequence[int] | None = None,
    ) -> list[Flashcard]:
        cards = [
            c
            for c in self._in_scope(user_id, deck_ids)
            if c.schedule.repetitions > 0
            and c.schedule.is_due(now)
            and (not repetition_tiers or c.schedule.repetitions in repetition_tiers)
        ]
        return [replace(c) for c in sorted(cards, key=self._order)[:limit]]

    # ---------- Sessions ----------

    async def get_active_session(self, user_id: int, deck_id: int) -> StudySession | None:
        for session in self._sessions.values():
            if session.user_id == user_id and session.deck_id == deck_id and session.is_active:
                return replace(session)
        return None

    async def create_session(self, session: StudySession) -> StudySession:
        if await self.get_active_session(session.user_id, session.deck_id):
            raise ConflictError(
                f"Active session already exists for user {session.user_id}, "
                f"deck {session.deck_id}"
            )
        self._sessions[session.id] = replace(session)
        return replace(session)

    async def close_session(
        self, session_id: str, now: datetime, completed: bool
    ) -> StudySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        closed = replace(
            session,
            is_active=False,
            updated_at=now,
            completed_at=now if completed else None,
        )
        self._sessions[session_id] = closed
        return replace(closed)

    async def get_session(self, session_id: str) -> StudySession | None:
        session = self._sessions.get(session_id)
        return replace(session) if session else None

    # ---------- Reviews ----------

    async def save_review(
        self,
        card_id: int,
        state: CardScheduleState,
        event: ReviewEvent,
        session: StudySession | None = None,
    ) -> Flashcard:
        card = self._cards.get(card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found")
        if session is not None and session.id not in self._sessions:
            raise NotFoundError(f"Session {session.id} not found")

        # All checks passed: apply every write together.
        updated = replace(card, schedule=state)
        self._cards[card_id] = updated
        self._events.append(event)
        if session is not None:
            self._sessions[session.id] = replace(session)
        return replace(updated)

    async def list_review_events(self, card_id: int) -> list[ReviewEvent]:
        return [e for e in self._events if e.card_id == card_id]

    async def list_session_events(self, session_id: str) -> list[ReviewEvent]:
        return [e for e in self._events if e.session_id == session_id]
