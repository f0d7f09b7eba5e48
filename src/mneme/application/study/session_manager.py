"""
Study Session Manager — Application layer orchestrator.

Runs one bounded pass over a scope's cards with immediate re-testing of
weakly recalled cards. Every read and mutation of a (user, scope) session is
serialized by a per-session asyncio.Lock; different scopes never contend.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TypeVar

from mneme.application.id_service import generate_session_id
from mneme.application.scheduling.scheduler import ScaleStrategy, get_strategy
from mneme.domain.constants import DEFAULT_REQUEUE_OFFSET, DEFAULT_STALE_SESSION_HOURS
from mneme.domain.errors import (
    ConflictError,
    MnemeError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from mneme.domain.scheduling.models import RatingScale
from mneme.domain.study.models import Flashcard, ReviewEvent, StudySession
from mneme.domain.study.ports import StudyRepository

from .deck_tree import resolve_scope
from .queue_builder import CandidateCriteria, QueueBuildResult, build_study_queue
from .study_queue import StudyQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    NOTHING_TO_STUDY = "nothing_to_study"


@dataclass
class SessionSettings:
    """Tunables for session building and re-queueing."""

    criteria: CandidateCriteria = field(default_factory=CandidateCriteria)
    requeue_offset: int = DEFAULT_REQUEUE_OFFSET
    stale_session_hours: float = DEFAULT_STALE_SESSION_HOURS
    scale: RatingScale = RatingScale.BUTTON


@dataclass
class SessionSnapshot:
    """What a caller needs to render a session."""

    state: SessionState
    session: StudySession | None = None
    new_cards: list[Flashcard] = field(default_factory=list)
    due_cards: list[Flashcard] = field(default_factory=list)
    current_card: Flashcard | None = None
    position: int = 0
    remaining: int = 0

    @property
    def total_cards(self) -> int:
        return len(self.new_cards) + len(self.due_cards)


@dataclass
class ReviewOutcome:
    """Result of one submitted rating."""

    card: Flashcard
    session: StudySession
    requeued: bool
    completed: bool
    next_card: Flashcard | None
    position: int
    remaining: int

    @property
    def state(self) -> SessionState:
        return SessionState.COMPLETE if self.completed else SessionState.IN_PROGRESS


@dataclass
class _ScopeLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class _ActiveStudy:
    session: StudySession
    deck_ids: list[int]
    queue: StudyQueue
    candidates: QueueBuildResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StudySessionManager:
    """
    Application service owning in-progress study sessions.

    Follows Dependency Inversion: depends on the StudyRepository abstraction,
    not on a concrete storage adapter.
    """

    def __init__(
        self,
        repo: StudyRepository,
        settings: SessionSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            repo: The repository (port) for cards and sessions.
            settings: Optional tunables; defaults match the documented values.
            clock: Optional time source returning aware UTC datetimes.
        """
        self._repo = repo
        self._settings = settings or SessionSettings()
        self._clock = clock or _utcnow
        self._strategy: ScaleStrategy = get_strategy(self._settings.scale)
        self._active: dict[tuple[int, int], _ActiveStudy] = {}
        self._locks: dict[tuple[int, int], _ScopeLock] = {}

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    @asynccontextmanager
    async def _scope_lock(self, key: tuple[int, int]) -> AsyncIterator[None]:
        """
        Hold the scope's lock. The lock is dropped once no call holds or waits
        on it and the scope has no session in memory.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _ScopeLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and key not in self._active:
                self._locks.pop(key, None)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a storage operation, translating unknown failures to StorageError."""
        try:
            return await awaitable
        except MnemeError:
            raise
        except Exception as e:
            logger.error(f"Storage operation failed: {e}", exc_info=True)
            raise StorageError(f"Storage failure: {e}") from e

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def get_or_start(self, user_id: int, deck_id: int) -> SessionSnapshot:
        """
        Return the active session for the scope, creating one when none is
        active and there is something to study.

        A persisted active session that is not held in memory (e.g. after a
        restart) is resumed by rebuilding its queue from storage, including
        cards whose last rating in the session still owes a retry. Stale
        sessions are closed as abandoned and replaced.
        """
        key = (user_id, deck_id)
        async with self._scope_lock(key):
            now = self._clock()
            active = await self._current_locked(key, now)
            if active is not None:
                return self._snapshot(active)
            return await self._start_locked(key, now)

    async def start(self, user_id: int, deck_id: int) -> SessionSnapshot:
        """
        Begin a fresh session for the scope.

        Raises:
            ConflictError: a non-stale session is already active.
        """
        key = (user_id, deck_id)
        async with self._scope_lock(key):
            now = self._clock()
            if await self._current_locked(key, now) is not None:
                raise ConflictError(
                    f"A study session is already active for deck {deck_id}"
                )
            return await self._start_locked(key, now)

    async def abandon(self, user_id: int, deck_id: int) -> StudySession | None:
        """Close the scope's active session without completing it."""
        key = (user_id, deck_id)
        async with self._scope_lock(key):
            now = self._clock()
            self._active.pop(key, None)
            stored = await self._call(self._repo.get_active_session(user_id, deck_id))
            if stored is None:
                return None
            logger.info(f"Abandoning session {stored.id} for deck {deck_id}")
            return await self._call(self._repo.close_session(stored.id, now, completed=False))

    async def _current_locked(self, key: tuple[int, int], now: datetime) -> _ActiveStudy | None:
        user_id, deck_id = key
        stored = await self._call(self._repo.get_active_session(user_id, deck_id))
        active = self._active.get(key)

        if stored is None:
            if active is not None:
                # Closed behind our back; the persisted record wins.
                self._active.pop(key, None)
            return None

        if stored.is_stale(now, self._settings.stale_session_hours):
            logger.info(
                f"Reclaiming stale session {stored.id} for deck {deck_id} "
                f"(last activity {stored.updated_at or stored.started_at})"
            )
            self._active.pop(key, None)
            await self._call(self._repo.close_session(stored.id, now, completed=False))
            return None

        if active is not None and active.session.id == stored.id:
            return active

        return await self._resume_locked(key, stored, now)

    async def _resume_locked(
        self, key: tuple[int, int], stored: StudySession, now: datetime
    ) -> _ActiveStudy | None:
        user_id, deck_id = key
        deck_ids = await self._call(resolve_scope(self._repo, user_id, deck_id))
        candidates = await self._call(
            build_study_queue(self._repo, user_id, deck_ids, now, self._settings.criteria)
        )
        queue = candidates.to_queue()
        for card in await self._pending_retries(stored, deck_ids, queue):
            queue.items.append(card)

        if queue.current is None:
            logger.info(f"Session {stored.id} has no remaining cards; closing as complete")
            await self._call(self._repo.close_session(stored.id, now, completed=True))
            return None

        logger.info(f"Resuming session {stored.id} for deck {deck_id} ({queue.remaining} cards)")
        logger.debug(f"Session {stored.id} pending cards: {queue.pending_ids()}")
        active = _ActiveStudy(
            session=stored,
            deck_ids=deck_ids,
            queue=queue,
            candidates=candidates,
        )
        self._active[key] = active
        return active

    async def _pending_retries(
        self, stored: StudySession, deck_ids: list[int], queue: StudyQueue
    ) -> list[Flashcard]:
        """
        Cards whose last rating in the session was Again/Hard and that the
        rebuilt queue does not already hold, in the order they were rated.
        """
        last: dict[int, ReviewEvent] = {}
        for event in await self._call(self._repo.list_session_events(stored.id)):
            last.pop(event.card_id, None)
            last[event.card_id] = event

        queued = set(queue.pending_ids())
        retries = []
        for card_id, event in last.items():
            if card_id in queued or not get_strategy(event.scale).is_weak(event.rating):
                continue
            card = await self._call(self._repo.get_card(card_id))
            if card is not None and card.deck_id in deck_ids:
                retries.append(card)
        return retries

    async def _start_locked(self, key: tuple[int, int], now: datetime) -> SessionSnapshot:
        user_id, deck_id = key
        deck_ids = await self._call(resolve_scope(self._repo, user_id, deck_id))
        candidates = await self._call(
            build_study_queue(self._repo, user_id, deck_ids, now, self._settings.criteria)
        )

        if candidates.total == 0:
            logger.info(f"Nothing to study for deck {deck_id}")
            return SessionSnapshot(state=SessionState.NOTHING_TO_STUDY)

        session = StudySession(
            id=generate_session_id(),
            user_id=user_id,
            deck_id=deck_id,
            cards_total=candidates.total,
            cards_reviewed=0,
            is_active=True,
            started_at=now,
            updated_at=now,
        )
        session = await self._call(self._repo.create_session(session))
        active = _ActiveStudy(
            session=session,
            deck_ids=deck_ids,
            queue=candidates.to_queue(),
            candidates=candidates,
        )
        self._active[key] = active
        logger.info(
            f"Started session {session.id} for deck {deck_id}: "
            f"{len(candidates.new_cards)} new, {len(candidates.due_cards)} due"
        )
        return self._snapshot(active)

    def _snapshot(self, active: _ActiveStudy) -> SessionSnapshot:
        return SessionSnapshot(
            state=SessionState.IN_PROGRESS,
            session=active.session,
            new_cards=list(active.candidates.new_cards),
            due_cards=list(active.candidates.due_cards),
            current_card=active.queue.current,
            position=active.queue.position,
            remaining=active.queue.remaining,
        )

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    async def submit_rating(
        self,
        user_id: int,
        deck_id: int,
        card_id: int,
        rating: int,
        time_taken_ms: int | None = None,
        expected_position: int | None = None,
    ) -> ReviewOutcome:
        """
        Apply a rating to the card at the head of the session queue.

        Again/Hard re-inserts the card `requeue_offset` slots ahead; Good/Easy
        counts it as mastered. The in-memory queue only changes after the
        rating has been persisted.

        Raises:
            ValidationError: bad rating or card id.
            NotFoundError: no active session, or the card is outside the scope.
            ConflictError: the card is not the one currently presented.
            StorageError: persistence failed; the queue did not advance.
        """
        if card_id is None or isinstance(card_id, bool) or not isinstance(card_id, int):
            raise ValidationError("card_id is required", field="card_id")
        if card_id <= 0:
            raise ValidationError(f"Invalid card_id: {card_id}", field="card_id")
        if time_taken_ms is not None and time_taken_ms < 0:
            raise ValidationError("time_taken_ms must not be negative", field="time_taken_ms")
        self._strategy.validate(rating)

        key = (user_id, deck_id)
        async with self._scope_lock(key):
            now = self._clock()
            active = await self._current_locked(key, now)
            if active is None:
                raise NotFoundError(f"No active study session for deck {deck_id}")

            card = await self._call(self._repo.get_card(card_id))
            if card is None or card.user_id != user_id or card.deck_id not in active.deck_ids:
                raise NotFoundError(f"Card {card_id} not found in deck {deck_id}")

            queue = active.queue
            head = queue.current
            if head is None or head.id != card_id:
                raise ConflictError(
                    f"Card {card_id} is not the current card "
                    f"(expected {head.id if head else 'none'})"
                )
            if expected_position is not None and expected_position != queue.position:
                raise ConflictError(
                    f"Stale submission: position {expected_position}, "
                    f"session is at {queue.position}"
                )

            new_state = self._strategy.compute_next_state(rating, card.schedule, now)
            requeued = self._strategy.is_weak(rating)
            completed = not requeued and queue.position + 1 >= len(queue.items)

            session = replace(
                active.session,
                cards_reviewed=active.session.cards_reviewed + (0 if requeued else 1),
                updated_at=now,
                is_active=not completed,
                completed_at=now if completed else None,
            )
            event = ReviewEvent(
                card_id=card.id,
                user_id=user_id,
                rating=rating,
                scale=self._strategy.scale,
                reviewed_at=now,
                time_taken_ms=time_taken_ms,
                session_id=session.id,
            )

            updated = await self._call(self._repo.save_review(card.id, new_state, event, session))

            # Persisted: now it is safe to move the pointer.
            queue.replace_current(updated)
            if requeued:
                index = queue.requeue_current(self._settings.requeue_offset, updated)
                logger.debug(f"Re-queued card {card.id} at index {index}")
            queue.advance()
            active.session = session

            if completed:
                self._active.pop(key, None)
                logger.info(
                    f"Session {session.id} complete: "
                    f"{session.cards_reviewed}/{session.cards_total} mastered"
                )

            return ReviewOutcome(
                card=updated,
                session=session,
                requeued=requeued,
                completed=completed,
                next_card=queue.current,
                position=queue.position,
                remaining=queue.remaining,
            )
