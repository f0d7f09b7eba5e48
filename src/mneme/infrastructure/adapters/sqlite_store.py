"""
SQLite Study Repository — Infrastructure adapter for a local SQLite database.

Implements StudyRepository with the standard library driver. Every public
method opens its own connection; each write runs in a single transaction.
"""

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from mneme.domain.errors import ConflictError, NotFoundError, StorageError, ValidationError
from mneme.domain.scheduling.models import CardScheduleState, RatingScale
from mneme.domain.study.models import Deck, Flashcard, ReviewEvent, StudySession
from mneme.domain.study.ports import StudyRepository

logger = logging.getLogger(__name__)

_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA = """
CREATE TABLE IF NOT EXISTS decks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    category_id INTEGER NOT NULL,
    parent_deck_id INTEGER REFERENCES decks(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT
);
CREATE INDEX IF NOT EXISTS idx_decks_category ON decks(user_id, category_id);

CREATE TABLE IF NOT EXISTS flashcards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    deck_id INTEGER NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    front TEXT NOT NULL,
    back TEXT NOT NULL,
    interval INTEGER NOT NULL DEFAULT 0,
    ease_factor INTEGER NOT NULL DEFAULT 250 CHECK (ease_factor >= 130),
    repetitions INTEGER NOT NULL DEFAULT 0 CHECK (repetitions >= 0),
    next_review_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_flashcards_due ON flashcards(deck_id, next_review_at);

CREATE TABLE IF NOT EXISTS study_sessions (
    id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    deck_id INTEGER NOT NULL,
    cards_total INTEGER NOT NULL,
    cards_reviewed INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    started_at TEXT,
    updated_at TEXT,
    completed_at TEXT
);
-- At most one active session per (user, scope).
CREATE UNIQUE INDEX IF NOT EXISTS idx_one_active_session
    ON study_sessions(user_id, deck_id) WHERE is_active = 1;

CREATE TABLE IF NOT EXISTS card_reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_id INTEGER NOT NULL REFERENCES flashcards(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL,
    session_id TEXT REFERENCES study_sessions(id),
    rating INTEGER NOT NULL,
    scale TEXT NOT NULL,
    time_taken_ms INTEGER,
    reviewed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_card_reviews_card ON card_reviews(card_id);
CREATE INDEX IF NOT EXISTS idx_card_reviews_session ON card_reviews(session_id);
"""


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


def _placeholders(values: Sequence) -> str:
    return ",".join("?" for _ in values)


class SqliteStudyRepository(StudyRepository):
    """
    Stores decks, cards, sessions and the review log in one SQLite file.

    The "one active session per scope" rule is enforced by a partial unique
    index; driver errors surface as StorageError.
    """

    def __init__(self, database_path: Path | str):
        self.database_path = Path(database_path)
        self._initialized = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            if not self._initialized:
                self.database_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.database_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Could not open database {self.database_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            if not self._initialized:
                conn.executescript(SCHEMA)
                self._initialized = True
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error(f"SQLite error on {self.database_path}: {e}")
            raise StorageError(f"Database error: {e}") from e
        finally:
            conn.close()

    # ---------- Row mapping ----------

    @staticmethod
    def _deck(row: sqlite3.Row) -> Deck:
        return Deck(
            id=row["id"],
            user_id=row["user_id"],
            category_id=row["category_id"],
            name=row["name"],
            parent_deck_id=row["parent_deck_id"],
            description=row["description"],
        )

    @staticmethod
    def _card(row: sqlite3.Row) -> Flashcard:
        return Flashcard(
            id=row["id"],
            user_id=row["user_id"],
            deck_id=row["deck_id"],
            front=row["front"],
            back=row["back"],
            schedule=CardScheduleState(
                interval=row["interval"],
                ease_factor=row["ease_factor"],
                repetitions=row["repetitions"],
                next_review_at=_from_db(row["next_review_at"]),
            ),
        )

    @staticmethod
    def _session(row: sqlite3.Row) -> StudySession:
        return StudySession(
            id=row["id"],
            user_id=row["user_id"],
            deck_id=row["deck_id"],
            cards_total=row["cards_total"],
            cards_reviewed=row["cards_reviewed"],
            is_active=bool(row["is_active"]),
            started_at=_from_db(row["started_at"]),
            updated_at=_from_db(row["updated_at"]),
            completed_at=_from_db(row["completed_at"]),
        )

    @staticmethod
    def _event(row: sqlite3.Row) -> ReviewEvent:
        return ReviewEvent(
            card_id=row["card_id"],
            user_id=row["user_id"],
            rating=row["rating"],
            scale=RatingScale(row["scale"]),
            reviewed_at=_from_db(row["reviewed_at"]),
            time_taken_ms=row["time_taken_ms"],
            session_id=row["session_id"],
        )

    # ---------- Decks ----------

    async def get_deck(self, deck_id: int) -> Deck | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM decks WHERE id = ?", (deck_id,)).fetchone()
        return self._deck(row) if row else None

    async def list_decks(self, user_id: int, category_id: int) -> list[Deck]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM decks WHERE user_id = ? AND category_id = ? ORDER BY id",
                (user_id, category_id),
            ).fetchall()
        return [self._deck(r) for r in rows]

    async def add_deck(
        self,
        user_id: int,
        category_id: int,
        name: str,
        parent_deck_id: int | None = None,
        description: str | None = None,
    ) -> Deck:
        try:
            with self._connect() as conn:
                if parent_deck_id is not None:
                    parent = conn.execute(
                        "SELECT user_id, category_id FROM decks WHERE id = ?", (parent_deck_id,)
                    ).fetchone()
                    if parent is None or parent["user_id"] != user_id:
                        raise NotFoundError(f"Parent deck {parent_deck_id} not found")
                    if parent["category_id"] != category_id:
                        raise ValidationError(
                            f"Parent deck {parent_deck_id} belongs to category "
                            f"{parent['category_id']}",
                            field="parent_deck_id",
                        )
                cur = conn.execute(
                    "INSERT INTO decks (user_id, category_id, parent_deck_id, name, description) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (user_id, category_id, parent_deck_id, name, description),
                )
                deck_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise NotFoundError(f"Parent deck {parent_deck_id} not found") from e
        return Deck(
            id=deck_id,
            user_id=user_id,
            category_id=category_id,
            name=name,
            parent_deck_id=parent_deck_id,
            description=description,
        )

    # ---------- Cards ----------

    async def get_card(self, card_id: int) -> Flashcard | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM flashcards WHERE id = ?", (card_id,)).fetchone()
        return self._card(row) if row else None

    async def add_card(
        self, user_id: int, deck_id: int, front: str, back: str, now: datetime
    ) -> Flashcard:
        schedule = CardScheduleState.new(now)
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    "INSERT INTO flashcards "
                    "(user_id, deck_id, front, back, interval, ease_factor, repetitions, "
                    "next_review_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        user_id,
                        deck_id,
                        front,
                        back,
                        schedule.interval,
                        schedule.ease_factor,
                        schedule.repetitions,
                        _to_db(schedule.next_review_at),
                    ),
                )
                card_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise NotFoundError(f"Deck {deck_id} not found") from e
        return Flashcard(
            id=card_id, user_id=user_id, deck_id=deck_id, front=front, back=back, schedule=schedule
        )

    async def find_new_cards(
        self, user_id: int, deck_ids: Sequence[int], limit: int
    ) -> list[Flashcard]:
        if not deck_ids:
            return []
        query = (
            f"SELECT * FROM flashcards WHERE user_id = ? "
            f"AND deck_id IN ({_placeholders(deck_ids)}) AND repetitions = 0 "
            f"ORDER BY next_review_at ASC, id ASC LIMIT ?"
        )
        with self._connect() as conn:
            rows = conn.execute(query, (user_id, *deck_ids, limit)).fetchall()
        return [self._card(r) for r in rows]

    async def find_due_cards(
        self,
        user_id: int,
        deck_ids: Sequence[int],
        now: datetime,
        limit: int,
        repetition_tiers: Sequence[int] | None = None,
    ) -> list[Flashcard]:
        if not deck_ids:
            return []
        params: list = [user_id, *deck_ids, _to_db(now)]
        query = (
            f"SELECT * FROM flashcards WHERE user_id = ? "
            f"AND deck_id IN ({_placeholders(deck_ids)}) "
            f"AND repetitions > 0 AND next_review_at <= ?"
        )
        if repetition_tiers:
            query += f" AND repetitions IN ({_placeholders(repetition_tiers)})"
            params.extend(repetition_tiers)
        query += " ORDER BY next_review_at ASC, id ASC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._card(r) for r in rows]

    # ---------- Sessions ----------

    async def get_active_session(self, user_id: int, deck_id: int) -> StudySession | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM study_sessions WHERE user_id = ? AND deck_id = ? AND is_active = 1",
                (user_id, deck_id),
            ).fetchone()
        return self._session(row) if row else None

    async def get_session(self, session_id: str) -> StudySession | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM study_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._session(row) if row else None

    async def create_session(self, session: StudySession) -> StudySession:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO study_sessions (id, user_id, deck_id, cards_total, "
                    "cards_reviewed, is_active, started_at, updated_at, completed_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        session.id,
                        session.user_id,
                        session.deck_id,
                        session.cards_total,
                        session.cards_reviewed,
                        int(session.is_active),
                        _to_db(session.started_at),
                        _to_db(session.updated_at),
                        _to_db(session.completed_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Active session already exists for user {session.user_id}, "
                f"deck {session.deck_id}"
            ) from e
        return session

    async def close_session(
        self, session_id: str, now: datetime, completed: bool
    ) -> StudySession:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE study_sessions SET is_active = 0, updated_at = ?, completed_at = ? "
                "WHERE id = ?",
                (_to_db(now), _to_db(now) if completed else None, session_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Session {session_id} not found")
            row = conn.execute(
                "SELECT * FROM study_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._session(row)

    # ---------- Reviews ----------

    async def save_review(
        self,
        card_id: int,
        state: CardScheduleState,
        event: ReviewEvent,
        session: StudySession | None = None,
    ) -> Flashcard:
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    "UPDATE flashcards SET interval = ?, ease_factor = ?, repetitions = ?, "
                    "next_review_at = ? WHERE id = ?",
                    (
                        state.interval,
                        state.ease_factor,
                        state.repetitions,
                        _to_db(state.next_review_at),
                        card_id,
                    ),
                )
                if cur.rowcount == 0:
                    raise NotFoundError(f"Card {card_id} not found")

                conn.execute(
                    "INSERT INTO card_reviews (card_id, user_id, session_id, rating, scale, "
                    "time_taken_ms, reviewed_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        event.card_id,
                        event.user_id,
                        event.session_id,
                        event.rating,
                        event.scale.value,
                        event.time_taken_ms,
                        _to_db(event.reviewed_at),
                    ),
                )

                if session is not None:
                    cur = conn.execute(
                        "UPDATE study_sessions SET cards_reviewed = ?, is_active = ?, "
                        "updated_at = ?, completed_at = ? WHERE id = ?",
                        (
                            session.cards_reviewed,
                            int(session.is_active),
                            _to_db(session.updated_at),
                            _to_db(session.completed_at),
                            session.id,
                        ),
                    )
                    if cur.rowcount == 0:
                        raise NotFoundError(f"Session {session.id} not found")

                row = conn.execute(
                    "SELECT * FROM flashcards WHERE id = ?", (card_id,)
                ).fetchone()
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Review for card {card_id} rejected: {e}") from e
        return self._card(row)

    async def list_review_events(self, card_id: int) -> list[ReviewEvent]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM card_reviews WHERE card_id = ? ORDER BY id ASC", (card_id,)
            ).fetchall()
        return [self._event(r) for r in rows]

    async def list_session_events(self, session_id: str) -> list[ReviewEvent]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM card_reviews WHERE session_id = ? ORDER BY id ASC", (session_id,)
            ).fetchall()
        return [self._event(r) for r in rows]
