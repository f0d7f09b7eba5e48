from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from mneme.domain.scheduling.models import CardScheduleState
from mneme.domain.study.models import Flashcard
from mneme.infrastructure.adapters.memory_store import InMemoryStudyRepository

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic time source that tests move forward by hand."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return InMemoryStudyRepository()


@pytest_asyncio.fixture
async def deck_tree(repo):
    """
    Category 1 for user 1:

        Spanish (1)
          Verbs (2)
            Irregular (3)
        French (4)
    """
    spanish = await repo.add_deck(1, 1, "Spanish")
    verbs = await repo.add_deck(1, 1, "Verbs", parent_deck_id=spanish.id)
    irregular = await repo.add_deck(1, 1, "Irregular", parent_deck_id=verbs.id)
    french = await repo.add_deck(1, 1, "French")
    return {"spanish": spanish, "verbs": verbs, "irregular": irregular, "french": french}


def make_card(
    card_id: int,
    deck_id: int,
    *,
    user_id: int = 1,
    interval: int = 0,
    ease: int = 250,
    reps: int = 0,
    due: datetime | None = NOW - timedelta(minutes=5),
) -> Flashcard:
    return Flashcard(
        id=card_id,
        user_id=user_id,
        deck_id=deck_id,
        front=f"front {card_id}",
        back=f"back {card_id}",
        schedule=CardScheduleState(
            interval=interval, ease_factor=ease, repetitions=reps, next_review_at=due
        ),
    )


@pytest.fixture
def card_factory():
    return make_card


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config and database files
    monkeypatch.setenv("HOME", str(home))
    for var in (
        "MNEME_BACKEND",
        "MNEME_DATABASE_PATH",
        "MNEME_NEW_CARD_LIMIT",
        "MNEME_DUE_CARD_LIMIT",
        "MNEME_DUE_REPETITION_TIERS",
        "MNEME_REQUEUE_OFFSET",
        "MNEME_STALE_SESSION_HOURS",
        "MNEME_DEFAULT_USER_ID",
    ):
        monkeypatch.delenv(var, raising=False)
    return home
