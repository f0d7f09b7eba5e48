from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from mneme.application.review_service import ReviewService
from mneme.domain.errors import NotFoundError, StorageError, ValidationError
from mneme.domain.scheduling.models import RatingScale

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(repo, clock):
    return ReviewService(repo, clock=clock)


@pytest.mark.asyncio
async def test_review_new_card(service, repo, deck_tree, card_factory):
    repo.put_card(card_factory(1, deck_tree["spanish"].id))

    card = await service.review_card(1, 5, user_id=1, time_taken_ms=900)

    assert card.schedule.interval == 1
    assert card.schedule.ease_factor == 260
    assert card.schedule.next_review_at == NOW + timedelta(days=1)
    events = await repo.list_review_events(1)
    assert events[0].session_id is None
    assert events[0].scale is RatingScale.QUALITY
    assert events[0].rating == 5


@pytest.mark.asyncio
async def test_review_lapse(service, repo, deck_tree, card_factory):
    repo.put_card(card_factory(1, deck_tree["spanish"].id, interval=15, ease=260, reps=3))

    card = await service.review_card(1, 2)

    assert (card.schedule.interval, card.schedule.repetitions) == (0, 0)
    assert card.schedule.ease_factor == 228


@pytest.mark.asyncio
async def test_review_does_not_touch_sessions(service, repo, deck_tree, card_factory):
    repo.put_card(card_factory(1, deck_tree["spanish"].id))
    await service.review_card(1, 4)
    assert await repo.get_active_session(1, deck_tree["spanish"].id) is None


@pytest.mark.asyncio
async def test_review_unknown_or_foreign_card(service, repo, deck_tree, card_factory):
    repo.put_card(card_factory(1, deck_tree["spanish"].id, user_id=2))
    with pytest.raises(NotFoundError):
        await service.review_card(99, 4)
    with pytest.raises(NotFoundError):
        await service.review_card(1, 4, user_id=1)


@pytest.mark.asyncio
@pytest.mark.parametrize("quality", [-1, 6, 2.5, None])
async def test_review_rejects_bad_quality(service, repo, deck_tree, card_factory, quality):
    repo.put_card(card_factory(1, deck_tree["spanish"].id))
    with pytest.raises(ValidationError):
        await service.review_card(1, quality)
    assert await repo.list_review_events(1) == []


@pytest.mark.asyncio
async def test_review_storage_failure(card_factory, clock):
    mock_repo = AsyncMock()
    mock_repo.get_card.return_value = card_factory(1, 1)
    mock_repo.save_review.side_effect = RuntimeError("locked")

    with pytest.raises(StorageError):
        await ReviewService(mock_repo, clock=clock).review_card(1, 4)


@pytest.mark.asyncio
async def test_preview_persists_nothing(service, repo, deck_tree, card_factory):
    repo.put_card(card_factory(1, deck_tree["spanish"].id, interval=6, reps=2))

    preview = await service.preview(1, 5)

    assert preview.interval == 15
    stored = await repo.get_card(1)
    assert stored.schedule.interval == 6
    assert await repo.list_review_events(1) == []
