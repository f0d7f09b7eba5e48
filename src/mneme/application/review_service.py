"""
Standalone Review Service — Application layer orchestrator.

Reviews a single card outside any deck-scoped session: no queue, no session
bookkeeping, just the scheduler plus one persisted write.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from mneme.application.scheduling.scheduler import get_strategy
from mneme.domain.errors import MnemeError, NotFoundError, StorageError, ValidationError
from mneme.domain.scheduling.models import CardScheduleState, RatingScale
from mneme.domain.study.models import Flashcard, ReviewEvent
from mneme.domain.study.ports import StudyRepository

logger = logging.getLogger(__name__)


class ReviewService:
    """
    Application service for ad-hoc card reviews.

    Follows Dependency Inversion: depends on StudyRepository abstraction,
    not concrete adapter implementations.
    """

    def __init__(
        self,
        repo: StudyRepository,
        clock: Callable[[], datetime] | None = None,
    ):
        self._repo = repo
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def review_card(
        self,
        card_id: int,
        quality: int,
        user_id: int | None = None,
        time_taken_ms: int | None = None,
        scale: RatingScale = RatingScale.QUALITY,
    ) -> Flashcard:
        """
        Apply a rating to a card and persist the result.

        Args:
            card_id: Card to review.
            quality: Rating on `scale` (0-5 by default).
            user_id: If given, the card must belong to this user.
            time_taken_ms: Optional answer time for the review log.
            scale: Rating scale; standalone reviews default to quality.

        Returns:
            The updated card.
        """
        if card_id is None:
            raise ValidationError("card_id is required", field="card_id")
        strategy = get_strategy(scale)
        strategy.validate(quality)

        card = await self._load(card_id, user_id)
        now = self._clock()
        new_state = strategy.compute_next_state(quality, card.schedule, now)
        event = ReviewEvent(
            card_id=card.id,
            user_id=card.user_id,
            rating=quality,
            scale=strategy.scale,
            reviewed_at=now,
            time_taken_ms=time_taken_ms,
        )

        try:
            updated = await self._repo.save_review(card.id, new_state, event)
        except MnemeError:
            raise
        except Exception as e:
            logger.error(f"Failed to review card {card_id}: {e}", exc_info=True)
            raise StorageError(f"Storage failure: {e}") from e

        logger.info(
            f"Reviewed card {card.id} ({strategy.scale.value}={quality}): "
            f"interval={new_state.interval} ease={new_state.ease_factor} "
            f"reps={new_state.repetitions}"
        )
        return updated

    async def preview(
        self,
        card_id: int,
        quality: int,
        user_id: int | None = None,
        scale: RatingScale = RatingScale.QUALITY,
    ) -> CardScheduleState:
        """
        Compute what a review would do without persisting anything.
        """
        card = await self._load(card_id, user_id)
        return get_strategy(scale).compute_next_state(quality, card.schedule, self._clock())

    async def _load(self, card_id: int, user_id: int | None) -> Flashcard:
        try:
            card = await self._repo.get_card(card_id)
        except MnemeError:
            raise
        except Exception as e:
            raise StorageError(f"Storage failure: {e}") from e

        if card is None or (user_id is not None and card.user_id != user_id):
            raise NotFoundError(f"Card {card_id} not found")
        return card
