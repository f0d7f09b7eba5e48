"""
SM-2 derived scheduler.

This is a pure computation module with no I/O. Two rating scales are
supported through separate strategies; their interval tables encode
different product behavior and are intentionally kept apart.
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from mneme.domain.constants import (
    BUTTON_AGAIN,
    BUTTON_GOOD,
    BUTTON_MAX,
    BUTTON_MIN,
    DEFAULT_EASE_FACTOR,
    DEFAULT_INTERVAL,
    DEFAULT_REPETITIONS,
    LAPSE_REVIEW_DELAY_DAYS,
    MIN_EASE_FACTOR,
    QUALITY_MAX,
    QUALITY_MIN,
    QUALITY_PASS,
)
from mneme.domain.errors import ValidationError
from mneme.domain.scheduling.models import CardScheduleState, Rating, RatingScale


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero on the positive side."""
    return math.floor(value + 0.5)


def normalize_state(
    interval: int | None = None,
    ease_factor: int | None = None,
    repetitions: int | None = None,
) -> CardScheduleState:
    """
    Build a schedule state, replacing missing or negative fields with new-card defaults.
    """
    if interval is None or interval < 0:
        interval = DEFAULT_INTERVAL
    if ease_factor is None or ease_factor <= 0:
        ease_factor = DEFAULT_EASE_FACTOR
    if repetitions is None or repetitions < 0:
        repetitions = DEFAULT_REPETITIONS
    return CardScheduleState(
        interval=int(interval), ease_factor=int(ease_factor), repetitions=int(repetitions)
    )


def _grow_interval(interval: int, ease_factor: int) -> int:
    return round_half_up(interval * (ease_factor / 100.0))


def _ease_delta(distance: int) -> int:
    """SM-2 ease change (x100) for a rating `distance` steps below the top."""
    return round_half_up(100 * (0.1 - distance * (0.08 + distance * 0.02)))


class ScaleStrategy(ABC):
    """
    Common interface for the two scheduling variants.

    Stateless and side-effect free; safe to share between callers.
    """

    scale: RatingScale
    min_rating: int
    max_rating: int

    def validate(self, rating: int) -> Rating:
        """
        Reject anything that is not an integer inside the scale's range.

        Raises:
            ValidationError: never clamps.
        """
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError(
                f"{self.scale.value} rating must be an integer, got {rating!r}",
                field="rating",
            )
        if not self.min_rating <= rating <= self.max_rating:
            raise ValidationError(
                f"{self.scale.value} rating must be between {self.min_rating} "
                f"and {self.max_rating}, got {rating}",
                field="rating",
            )
        return Rating(self.scale, rating)

    @abstractmethod
    def is_lapse(self, rating: int) -> bool:
        pass

    def is_weak(self, rating: int) -> bool:
        """Weak recall means the card should be seen again this session."""
        return Rating(self.scale, rating).quality < 4

    def compute_next_state(
        self,
        rating: int,
        current: CardScheduleState | None = None,
        now: datetime | None = None,
    ) -> CardScheduleState:
        """
        Compute the card's next scheduling state.

        Args:
            rating: Raw rating on this strategy's scale.
            current: Current state; None means a never-reviewed card.
            now: Reference time for the due date (defaults to UTC now).

        Returns:
            A new CardScheduleState with every field recomputed.
        """
        self.validate(rating)
        state = current or CardScheduleState()
        state = normalize_state(state.interval, state.ease_factor, state.repetitions)
        now = now or datetime.now(timezone.utc)
        return self._apply(rating, state, now)

    @abstractmethod
    def _apply(
        self, rating: int, state: CardScheduleState, now: datetime
    ) -> CardScheduleState:
        pass


class QualityScaleStrategy(ScaleStrategy):
    """
    Classic SM-2 on the 0-5 quality scale.

    Success iff quality >= 3. Intervals: 1 day, then 6 days, then
    interval * ease. The ease update applies on every review, lapses included.
    A lapse resets interval to 0 and projects the review one day out.
    """

    scale = RatingScale.QUALITY
    min_rating = QUALITY_MIN
    max_rating = QUALITY_MAX

    def is_lapse(self, rating: int) -> bool:
        return rating < QUALITY_PASS

    def _apply(
        self, rating: int, state: CardScheduleState, now: datetime
    ) -> CardScheduleState:
        if self.is_lapse(rating):
            interval = 0
            repetitions = 0
            due_in_days = LAPSE_REVIEW_DELAY_DAYS
        else:
            if state.repetitions == 0:
                interval = 1
            elif state.repetitions == 1:
                interval = 6
            else:
                interval = _grow_interval(state.interval, state.ease_factor)
            repetitions = state.repetitions + 1
            due_in_days = interval

        ease_factor = max(
            MIN_EASE_FACTOR, state.ease_factor + _ease_delta(QUALITY_MAX - rating)
        )

        return CardScheduleState(
            interval=interval,
            ease_factor=ease_factor,
            repetitions=repetitions,
            next_review_at=now + timedelta(days=due_in_days),
        )


class ButtonScaleStrategy(ScaleStrategy):
    """
    Session variant on the 1-4 button scale (Again/Hard/Good/Easy).

    Again is an unconditional lapse that leaves ease untouched and makes the
    card due immediately. Early intervals come from a per-button table:

        repetitions 0: Hard 1, Good 1, Easy 4
        repetitions 1: Hard 3, Good 6, Easy 10
        otherwise:     interval * ease
    """

    scale = RatingScale.BUTTON
    min_rating = BUTTON_MIN
    max_rating = BUTTON_MAX

    FIRST_INTERVALS = {2: 1, 3: 1, 4: 4}
    SECOND_INTERVALS = {2: 3, 3: 6, 4: 10}

    def is_lapse(self, rating: int) -> bool:
        return rating == BUTTON_AGAIN

    def is_weak(self, rating: int) -> bool:
        return rating < BUTTON_GOOD

    def _apply(
        self, rating: int, state: CardScheduleState, now: datetime
    ) -> CardScheduleState:
        if self.is_lapse(rating):
            return CardScheduleState(
                interval=0,
                ease_factor=max(MIN_EASE_FACTOR, state.ease_factor),
                repetitions=0,
                next_review_at=now,
            )

        if state.repetitions == 0:
            interval = self.FIRST_INTERVALS[rating]
        elif state.repetitions == 1:
            interval = self.SECOND_INTERVALS[rating]
        else:
            interval = _grow_interval(state.interval, state.ease_factor)

        ease_factor = max(
            MIN_EASE_FACTOR, state.ease_factor + _ease_delta(BUTTON_MAX - rating)
        )

        return CardScheduleState(
            interval=interval,
            ease_factor=ease_factor,
            repetitions=state.repetitions + 1,
            next_review_at=now + timedelta(days=interval),
        )


_STRATEGIES: dict[RatingScale, ScaleStrategy] = {
    RatingScale.QUALITY: QualityScaleStrategy(),
    RatingScale.BUTTON: ButtonScaleStrategy(),
}


def get_strategy(scale: RatingScale | str) -> ScaleStrategy:
    try:
        return _STRATEGIES[RatingScale(scale)]
    except ValueError as e:
        raise ValidationError(f"Unknown rating scale: {scale!r}", field="scale") from e


def compute_next_state(
    rating: int,
    current: CardScheduleState | None = None,
    scale: RatingScale | str = RatingScale.QUALITY,
    now: datetime | None = None,
) -> CardScheduleState:
    """Compute the next scheduling state using the strategy for `scale`."""
    return get_strategy(scale).compute_next_state(rating, current, now)
