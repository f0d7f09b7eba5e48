"""
Domain models for card scheduling.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from mneme.domain.constants import (
    DEFAULT_EASE_FACTOR,
    DEFAULT_INTERVAL,
    DEFAULT_REPETITIONS,
)


class RatingScale(str, Enum):
    """
    Recall-quality input scales.

    QUALITY: 0-5 SM-2 quality, success when >= 3.
    BUTTON: 1-4 answer buttons (1=Again, 2=Hard, 3=Good, 4=Easy).
    """

    QUALITY = "quality"
    BUTTON = "button"


# Button rating -> equivalent SM-2 quality (the canonical internal scale).
BUTTON_TO_QUALITY = {1: 2, 2: 3, 3: 4, 4: 5}


@dataclass(frozen=True)
class Rating:
    """A validated rating on a given scale."""

    scale: RatingScale
    value: int

    @property
    def quality(self) -> int:
        """The rating expressed on the 0-5 quality scale."""
        if self.scale is RatingScale.BUTTON:
            return BUTTON_TO_QUALITY[self.value]
        return self.value


@dataclass(frozen=True)
class CardScheduleState:
    """
    Persistent scheduling memory for one flashcard.

    Attributes:
        interval: Days until the next scheduled review (0 = new or reset).
        ease_factor: Ease multiplier x100 (250 = 2.50), never below 130.
        repetitions: Consecutive successful reviews since the last lapse.
        next_review_at: When the card becomes due. Derived from interval.
    """

    interval: int = DEFAULT_INTERVAL
    ease_factor: int = DEFAULT_EASE_FACTOR
    repetitions: int = DEFAULT_REPETITIONS
    next_review_at: datetime | None = None

    @classmethod
    def new(cls, now: datetime) -> "CardScheduleState":
        return cls(next_review_at=now)

    @property
    def is_new(self) -> bool:
        return self.repetitions == 0

    def is_due(self, now: datetime) -> bool:
        return self.next_review_at is None or self.next_review_at <= now
