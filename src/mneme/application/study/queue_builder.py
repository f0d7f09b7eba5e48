"""
Queue builder for deck-scoped study sessions.

Builds ordered study queues by:
1. Fetching never-reviewed cards up to the new-card cap
2. Fetching due review cards up to the due-card cap, optionally limited to
   a set of repetition tiers
3. Concatenating new cards first, then due cards, each due-soonest first
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from mneme.domain.constants import DEFAULT_DUE_CARD_LIMIT, DEFAULT_NEW_CARD_LIMIT
from mneme.domain.study.models import Flashcard
from mneme.domain.study.ports import StudyRepository

from .study_queue import StudyQueue

logger = logging.getLogger(__name__)


@dataclass
class CandidateCriteria:
    """
    Limits applied when selecting session candidates.

    repetition_tiers is optional. If not set, every due card qualifies.
    """

    new_limit: int = DEFAULT_NEW_CARD_LIMIT
    due_limit: int = DEFAULT_DUE_CARD_LIMIT
    repetition_tiers: tuple[int, ...] | None = None


@dataclass
class QueueBuildResult:
    """Result of queue building operation."""

    new_cards: list[Flashcard]
    due_cards: list[Flashcard]

    @property
    def total(self) -> int:
        return len(self.new_cards) + len(self.due_cards)

    def to_queue(self) -> StudyQueue:
        return StudyQueue(items=list(self.new_cards) + list(self.due_cards))


def _due_order(card: Flashcard) -> tuple:
    due = card.schedule.next_review_at
    return (due is not None, due or datetime.min, card.id)


async def build_study_queue(
    repo: StudyRepository,
    user_id: int,
    deck_ids: Sequence[int],
    now: datetime,
    criteria: CandidateCriteria | None = None,
) -> QueueBuildResult:
    """
    Select the session's candidate cards for a resolved scope.

    Args:
        repo: Storage port.
        user_id: Card owner.
        deck_ids: The scope deck and its descendants.
        now: Reference time for due status.
        criteria: Caps and tier filter; defaults apply when omitted.

    Returns:
        QueueBuildResult with new and due cards in presentation order.
    """
    criteria = criteria or CandidateCriteria()

    new_cards = await repo.find_new_cards(user_id, deck_ids, criteria.new_limit)
    due_cards = await repo.find_due_cards(
        user_id,
        deck_ids,
        now,
        criteria.due_limit,
        repetition_tiers=criteria.repetition_tiers,
    )

    # Adapters order already; re-sort so the contract holds for any adapter.
    new_cards = sorted((c for c in new_cards if c.schedule.is_new), key=_due_order)[
        : criteria.new_limit
    ]
    due_cards = sorted(
        (c for c in due_cards if c.schedule.repetitions > 0 and c.schedule.is_due(now)),
        key=_due_order,
    )[: criteria.due_limit]

    logger.debug(
        f"Built queue for decks={list(deck_ids)}: new={len(new_cards)} due={len(due_cards)}"
    )
    return QueueBuildResult(new_cards=new_cards, due_cards=due_cards)
