"""
In-memory queue of the remaining work in one study session.

The queue never drops entries: `position` moves forward over a growing list,
and weakly recalled cards are re-inserted a bounded distance ahead.
"""

from dataclasses import dataclass, field

from mneme.domain.study.models import Flashcard


@dataclass
class StudyQueue:
    items: list[Flashcard] = field(default_factory=list)
    position: int = 0

    @property
    def current(self) -> Flashcard | None:
        if self.position < len(self.items):
            return self.items[self.position]
        return None

    @property
    def remaining(self) -> int:
        return max(0, len(self.items) - self.position)

    def pending_ids(self) -> list[int]:
        return [card.id for card in self.items[self.position :]]

    def requeue_current(self, offset: int, card: Flashcard | None = None) -> int:
        """
        Insert the current card again `offset` slots ahead, or at the end if
        the queue is shorter. Returns the insertion index.

        Args:
            card: Updated snapshot to insert instead of the current one.
        """
        if self.current is None:
            raise IndexError("requeue on an exhausted queue")
        index = min(len(self.items), self.position + offset)
        self.items.insert(index, card or self.current)
        return index

    def replace_current(self, card: Flashcard) -> None:
        self.items[self.position] = card

    def advance(self) -> None:
        self.position += 1
