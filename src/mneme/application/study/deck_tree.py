"""
Deck tree resolution.

Decks form a parent-pointer tree inside a category. The tree is built in
memory from a single bulk fetch, and all traversals are cycle-safe.
"""

import logging
from collections import deque
from dataclasses import dataclass, field

from mneme.domain.errors import NotFoundError
from mneme.domain.study.models import Deck
from mneme.domain.study.ports import StudyRepository

logger = logging.getLogger(__name__)


@dataclass
class DeckNode:
    """A deck with its nested subdecks, for tree listings."""

    deck: Deck
    subdecks: list["DeckNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.deck.id,
            "name": self.deck.name,
            "parent_deck_id": self.deck.parent_deck_id,
            "description": self.deck.description,
            "subdecks": [child.to_dict() for child in self.subdecks],
        }


def _children_map(decks: list[Deck]) -> dict[int, list[int]]:
    children: dict[int, list[int]] = {}
    for deck in sorted(decks, key=lambda d: d.id):
        if deck.parent_deck_id is not None:
            children.setdefault(deck.parent_deck_id, []).append(deck.id)
    return children


def collect_descendant_ids(decks: list[Deck], root_id: int) -> list[int]:
    """
    Return root_id followed by every descendant deck id, breadth first.

    A deck reachable twice (a cycle in the parent pointers) is visited once;
    the back edge is logged and ignored.
    """
    children = _children_map(decks)
    ordered: list[int] = []
    visited: set[int] = set()
    pending = deque([root_id])

    while pending:
        deck_id = pending.popleft()
        if deck_id in visited:
            logger.warning(f"Deck cycle detected at deck {deck_id}; skipping back edge")
            continue
        visited.add(deck_id)
        ordered.append(deck_id)
        pending.extend(children.get(deck_id, []))

    return ordered


def build_deck_tree(decks: list[Deck]) -> list[DeckNode]:
    """
    Nest decks under their parents.

    Decks whose parent is missing from the list are treated as roots. Decks
    only reachable through a cycle are attached nowhere and logged.
    """
    nodes = {deck.id: DeckNode(deck) for deck in sorted(decks, key=lambda d: d.id)}
    roots: list[DeckNode] = []

    for node in nodes.values():
        parent_id = node.deck.parent_deck_id
        if parent_id is None or parent_id not in nodes:
            roots.append(node)

    # Attach children by walking from the roots so a cycle can never nest itself.
    children = _children_map(decks)
    attached: set[int] = {root.deck.id for root in roots}
    pending = deque(roots)
    while pending:
        node = pending.popleft()
        for child_id in children.get(node.deck.id, []):
            if child_id in attached:
                continue
            attached.add(child_id)
            child = nodes[child_id]
            node.subdecks.append(child)
            pending.append(child)

    orphaned = set(nodes) - attached
    if orphaned:
        logger.warning(f"Decks unreachable from any root (cycle?): {sorted(orphaned)}")

    return roots


async def resolve_scope(repo: StudyRepository, user_id: int, deck_id: int) -> list[int]:
    """
    Resolve a study scope: the deck and all of its descendant subdecks.

    Raises:
        NotFoundError: the deck does not exist or belongs to another user.
    """
    deck = await repo.get_deck(deck_id)
    if deck is None or deck.user_id != user_id:
        raise NotFoundError(f"Deck {deck_id} not found")

    decks = await repo.list_decks(user_id, deck.category_id)
    if not any(d.id == deck_id for d in decks):
        decks.append(deck)
    return collect_descendant_ids(decks, deck_id)
