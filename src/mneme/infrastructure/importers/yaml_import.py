"""
YAML deck import.

Loads a nested deck document and creates decks and cards through the
storage port. Example document:

    category: 1
    decks:
      - name: Spanish
        cards:
          - front: hola
            back: hello
        subdecks:
          - name: Verbs
            cards:
              - {front: ser, back: to be}
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
import yaml.error

from mneme.domain.errors import NotFoundError, ValidationError
from mneme.domain.study.models import Deck
from mneme.domain.study.ports import StudyRepository

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    decks: list[Deck] = field(default_factory=list)
    cards_created: int = 0

    @property
    def decks_created(self) -> int:
        return len(self.decks)


def load_deck_document(path: Path) -> dict[str, Any]:
    """
    Read and validate a deck document.

    Raises:
        ValidationError: unreadable file, YAML syntax error, or wrong shape.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}", field="path") from e

    try:
        doc = yaml.safe_load(text) or {}
    except yaml.error.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}", field="path") from e

    validate_deck_document(doc)
    return doc


def validate_deck_document(doc: Any) -> None:
    """
    Check every deck and card in the document, so an import never stops
    halfway with part of the tree written.
    """
    if not isinstance(doc, dict):
        raise ValidationError("Deck document must be a mapping", field="decks")
    if not isinstance(doc.get("decks"), list) or not doc["decks"]:
        raise ValidationError("Deck document needs a non-empty 'decks' list", field="decks")

    seen: set[int] = set()

    def walk(entry: Any, trail: str) -> None:
        # YAML aliases can make a deck its own descendant.
        if id(entry) in seen:
            raise ValidationError(f"{trail}: deck is nested inside itself", field="subdecks")
        seen.add(id(entry))
        _validate_deck(entry, trail)

        subdecks = entry.get("subdecks") or []
        if not isinstance(subdecks, list):
            raise ValidationError(f"{trail}: 'subdecks' must be a list", field="subdecks")
        for child in subdecks:
            walk(child, f"{trail} > {entry['name']}")

    for top in doc["decks"]:
        walk(top, "decks")


def _validate_deck(entry: Any, trail: str) -> None:
    if not isinstance(entry, dict):
        raise ValidationError(f"{trail}: deck entry must be a mapping", field="decks")
    if not isinstance(entry.get("name"), str) or not entry["name"].strip():
        raise ValidationError(f"{trail}: deck needs a 'name'", field="name")
    cards = entry.get("cards") or []
    if not isinstance(cards, list):
        raise ValidationError(f"{trail} > {entry['name']}: 'cards' must be a list", field="cards")
    for i, card in enumerate(cards):
        if not isinstance(card, dict) or not card.get("front") or not card.get("back"):
            raise ValidationError(
                f"{trail} > {entry['name']}: card #{i + 1} needs 'front' and 'back'",
                field="cards",
            )


async def import_decks(
    repo: StudyRepository,
    doc: dict[str, Any],
    user_id: int,
    category_id: int | None = None,
    parent_deck_id: int | None = None,
    now: datetime | None = None,
) -> ImportSummary:
    """
    Create every deck and card in `doc`.

    Args:
        repo: Storage port.
        doc: Output of load_deck_document.
        user_id: Owner of the new decks and cards.
        category_id: Overrides the document's `category` key.
        parent_deck_id: Attach the top-level decks under an existing deck.
            The new decks take the parent's category.
        now: Creation time, which is also the new cards' due time.

    Raises:
        ValidationError: invalid document, or a category that disagrees
            with the parent deck's.
        NotFoundError: the parent deck does not exist for this user.
    """
    validate_deck_document(doc)

    if parent_deck_id is not None:
        parent = await repo.get_deck(parent_deck_id)
        if parent is None or parent.user_id != user_id:
            raise NotFoundError(f"Parent deck {parent_deck_id} not found")
        if category_id is not None and category_id != parent.category_id:
            raise ValidationError(
                f"Parent deck {parent_deck_id} belongs to category {parent.category_id}, "
                f"not {category_id}",
                field="category",
            )
        category = parent.category_id
    else:
        category = category_id if category_id is not None else doc.get("category")
    if not isinstance(category, int):
        raise ValidationError("A numeric category is required", field="category")

    now = now or datetime.now(timezone.utc)
    summary = ImportSummary()

    async def create(entry: dict[str, Any], parent_id: int | None) -> None:
        deck = await repo.add_deck(
            user_id,
            category,
            entry["name"].strip(),
            parent_deck_id=parent_id,
            description=entry.get("description"),
        )
        summary.decks.append(deck)

        for card in entry.get("cards") or []:
            await repo.add_card(user_id, deck.id, str(card["front"]), str(card["back"]), now)
            summary.cards_created += 1

        for child in entry.get("subdecks") or []:
            await create(child, deck.id)

    for top in doc["decks"]:
        await create(top, parent_deck_id)

    logger.info(
        f"Imported {summary.decks_created} decks and {summary.cards_created} cards "
        f"into category {category}"
    )
    return summary
