import logging

import pytest

from mneme.application.study.deck_tree import (
    build_deck_tree,
    collect_descendant_ids,
    resolve_scope,
)
from mneme.domain.errors import NotFoundError
from mneme.domain.study.models import Deck


def deck(deck_id, parent=None, user_id=1, category_id=1):
    return Deck(
        id=deck_id,
        user_id=user_id,
        category_id=category_id,
        name=f"deck {deck_id}",
        parent_deck_id=parent,
    )


def test_descendants_breadth_first():
    decks = [deck(1), deck(2, 1), deck(3, 1), deck(4, 2), deck(5)]
    assert collect_descendant_ids(decks, 1) == [1, 2, 3, 4]


def test_leaf_scope_is_just_the_deck():
    decks = [deck(1), deck(2, 1)]
    assert collect_descendant_ids(decks, 2) == [2]


def test_cycle_terminates_and_logs(caplog):
    # 1 -> 2 -> 3 -> 1
    decks = [deck(1, 3), deck(2, 1), deck(3, 2)]
    with caplog.at_level(logging.WARNING):
        ids = collect_descendant_ids(decks, 1)
    assert sorted(ids) == [1, 2, 3]
    assert len(ids) == 3
    assert "cycle" in caplog.text


def test_self_parent_terminates():
    assert collect_descendant_ids([deck(1, 1)], 1) == [1]


def test_build_tree_nests_children():
    roots = build_deck_tree([deck(1), deck(2, 1), deck(3, 2), deck(4)])
    assert [r.deck.id for r in roots] == [1, 4]
    assert roots[0].subdecks[0].deck.id == 2
    assert roots[0].subdecks[0].subdecks[0].deck.id == 3

    as_dict = roots[0].to_dict()
    assert as_dict["subdecks"][0]["subdecks"][0]["id"] == 3


def test_build_tree_missing_parent_becomes_root():
    roots = build_deck_tree([deck(2, 99)])
    assert [r.deck.id for r in roots] == [2]


def test_build_tree_skips_pure_cycle(caplog):
    with caplog.at_level(logging.WARNING):
        roots = build_deck_tree([deck(1), deck(2, 3), deck(3, 2)])
    assert [r.deck.id for r in roots] == [1]
    assert "unreachable" in caplog.text


@pytest.mark.asyncio
async def test_resolve_scope_includes_subdecks(repo, deck_tree):
    ids = await resolve_scope(repo, 1, deck_tree["spanish"].id)
    assert ids == [deck_tree["spanish"].id, deck_tree["verbs"].id, deck_tree["irregular"].id]


@pytest.mark.asyncio
async def test_resolve_scope_unknown_deck(repo, deck_tree):
    with pytest.raises(NotFoundError):
        await resolve_scope(repo, 1, 999)


@pytest.mark.asyncio
async def test_resolve_scope_other_users_deck(repo, deck_tree):
    with pytest.raises(NotFoundError):
        await resolve_scope(repo, 2, deck_tree["spanish"].id)
