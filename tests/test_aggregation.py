# tests/test_aggregation.py
"""Tests for categories, scores, tiers and per-voter views."""

from __future__ import annotations

import pytest

from vote_gallery.core.votes import Vote
from vote_gallery.services.aggregation import (
    MIN_CLASSIFIED_VOTES,
    RATING_FILTERS,
    Category,
    Tier,
    TieredView,
    apply_rating_filter,
    classify,
    count_votes,
    filter_by_voter,
    group_by_category,
    group_by_tier,
    known_voters,
    my_dislikes,
    my_likes,
    score,
    tier_for,
    tier_for_score,
    unrated_by_me,
)
from vote_gallery.services.rating_sync import RatingSync

from tests.fakes import FakeVoteStore

L, U, D = Vote.LIKE, Vote.UNSURE, Vote.DISLIKE


@pytest.mark.parametrize(
    ("votes", "expected"),
    [
        ({}, Category.UNRATED),
        ({"a": L}, Category.UNRATED),
        ({"a": D}, Category.UNRATED),
        ({"a": L, "b": L}, Category.CONSENSUS),
        ({"a": L, "b": U}, Category.CONSENSUS),
        ({"a": L, "b": D}, Category.CONTROVERSIAL),
        ({"a": D, "b": D}, Category.REJECTED),
        ({"a": D, "b": L, "c": D}, Category.REJECTED),
        ({"a": L, "b": L, "c": D}, Category.CONTROVERSIAL),
        ({"a": U, "b": U}, Category.UNRATED),
        ({"a": U, "b": D}, Category.REJECTED),
    ],
)
def test_classify(votes, expected):
    assert classify(votes) is expected


def test_classify_accepts_raw_strings_and_none():
    assert classify(None) is Category.UNRATED
    assert classify({"a": "like", "b": "like"}) is Category.CONSENSUS
    assert classify({"a": "like", "b": "bogus"}) is Category.UNRATED


def test_single_vote_threshold_is_two():
    assert MIN_CLASSIFIED_VOTES == 2


def test_score_weights_like_double_unsure():
    assert score({"a": L, "b": L, "c": U}) == 5
    assert score({"a": D, "b": D}) == 0
    assert score({}) == 0
    assert count_votes({"a": L, "b": U, "c": D, "d": D}).total == 4


@pytest.mark.parametrize(
    ("value", "tier"),
    [
        (0, Tier.UNRATED),
        (1, Tier.CONTROVERSIAL),
        (2, Tier.CONTROVERSIAL),
        (3, Tier.PROMISING),
        (4, Tier.STRONG),
        (5, Tier.FAVORITES),
        (8, Tier.FAVORITES),
    ],
)
def test_tier_boundaries(value, tier):
    assert tier_for_score(value) is tier


def test_one_like_two_unsure_ranks_strong():
    assert tier_for({"a": L, "b": U, "c": U}) is Tier.STRONG


IMAGES = [{"id": "a"}, {"id": "b"}, {"id": "c"}, {"id": "d"}]
VOTE_MAPS = {
    "a": {"Ann": L, "Bree": L, "Cal": U},
    "b": {"Ann": D, "Bree": L},
    "c": {"Bree": D, "Cal": D},
}


def _ids(images):
    return [image["id"] for image in images]


def test_filter_by_voter_uses_only_that_voters_cell():
    assert _ids(filter_by_voter(IMAGES, VOTE_MAPS, "Ann", my_likes)) == ["a"]
    assert _ids(filter_by_voter(IMAGES, VOTE_MAPS, "Ann", my_dislikes)) == ["b"]
    assert _ids(filter_by_voter(IMAGES, VOTE_MAPS, "Ann", unrated_by_me)) == ["c", "d"]
    # Aggregate counts never leak into a voter's view.
    assert _ids(filter_by_voter(IMAGES, VOTE_MAPS, "Cal", my_likes)) == []


def test_filter_by_voter_passes_none_for_missing_cells():
    seen = []
    filter_by_voter(IMAGES, VOTE_MAPS, "Dee", lambda vote: seen.append(vote) or True)
    assert seen == [None, None, None, None]


def test_voter_names_are_case_sensitive():
    assert _ids(filter_by_voter(IMAGES, VOTE_MAPS, "ann", my_likes)) == []


def test_group_by_category_for_everyone():
    groups = group_by_category(IMAGES, VOTE_MAPS)
    assert _ids(groups[Category.CONSENSUS]) == ["a"]
    assert _ids(groups[Category.CONTROVERSIAL]) == ["b"]
    assert _ids(groups[Category.REJECTED]) == ["c"]
    assert _ids(groups[Category.UNRATED]) == ["d"]


def test_group_by_category_for_one_voter():
    groups = group_by_category(IMAGES, VOTE_MAPS, voter="Cal")
    assert _ids(groups[Category.CONSENSUS]) == []
    assert _ids(groups[Category.CONTROVERSIAL]) == ["a"]
    assert _ids(groups[Category.REJECTED]) == ["c"]
    assert _ids(groups[Category.UNRATED]) == ["b", "d"]


def test_group_by_tier_sorts_best_first():
    maps = {
        "x": {"Ann": L, "Bree": L, "Cal": L},
        "y": {"Ann": L, "Bree": L, "Cal": U},
        "z": {"Ann": U},
    }
    tiers = group_by_tier([{"id": "z"}, {"id": "y"}, {"id": "x"}, {"id": "w"}], maps)
    assert _ids(tiers[Tier.FAVORITES]) == ["x", "y"]
    assert _ids(tiers[Tier.CONTROVERSIAL]) == ["z"]
    assert _ids(tiers[Tier.UNRATED]) == ["w"]
    assert list(tiers) == [Tier.FAVORITES, Tier.STRONG, Tier.PROMISING, Tier.CONTROVERSIAL, Tier.UNRATED]


def test_apply_rating_filter_views():
    assert _ids(apply_rating_filter("my-likes", IMAGES, VOTE_MAPS, voter="Bree")) == ["a", "b"]
    assert _ids(apply_rating_filter("favorites", IMAGES, VOTE_MAPS)) == ["a"]
    assert _ids(apply_rating_filter("controversial", IMAGES, VOTE_MAPS)) == ["b", "c", "d"]
    assert _ids(apply_rating_filter("unknown-view", IMAGES, VOTE_MAPS)) == ["a", "b", "c", "d"]
    assert "all" in RATING_FILTERS


def test_images_may_be_plain_ids_or_objects():
    class Card:
        def __init__(self, id):
            self.id = id

    cards = [Card("a"), Card("c")]
    assert [card.id for card in filter_by_voter(cards, VOTE_MAPS, "Bree", my_likes)] == ["a"]
    assert filter_by_voter(["a", "b", "c"], VOTE_MAPS, "Ann", my_dislikes) == ["b"]


def test_known_voters_lists_everyone_sorted():
    assert known_voters(VOTE_MAPS.values()) == ["Ann", "Bree", "Cal"]
    assert known_voters([]) == []


@pytest.mark.asyncio
async def test_tiered_view_invalidates_only_changed_image():
    store = FakeVoteStore({"a": {"Ann": L, "Bree": L, "Cal": U}, "b": {"Ann": U}})
    engine = RatingSync(store)
    await engine.get_votes("a")
    await engine.get_votes("b")

    view = TieredView(engine.peek)
    engine.on_change(view.invalidate_event)
    assert view.tier_of("a") is Tier.FAVORITES
    assert view.score_of("b") == 1

    await engine.set_vote("b", "like", voter="Bree")

    assert "a" in view
    assert "b" not in view
    assert view.score_of("b") == 3
    assert view.tier_of("b") is Tier.PROMISING
