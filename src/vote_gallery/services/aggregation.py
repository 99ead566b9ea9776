"""Vote aggregation: categories, scores, tiers and per-voter views.

Everything here is a pure function of VoteMaps, except TieredView which
keeps a derived score cache invalidated by RatingSync change events.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final

from vote_gallery.core.votes import Vote, normalize_id

# Fewer votes than this can't call consensus either way.
MIN_CLASSIFIED_VOTES: Final[int] = 2

LIKE_WEIGHT: Final[int] = 2
UNSURE_WEIGHT: Final[int] = 1

VotePredicate = Callable[[Vote | None], bool]


class Category(str, Enum):
    """Consensus class derived from a VoteMap."""

    UNRATED = "unrated"
    CONSENSUS = "consensus"
    CONTROVERSIAL = "controversial"
    REJECTED = "rejected"


class Tier(str, Enum):
    """Score bucket used by the ranked view."""

    FAVORITES = "favorites"
    STRONG = "strong"
    PROMISING = "promising"
    CONTROVERSIAL = "controversial"
    UNRATED = "unrated"


# (tier, lowest score, highest score or None for open-ended), best first
TIER_BOUNDS: Final[tuple[tuple[Tier, int, int | None], ...]] = (
    (Tier.FAVORITES, 5, None),
    (Tier.STRONG, 4, 4),
    (Tier.PROMISING, 3, 3),
    (Tier.CONTROVERSIAL, 1, 2),
    (Tier.UNRATED, 0, 0),
)


@dataclass(frozen=True)
class VoteCounts:
    likes: int = 0
    unsure: int = 0
    dislikes: int = 0

    @property
    def total(self) -> int:
        return self.likes + self.unsure + self.dislikes


def _votes(vote_map: Mapping[str, Any] | None) -> list[Vote]:
    if not vote_map:
        return []
    parsed = (Vote.parse(value) for value in vote_map.values())
    return [vote for vote in parsed if vote is not None]


def count_votes(vote_map: Mapping[str, Any] | None) -> VoteCounts:
    """Count likes, unsure votes and dislikes in a VoteMap."""
    votes = _votes(vote_map)
    return VoteCounts(
        likes=votes.count(Vote.LIKE),
        unsure=votes.count(Vote.UNSURE),
        dislikes=votes.count(Vote.DISLIKE),
    )


def classify(vote_map: Mapping[str, Any] | None) -> Category:
    """Map a VoteMap to exactly one category.

    The checks run in a fixed order, which is also the tie-break:
    too few votes, then consensus, then rejected, then controversial.
    """
    counts = count_votes(vote_map)
    if counts.total < MIN_CLASSIFIED_VOTES:
        return Category.UNRATED
    if counts.likes > 0 and counts.dislikes == 0:
        return Category.CONSENSUS
    if counts.dislikes > counts.likes:
        return Category.REJECTED
    if counts.likes > 0 and counts.dislikes > 0:
        return Category.CONTROVERSIAL
    return Category.UNRATED


def score(vote_map: Mapping[str, Any] | None) -> int:
    """Return ``2 * likes + 1 * unsure``; dislikes add nothing."""
    counts = count_votes(vote_map)
    return LIKE_WEIGHT * counts.likes + UNSURE_WEIGHT * counts.unsure


def tier_for_score(value: int) -> Tier:
    for tier, low, high in TIER_BOUNDS:
        if value >= low and (high is None or value <= high):
            return tier
    return Tier.UNRATED


def tier_for(vote_map: Mapping[str, Any] | None) -> Tier:
    return tier_for_score(score(vote_map))


def image_id_of(image: Any) -> str:
    """Return the id of an image descriptor (mapping, object or bare id)."""
    if isinstance(image, Mapping):
        return normalize_id(image.get("id"))
    if isinstance(image, str):
        return normalize_id(image)
    return normalize_id(getattr(image, "id", None))


def _votes_for(vote_maps: Mapping[str, Mapping[str, Any]], image: Any) -> Mapping[str, Any]:
    return vote_maps.get(image_id_of(image)) or {}


# --- Per-voter views ---------------------------------------------------------------
def filter_by_voter(
    images: Iterable[Any],
    vote_maps: Mapping[str, Mapping[str, Any]],
    voter: str,
    predicate: VotePredicate,
) -> list[Any]:
    """Keep images whose single cell for ``voter`` satisfies ``predicate``.

    The predicate receives the voter's vote, or None when they haven't
    voted; aggregate counts are never consulted.
    """
    name = normalize_id(voter)
    return [
        image
        for image in images
        if predicate(Vote.parse(_votes_for(vote_maps, image).get(name)) if name else None)
    ]


def my_likes(vote: Vote | None) -> bool:
    return vote is Vote.LIKE


def my_dislikes(vote: Vote | None) -> bool:
    return vote is Vote.DISLIKE


def my_unsure(vote: Vote | None) -> bool:
    return vote is Vote.UNSURE


def rated_by_me(vote: Vote | None) -> bool:
    return vote is not None


def unrated_by_me(vote: Vote | None) -> bool:
    return vote is None


VOTER_FILTERS: Final[dict[str, VotePredicate]] = {
    "my-likes": my_likes,
    "my-dislikes": my_dislikes,
    "my-unsure": my_unsure,
    "rated-by-me": rated_by_me,
    "unrated-by-me": unrated_by_me,
}

SCORE_FILTERS: Final[dict[str, Callable[[int], bool]]] = {
    "favorites": lambda value: value >= 5,
    "strong": lambda value: value >= 4,
    "promising": lambda value: value >= 3,
    "controversial": lambda value: value <= 2,
}

RATING_FILTERS: Final[tuple[str, ...]] = ("all", *VOTER_FILTERS, *SCORE_FILTERS)


def sort_by_score(images: Iterable[Any], vote_maps: Mapping[str, Mapping[str, Any]]) -> list[Any]:
    """Order images by score, then like count, both descending."""

    def key(image: Any) -> tuple[int, int]:
        votes = _votes_for(vote_maps, image)
        return (-score(votes), -count_votes(votes).likes)

    return sorted(images, key=key)


def apply_rating_filter(
    name: str,
    images: Iterable[Any],
    vote_maps: Mapping[str, Mapping[str, Any]],
    voter: str | None = None,
) -> list[Any]:
    """Select images for a named gallery view.

    ``my-*`` and ``*-by-me`` views need a voter; score views
    (``favorites``, ``strong``, ``promising``, ``controversial``) are
    returned best-first. Unknown names behave like ``all``.
    """
    key = normalize_id(name).lower() or "all"
    if key in VOTER_FILTERS:
        return filter_by_voter(images, vote_maps, voter or "", VOTER_FILTERS[key])
    if key in SCORE_FILTERS:
        keep = SCORE_FILTERS[key]
        selected = [image for image in images if keep(score(_votes_for(vote_maps, image)))]
        return sort_by_score(selected, vote_maps)
    return list(images)


# --- Grouped views -----------------------------------------------------------------
def _category_for_voter(vote: Vote | None) -> Category:
    if vote is Vote.LIKE:
        return Category.CONSENSUS
    if vote is Vote.DISLIKE:
        return Category.REJECTED
    if vote is Vote.UNSURE:
        return Category.CONTROVERSIAL
    return Category.UNRATED


def group_by_category(
    images: Iterable[Any],
    vote_maps: Mapping[str, Mapping[str, Any]],
    voter: str | None = None,
) -> dict[Category, list[Any]]:
    """Bucket images for the results page.

    Without a voter, images are classified by their whole VoteMap. With
    a voter, only that voter's cell decides: like -> consensus,
    dislike -> rejected, unsure -> controversial, no vote -> unrated.
    """
    groups: dict[Category, list[Any]] = {category: [] for category in Category}
    name = normalize_id(voter)
    for image in images:
        votes = _votes_for(vote_maps, image)
        if name:
            category = _category_for_voter(Vote.parse(votes.get(name)))
        else:
            category = classify(votes)
        groups[category].append(image)
    return groups


def group_by_tier(
    images: Iterable[Any],
    vote_maps: Mapping[str, Mapping[str, Any]],
) -> dict[Tier, list[Any]]:
    """Bucket images into score tiers, each sorted best-first."""
    groups: dict[Tier, list[Any]] = {tier: [] for tier, _, _ in TIER_BOUNDS}
    for image in images:
        groups[tier_for(_votes_for(vote_maps, image))].append(image)
    return {tier: sort_by_score(members, vote_maps) for tier, members in groups.items()}


def known_voters(vote_maps: Iterable[Mapping[str, Any]]) -> list[str]:
    """Return every voter with at least one vote, sorted."""
    voters: set[str] = set()
    for votes in vote_maps:
        voters.update(name for name, value in votes.items() if Vote.parse(value) is not None)
    return sorted(voters)


class TieredView:
    """Score cache for a tiered gallery, invalidated per image.

    Feed it with ``rating_sync.on_change(view.invalidate_event)``; only
    the image named by each event is recomputed on next access.
    """

    def __init__(self, votes_lookup: Callable[[str], Mapping[str, Any] | None]) -> None:
        self._lookup = votes_lookup
        self._scores: dict[str, int] = {}

    def invalidate(self, image_id: str) -> None:
        self._scores.pop(normalize_id(image_id), None)

    def invalidate_event(self, event: Any) -> None:
        self.invalidate(event.image_id)

    def score_of(self, image_id: str) -> int:
        image_id = normalize_id(image_id)
        cached = self._scores.get(image_id)
        if cached is None:
            cached = score(self._lookup(image_id))
            self._scores[image_id] = cached
        return cached

    def tier_of(self, image_id: str) -> Tier:
        return tier_for_score(self.score_of(image_id))

    def __contains__(self, image_id: object) -> bool:
        return isinstance(image_id, str) and normalize_id(image_id) in self._scores
