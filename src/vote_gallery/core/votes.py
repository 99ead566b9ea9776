"""Vote domain primitives shared by the store, sync and aggregation layers."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any


class InvalidVoteError(ValueError):
    """Raised when a value is not one of the three accepted votes."""


class Vote(str, Enum):
    """Three-way vote a voter can cast on an image.

    The enum values double as the persisted and wire representation.
    """

    LIKE = "like"
    UNSURE = "unsure"
    DISLIKE = "dislike"

    @classmethod
    def parse(cls, value: Any) -> Vote | None:
        """Return the matching vote, or None for anything else."""
        if isinstance(value, cls):
            return value
        text = normalize_id(value)
        try:
            return cls(text)
        except ValueError:
            return None

    @classmethod
    def coerce(cls, value: Any) -> Vote:
        """Return the matching vote or raise InvalidVoteError."""
        vote = cls.parse(value)
        if vote is None:
            raise InvalidVoteError(f"Unsupported vote value: {value!r}")
        return vote


# voter identity -> vote; absence of a key means "has not voted"
VoteMap = dict[str, Vote]


def normalize_id(value: Any) -> str:
    """Trim an identifier, mapping None to an empty string."""
    if value is None:
        return ""
    return str(value).strip()


def clean_vote_map(raw: Mapping[Any, Any] | None) -> VoteMap:
    """Build a VoteMap from untrusted data, dropping malformed entries.

    Values may be plain vote strings or document bodies carrying a
    ``value`` key, as returned by the remote document service.
    """
    votes: VoteMap = {}
    if not raw:
        return votes
    for voter, value in raw.items():
        name = normalize_id(voter)
        if not name:
            continue
        if isinstance(value, Mapping):
            value = value.get("value")
        vote = Vote.parse(value)
        if vote is not None:
            votes[name] = vote
    return votes


def dump_vote_map(votes: Mapping[str, Vote]) -> dict[str, str]:
    """Return a JSON-ready copy of a VoteMap."""
    return {voter: Vote(vote).value for voter, vote in votes.items()}
